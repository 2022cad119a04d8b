"""Read and write per-sample OTU count files and cohort generations.

A count file holds one "pathway<TAB>count" line per OTU, no header, sorted
by pathway. A generation is a directory of count files for one cohort plus
a summary file and a YAML provenance sidecar. Generations are written to a
temporary sibling directory and renamed into place once complete.
"""

import os
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import structlog
import yaml

from otu_pipeline.exceptions import OtuFileError, OtuPipelineError
from otu_pipeline.otu.compile import compile_cohort

logger = structlog.get_logger()

OTU_COUNT = "otuCount"
COUNT_FILE_EXT = ".tsv"
SUMMARY_FILE = f"summary_{OTU_COUNT}{COUNT_FILE_EXT}"
PROVENANCE_FILE = "generation.provenance.yaml"


def count_file_name(sample_id: str, tag: str | None = None) -> str:
    """File name for one sample, e.g. "min2_otuCount_S1.tsv"."""
    name = f"{OTU_COUNT}_{sample_id}{COUNT_FILE_EXT}"
    return f"{tag}_{name}" if tag else name


def is_count_file(path: Path) -> bool:
    return f"{OTU_COUNT}_" in path.name and path.name.endswith(COUNT_FILE_EXT)


def sample_id_from_count_file(path: Path) -> str:
    """Sample id encoded after the last "otuCount_" in a count file name."""
    name = path.name
    start = name.rindex(f"{OTU_COUNT}_") + len(OTU_COUNT) + 1
    return name[start: -len(COUNT_FILE_EXT)]


def write_count_file(path: Path, counts: dict[str, int]) -> None:
    """Write pathway counts in ascending pathway order."""
    with open(path, "w") as f:
        for otu in sorted(counts):
            f.write(f"{otu}\t{counts[otu]}\n")


def read_count_file(path: Path) -> dict[str, int]:
    """Read a count file back into a pathway -> count mapping.

    Raises:
        OtuFileError: If a line lacks exactly two tab fields, the count is not
                      a non-negative integer, or a pathway repeats
    """
    counts = {}
    with open(path) as f:
        for line_number, line in enumerate(f, start=1):
            line = line.rstrip("\r\n")
            if not line:
                continue
            fields = line.split("\t")
            if len(fields) != 2:
                raise OtuFileError(
                    f"Expected 2 tab delimited fields, found {len(fields)}", path, line_number
                )
            otu, count = fields
            try:
                value = int(count)
            except ValueError as e:
                raise OtuFileError(f"Count is not an integer: {count!r}", path, line_number) from e
            if value < 0:
                raise OtuFileError(f"Negative count: {value}", path, line_number)
            if otu in counts:
                raise OtuFileError(f"Duplicate pathway: {otu}", path, line_number)
            counts[otu] = value
    return counts


def read_cohort(input_dir: Path) -> dict[str, dict[str, int]]:
    """Load every count file of a generation.

    Returns:
        sample_id -> {pathway -> count}, sorted by sample id

    Raises:
        OtuFileError: If the directory holds no count files or one is malformed
    """
    input_dir = Path(input_dir)
    files = sorted(path for path in input_dir.iterdir() if is_count_file(path))
    if not files:
        raise OtuFileError("No OTU count files found", input_dir)

    cohort = {}
    for path in files:
        sample_id = sample_id_from_count_file(path)
        if sample_id in cohort:
            raise OtuFileError(f"Sample {sample_id} has more than one count file", path)
        cohort[sample_id] = read_count_file(path)

    logger.info("cohort_loaded", input_dir=str(input_dir), samples=len(cohort))
    return dict(sorted(cohort.items()))


@contextmanager
def staged_directory(output_dir: Path, overwrite: bool = False) -> Iterator[Path]:
    """Yield a temporary sibling of output_dir, renamed into place on success.

    On any error the temporary directory is removed and output_dir is left
    untouched.

    Raises:
        OtuPipelineError: If output_dir exists and overwrite is False
    """
    output_dir = Path(output_dir)
    if output_dir.exists() and not overwrite:
        raise OtuPipelineError(f"Output already exists: {output_dir} (use --force to replace it)")

    output_dir.parent.mkdir(parents=True, exist_ok=True)
    tmp_dir = output_dir.parent / f".{output_dir.name}.tmp-{os.getpid()}"
    if tmp_dir.exists():
        shutil.rmtree(tmp_dir)
    tmp_dir.mkdir()

    try:
        yield tmp_dir
        if output_dir.exists():
            shutil.rmtree(output_dir)
        tmp_dir.rename(output_dir)
    except BaseException:
        shutil.rmtree(tmp_dir, ignore_errors=True)
        raise


def write_generation(
    output_dir: Path,
    cohort: dict[str, dict[str, int]],
    stage: str,
    tag: str | None = None,
    details: dict | None = None,
    audit_files: dict[str, list[str]] | None = None,
    overwrite: bool = False,
) -> dict:
    """Write a cohort generation atomically.

    Args:
        output_dir: Generation directory (must not exist unless overwrite)
        cohort: sample_id -> {pathway -> count}
        stage: Name of the stage that produced the generation
        tag: Optional tag prefixed to every count file name
        details: Extra stage statistics recorded in the provenance sidecar
        audit_files: File name -> lines, written alongside the count files
        overwrite: Replace an existing generation directory

    Returns:
        Dictionary with output paths:
        {
            "dir": generation directory,
            "summary": summary count file,
            "provenance": YAML provenance sidecar
        }

    Raises:
        OtuPipelineError: If the generation exists and overwrite is False
    """
    output_dir = Path(output_dir)
    with staged_directory(output_dir, overwrite) as tmp_dir:
        for sample_id, counts in cohort.items():
            write_count_file(tmp_dir / count_file_name(sample_id, tag), counts)

        compiled = compile_cohort(cohort)
        write_count_file(tmp_dir / SUMMARY_FILE, compiled.summary)

        for file_name, lines in (audit_files or {}).items():
            with open(tmp_dir / file_name, "w") as f:
                for line in lines:
                    f.write(f"{line}\n")

        provenance = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "stage": stage,
            "tag": tag,
            "statistics": compiled.statistics(),
            "audit_files": sorted(audit_files or {}),
        }
        if details:
            provenance["details"] = details

        with open(tmp_dir / PROVENANCE_FILE, "w") as f:
            yaml.dump(provenance, f, default_flow_style=False, sort_keys=False)

    logger.info(
        "generation_written",
        output_dir=str(output_dir),
        stage=stage,
        samples=len(cohort),
    )

    return {
        "dir": output_dir,
        "summary": output_dir / SUMMARY_FILE,
        "provenance": output_dir / PROVENANCE_FILE,
    }
