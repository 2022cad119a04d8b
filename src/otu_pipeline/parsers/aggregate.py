"""Aggregate reconciled assignments into per-sample OTU counts.

Each input file (or per-level file group) is parsed independently into
ParsedSample objects by parse_sample_file(), a pure function of the file and
an explicit ParseContext. parse_cohort() fans the groups out over worker
processes and registers the results, rejecting duplicate sample ids.
"""

import multiprocessing as mp
from collections import defaultdict
from collections.abc import Callable
from itertools import repeat
from pathlib import Path

import structlog

from otu_pipeline.exceptions import DuplicateSampleError, ParseError
from otu_pipeline.parsers import lineage, matrix, per_level, score_gated
from otu_pipeline.parsers.models import FormatKind, MatrixFlavor, ParseContext
from otu_pipeline.taxonomy.levels import TaxonomyLevels
from otu_pipeline.taxonomy.models import TaxonPath
from otu_pipeline.taxonomy.reconcile import CladeCounts, rank_scoped_path, reconcile

logger = structlog.get_logger()

# Pseudo-rank holding pathway counts in a ParsedSample
PATHWAY_LEVEL = "pathway"

# Suffix classifier wrappers append to per-sample report names
REPORT_SUFFIX = "_reported"
COMPRESSED_EXT = ".gz"


class ParsedSample:
    """OTU counts of one sample, grouped by the rank of each path's leaf."""

    def __init__(self, sample_id: str):
        self._sample_id = sample_id
        self.counts: dict[str, dict[str, int]] = defaultdict(dict)

    @property
    def sample_id(self) -> str:
        return self._sample_id

    def add(self, level: str, otu: str, count: int) -> None:
        level_counts = self.counts[level]
        level_counts[otu] = level_counts.get(otu, 0) + count

    def otu_counts(self) -> dict[str, int]:
        """Full pathway string -> count, sorted by pathway."""
        merged = {}
        for level_counts in self.counts.values():
            for otu, count in level_counts.items():
                merged[otu] = merged.get(otu, 0) + count
        return dict(sorted(merged.items()))

    @property
    def total(self) -> int:
        return sum(sum(level_counts.values()) for level_counts in self.counts.values())

    def __len__(self) -> int:
        return len(self.otu_counts())

    def __repr__(self) -> str:
        return f"ParsedSample({self._sample_id!r}, otus={len(self)}, total={self.total})"


class SampleAggregator:
    """Collects ParsedSample objects, enforcing record validity and unique ids."""

    def __init__(self, levels: TaxonomyLevels):
        self.levels = levels
        self._samples: dict[str, ParsedSample] = {}
        self.rejected = 0
        self.missing_top = 0

    def is_valid(self, sample_id: str | None, path: TaxonPath | str | None, count: int) -> bool:
        """Valid records name a sample, carry a positive count and a non-empty taxon."""
        if not sample_id or count is None or count <= 0 or not path:
            return False
        if isinstance(path, str):
            return bool(path.strip())
        return any(entry.name.strip() for entry in path if entry.level in self.levels)

    def add_assignment(self, sample_id: str | None, path: TaxonPath | str | None, count: int) -> bool:
        """Add one reconciled record, a TaxonPath or a pathway name.

        Returns:
            False if the record was rejected (logged, not raised)
        """
        if not self.is_valid(sample_id, path, count):
            self.rejected += 1
            logger.warning(
                "invalid_assignment_rejected",
                sample_id=sample_id,
                path=str(path) if path is not None else None,
                count=count,
            )
            return False

        sample = self._samples.get(sample_id)
        if sample is None:
            sample = ParsedSample(sample_id)
            self._samples[sample_id] = sample

        if isinstance(path, str):
            sample.add(PATHWAY_LEVEL, path.strip(), count)
        else:
            sample.add(path.leaf_level, path.render(), count)
        return True

    def register(self, sample: ParsedSample) -> None:
        """Add a sample parsed from another input.

        Raises:
            DuplicateSampleError: If the sample id is already registered
        """
        if sample.sample_id in self._samples:
            raise DuplicateSampleError(sample.sample_id)
        self._samples[sample.sample_id] = sample

    def samples(self) -> list[ParsedSample]:
        return [self._samples[sample_id] for sample_id in sorted(self._samples)]

    def __contains__(self, sample_id: str) -> bool:
        return sample_id in self._samples

    def __len__(self) -> int:
        return len(self._samples)


def sample_id_from_file(path: Path) -> str:
    """Sample id of a one-sample report: file name without extension or report suffix.

    Example: "S1_reported.tsv" -> "S1", "S2.kraken.gz" -> "S2"
    """
    name = path.name
    if name.endswith(COMPRESSED_EXT):
        name = name[: -len(COMPRESSED_EXT)]
    name = name.split(".")[0]
    if name.endswith(REPORT_SUFFIX) and len(name) > len(REPORT_SUFFIX):
        name = name[: -len(REPORT_SUFFIX)]
    return name


def _add_reconciled(assignments, aggregator: SampleAggregator, context: ParseContext) -> None:
    for assignment in assignments:
        path = reconcile(assignment, context.levels, context.fill_to_bottom)
        if path is None:
            aggregator.missing_top += 1
        else:
            aggregator.add_assignment(assignment.sample_id, path, assignment.count)


def _parse_score_gated(path: Path, context: ParseContext, aggregator: SampleAggregator) -> None:
    sample_id = sample_id_from_file(path)
    _add_reconciled(score_gated.iter_assignments(path, sample_id, context), aggregator, context)


def _parse_read_lineage(path: Path, context: ParseContext, aggregator: SampleAggregator) -> None:
    sample_id = sample_id_from_file(path)
    _add_reconciled(lineage.iter_read_assignments(path, sample_id, context), aggregator, context)


def _parse_cumulative(path: Path, context: ParseContext, aggregator: SampleAggregator) -> None:
    sample_id = sample_id_from_file(path)
    clades = CladeCounts(sample_id, context.levels)
    for assignment in lineage.iter_cumulative_assignments(path, sample_id, context):
        taxon_path = reconcile(assignment, context.levels)
        if taxon_path is None:
            aggregator.missing_top += 1
        else:
            clades.add(taxon_path, assignment.count)

    for taxon_path, count in clades.redistribute().items():
        aggregator.add_assignment(sample_id, taxon_path, count)


def _parse_per_level(path: Path, context: ParseContext, aggregator: SampleAggregator) -> None:
    for assignment in per_level.iter_assignments(path, context):
        level, name = next(iter(assignment.taxa.items()))
        aggregator.add_assignment(assignment.sample_id, rank_scoped_path(level, name), assignment.count)


def _parse_matrix(path: Path, context: ParseContext, aggregator: SampleAggregator) -> None:
    assignments = matrix.iter_assignments(path, context)
    if context.flavor == MatrixFlavor.PATHWAY:
        for assignment in assignments:
            aggregator.add_assignment(assignment.sample_id, assignment.pathway, assignment.count)
    else:
        _add_reconciled(assignments, aggregator, context)


HANDLERS: dict[FormatKind, Callable[[Path, ParseContext, SampleAggregator], None]] = {
    FormatKind.SCORE_GATED: _parse_score_gated,
    FormatKind.READ_LINEAGE: _parse_read_lineage,
    FormatKind.CUMULATIVE_PATH: _parse_cumulative,
    FormatKind.PER_LEVEL_FILE: _parse_per_level,
    FormatKind.MATRIX: _parse_matrix,
}


def parse_sample_file(paths: list[Path], context: ParseContext) -> list[ParsedSample]:
    """Parse one input file, or one per-level file group, into samples.

    Args:
        paths: Files belonging to one parse unit
        context: Format and taxonomy settings

    Returns:
        Samples found in the files, sorted by id
    """
    handler = HANDLERS[context.kind]
    aggregator = SampleAggregator(context.levels)
    for path in paths:
        handler(path, context, aggregator)

    samples = aggregator.samples()
    logger.info(
        "parse_file_complete",
        files=[path.name for path in paths],
        samples=len(samples),
        otus=sum(len(sample) for sample in samples),
        rejected=aggregator.rejected,
        missing_top_level=aggregator.missing_top,
    )
    return samples


def group_input_files(input_dir: Path, context: ParseContext) -> list[list[Path]]:
    """Split an input directory into independent parse units.

    Per-level files are grouped by the sample id in their names; files
    without a configured rank in the name are skipped. Matrix directories
    keep only the deepest summary level.
    """
    files = sorted(
        path for path in input_dir.iterdir()
        if path.is_file() and not path.name.startswith(".")
    )

    if context.kind == FormatKind.PER_LEVEL_FILE:
        groups: dict[str, list[Path]] = defaultdict(list)
        for path in files:
            info = per_level.level_file_info(path, context)
            if info is None:
                logger.info(
                    "per_level_file_skipped",
                    file=path.name,
                    reason="no configured rank in file name",
                )
                continue
            groups[info[0]].append(path)
        return [groups[sample_id] for sample_id in sorted(groups)]

    if context.kind == FormatKind.MATRIX:
        files = matrix.select_matrix_file(files)

    return [[path] for path in files]


def parse_cohort(input_dir: Path, context: ParseContext, workers: int = 1) -> list[ParsedSample]:
    """Parse every report in a directory into a list of samples.

    Args:
        input_dir: Directory of classifier reports
        context: Format and taxonomy settings
        workers: Number of worker processes (1 = parse in this process)

    Returns:
        Samples sorted by id

    Raises:
        ParseError: If the directory holds no parseable files, or on malformed input
        DuplicateSampleError: If two inputs produce the same sample id
    """
    groups = group_input_files(input_dir, context)
    if not groups:
        raise ParseError("No classifier reports found", input_dir)

    logger.info(
        "parse_cohort_start",
        input_dir=str(input_dir),
        format=context.kind.value,
        units=len(groups),
        workers=workers,
    )

    if workers > 1 and len(groups) > 1:
        with mp.Pool(processes=min(workers, len(groups))) as pool:
            results = pool.starmap(parse_sample_file, zip(groups, repeat(context)))
    else:
        results = [parse_sample_file(group, context) for group in groups]

    registry = SampleAggregator(context.levels)
    for samples in results:
        for sample in samples:
            registry.register(sample)

    samples = registry.samples()
    if not samples:
        logger.warning("parse_cohort_empty", input_dir=str(input_dir))
    return samples
