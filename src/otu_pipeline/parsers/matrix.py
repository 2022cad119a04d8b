"""Parse sample-by-feature matrices (QIIME taxa tables, HUMAnN2 pathway tables).

The first column holds a taxonomy string or pathway name; every other column
holds one sample's counts. Counts may be fractional and are truncated.
"""

import re
from collections.abc import Iterator
from pathlib import Path

import polars as pl
import structlog

from otu_pipeline.exceptions import DuplicateSampleError, ParseError
from otu_pipeline.parsers.models import MatrixFlavor, ParseContext
from otu_pipeline.taxonomy.levels import level_for_prefix, strip_quotes
from otu_pipeline.taxonomy.models import RawAssignment

logger = structlog.get_logger()

HEADER_PREFIXES = ("#OTU ID", "# Pathway", "#Pathway")
TAXA_DELIM = ";"
STRATIFIED_DELIM = "|"
UNMAPPED_PATHWAYS = {"UNMAPPED", "UNINTEGRATED"}

# Suffixes appended to sample ids by HUMAnN2 and its preprocessing tools,
# removed in this order ("S1_Abundance-RPKs" -> "S1")
PATHWAY_ID_SUFFIXES = ("_paired_merged", "_kneaddata", "_Abundance", "_Coverage", "-RPKs")

# Internal column names; sample ids may not use them
LINE_COL = "__line_number"
FEATURE_COL = "__feature"
SAMPLE_COL = "__sample_id"
VALUE_COL = "__value"
RESERVED_COLUMNS = {LINE_COL, FEATURE_COL, SAMPLE_COL, VALUE_COL}

# QIIME summarize_taxa level suffix, e.g. otu_table_L6.txt
SUMMARY_LEVEL_PATTERN = re.compile(r"_L(\d+)\.[^.]+$")


def select_matrix_file(paths: list[Path]) -> list[Path]:
    """Keep only the deepest summarized table when several levels are present.

    QIIME writes one table per summary level (otu_table_L2.txt ... L7); the
    deepest one carries every shallower rank in its taxonomy strings.
    """
    levelled = {}
    for path in paths:
        match = SUMMARY_LEVEL_PATTERN.search(path.name)
        if match:
            levelled[path] = int(match.group(1))
    if not levelled:
        return paths
    deepest = max(levelled, key=levelled.get)
    logger.info("matrix_level_selected", file=deepest.name, candidates=len(levelled))
    return [deepest]


def clean_sample_id(header_id: str, flavor: MatrixFlavor) -> str:
    """Strip quotes and, for pathway tables, the tool-added suffixes."""
    sample_id = strip_quotes(header_id).strip()
    if flavor == MatrixFlavor.PATHWAY:
        for suffix in PATHWAY_ID_SUFFIXES:
            sample_id = sample_id.replace(suffix, "")
    return sample_id


def parse_taxa(taxonomy: str, context: ParseContext) -> dict[str, str]:
    """Sparse rank -> name mapping from "k__Bacteria; p__Firmicutes; c__"."""
    taxa = {}
    for token in strip_quotes(taxonomy).split(TAXA_DELIM):
        token = token.strip()
        level = level_for_prefix(token[:3])
        name = token[3:].strip()
        if level is not None and level in context.levels and name and level not in taxa:
            taxa[level] = name
    return taxa


def find_header_row(path: Path) -> int:
    """Zero-based index of the header line, after any leading comment lines.

    The header is the first line that is not a comment, or a "#" line that
    carries tab separated columns ("#OTU ID", "# Pathway", "# Gene Family").

    Raises:
        ParseError: If the file has no header line
    """
    with open(path) as f:
        for index, line in enumerate(f):
            if line.startswith(HEADER_PREFIXES) or not line.startswith("#") or "\t" in line:
                return index
    raise ParseError("No header row found", path)


def read_matrix(path: Path, context: ParseContext) -> pl.DataFrame:
    """Read a matrix into line number and feature columns plus one Float64 column per sample.

    Sample columns are renamed to pipeline sample ids.

    Raises:
        ParseError: On non-numeric cells, header ids missing from the id map or
                    sample ids that clash with the internal column names
        DuplicateSampleError: If two header ids translate to the same sample
    """
    header_row = find_header_row(path)
    raw = pl.read_csv(
        path,
        separator="\t",
        skip_rows=header_row,
        infer_schema_length=0,
        quote_char=None,
    )
    if len(raw.columns) < 2:
        raise ParseError(
            "Matrix needs a feature column and at least one sample column", path, header_row + 1
        )

    feature_col = raw.columns[0]
    sample_cols = raw.columns[1:]

    renames = {feature_col: FEATURE_COL}
    for col in sample_cols:
        header_id = clean_sample_id(col, context.flavor)
        try:
            sample_id = context.sample_ids.translate(header_id)
        except KeyError as e:
            raise ParseError(
                f"Sample id {header_id} is not in the mapping file", path, header_row + 1
            ) from e
        if sample_id in RESERVED_COLUMNS:
            raise ParseError(f"Reserved sample id: {sample_id}", path, header_row + 1)
        if sample_id in renames.values():
            raise DuplicateSampleError(sample_id)
        renames[col] = sample_id

    values = raw.select(
        pl.col(feature_col),
        *[pl.col(col).str.strip_chars().cast(pl.Float64, strict=False) for col in sample_cols],
    )

    for col in sample_cols:
        invalid = raw[col].is_not_null() & values[col].is_null()
        if invalid.any():
            row = invalid.arg_true()[0]
            raise ParseError(
                f"Non-numeric count {raw[col][row]!r} for sample {col}",
                path,
                header_row + 2 + row,
            )

    return values.rename(renames).with_row_index(LINE_COL, offset=header_row + 2)


def iter_assignments(path: Path, context: ParseContext) -> Iterator[RawAssignment]:
    """Stream one RawAssignment per non-zero (feature, sample) cell."""
    df = read_matrix(path, context)
    sample_cols = df.columns[2:]

    cells = (
        df.unpivot(
            index=[LINE_COL, FEATURE_COL],
            on=sample_cols,
            variable_name=SAMPLE_COL,
            value_name=VALUE_COL,
        )
        .with_columns(pl.col(VALUE_COL).fill_null(0.0).cast(pl.Int64))
        .filter(pl.col(VALUE_COL) > 0)
        .sort([LINE_COL, SAMPLE_COL])
    )

    skipped = 0
    for line_number, feature, sample_id, count in cells.iter_rows():
        feature = strip_quotes(feature or "").strip()

        if context.flavor == MatrixFlavor.PATHWAY:
            if STRATIFIED_DELIM in feature:
                skipped += 1
                continue
            if feature in UNMAPPED_PATHWAYS and not context.keep_unmapped_pathways:
                skipped += 1
                continue
            if not feature:
                continue
            yield RawAssignment(
                sample_id=sample_id,
                count=count,
                pathway=feature,
                source=path,
                line_number=line_number,
            )
        else:
            yield RawAssignment(
                sample_id=sample_id,
                count=count,
                taxa=parse_taxa(feature, context),
                source=path,
                line_number=line_number,
            )

    logger.info(
        "matrix_parsed",
        file=path.name,
        samples=len(sample_cols),
        cells=len(cells),
        skipped=skipped,
    )
