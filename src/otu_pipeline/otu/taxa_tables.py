"""Build sample-by-taxon count tables from a cohort.

One table per configured rank: a polars DataFrame whose first column is
"sample_id" and whose remaining columns are taxon names at that rank, sorted.
Pathway cohorts (no rank prefixes) produce a single "pathway" table.
"""

from pathlib import Path

import polars as pl
import structlog

from otu_pipeline.exceptions import OtuFileError
from otu_pipeline.taxonomy.levels import TaxonomyLevels

logger = structlog.get_logger()

SAMPLE_ID_COL = "sample_id"
PATHWAY_TABLE = "pathway"
TAXA_TABLE_PREFIX = "taxaCount"


def taxa_table_name(level: str, tag: str | None = None) -> str:
    """File name of a taxa table, e.g. "taxaCount_norm_genus.tsv"."""
    parts = [TAXA_TABLE_PREFIX]
    if tag:
        parts.append(tag)
    parts.append(level)
    return "_".join(parts) + ".tsv"


def is_pathway_cohort(cohort: dict[str, dict[str, int]], levels: TaxonomyLevels) -> bool:
    """True if no pathway in the cohort carries a configured rank prefix."""
    for counts in cohort.values():
        for otu in counts:
            if levels.parse_otu(otu):
                return False
    return True


def _pivot(rows: list[tuple[str, str, int]]) -> pl.DataFrame:
    df = pl.DataFrame(
        rows,
        schema={SAMPLE_ID_COL: pl.String, "taxon": pl.String, "count": pl.Int64},
        orient="row",
    )
    wide = (
        df.pivot(on="taxon", index=SAMPLE_ID_COL, values="count", aggregate_function="sum")
        .fill_null(0)
        .sort(SAMPLE_ID_COL)
    )
    taxa = sorted(col for col in wide.columns if col != SAMPLE_ID_COL)
    return wide.select(SAMPLE_ID_COL, *taxa)


def build_taxa_tables(
    cohort: dict[str, dict[str, int]],
    levels: TaxonomyLevels,
) -> dict[str, pl.DataFrame]:
    """Sum pathway counts per taxon name at every configured rank.

    A sample only appears in a rank's table if at least one of its pathways
    reaches that rank.

    Returns:
        rank (or "pathway") -> sample x taxon DataFrame
    """
    if is_pathway_cohort(cohort, levels):
        rows = [
            (sample_id, otu, count)
            for sample_id, counts in cohort.items()
            for otu, count in counts.items()
        ]
        return {PATHWAY_TABLE: _pivot(rows)} if rows else {}

    tables = {}
    for level in levels:
        rows = []
        for sample_id, counts in cohort.items():
            for otu, count in counts.items():
                name = levels.taxon_name(otu, level)
                if name is not None:
                    rows.append((sample_id, name, count))
        if not rows:
            logger.debug("taxa_table_empty", level=level)
            continue
        tables[level] = _pivot(rows)

    logger.info(
        "taxa_tables_built",
        levels=list(tables),
        samples=len(cohort),
    )
    return tables


def write_taxa_table(df: pl.DataFrame, path: Path) -> Path:
    """Write a taxa table as TSV with header."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df.write_csv(path, separator="\t", include_header=True)
    return path


def read_taxa_table(path: Path) -> pl.DataFrame:
    """Read a taxa table; every column but sample_id must be numeric.

    Raises:
        OtuFileError: If sample_id is missing or a count column is not numeric
    """
    df = pl.read_csv(path, separator="\t", schema_overrides={SAMPLE_ID_COL: pl.String})
    if not df.columns or df.columns[0] != SAMPLE_ID_COL:
        raise OtuFileError(f"First column must be {SAMPLE_ID_COL}", path, 1)
    for col in df.columns[1:]:
        if not df[col].dtype.is_numeric():
            raise OtuFileError(f"Column {col} is not numeric", path)
    return df
