"""Depth normalization and log transform of taxa tables.

Normalized value of a cell:

    (table_total / n_samples) * (raw / row_sum)

which rescales every sample to the average sequencing depth of the cohort.
Log tables apply log_base(value + 1).
"""

import math

import polars as pl
import structlog

from otu_pipeline.config.schema import LOG_BASES
from otu_pipeline.exceptions import NormalizationError
from otu_pipeline.otu.taxa_tables import SAMPLE_ID_COL

logger = structlog.get_logger()

NORM_TAG = "norm"


def log_tag(base: str) -> str:
    """Tag used in log table file names, e.g. "Log10"."""
    return f"Log{base}"


def _row_sums(df: pl.DataFrame) -> pl.Series:
    value_cols = [col for col in df.columns if col != SAMPLE_ID_COL]
    if not value_cols:
        return pl.Series("row_sum", [0.0] * df.height)
    return df.select(pl.sum_horizontal(value_cols).cast(pl.Float64).alias("row_sum"))["row_sum"]


def check_nonzero_rows(df: pl.DataFrame) -> pl.Series:
    """Row sums of a taxa table.

    Raises:
        NormalizationError: Naming the first sample whose row sum is zero
    """
    row_sums = _row_sums(df)
    zero = row_sums == 0
    if zero.any():
        sample_id = df[SAMPLE_ID_COL][zero.arg_true()[0]]
        raise NormalizationError(sample_id, "row sum is zero, cannot normalize")
    return row_sums


def normalize_table(df: pl.DataFrame) -> pl.DataFrame:
    """Rescale each sample to the cohort's average depth.

    Args:
        df: Taxa table with sample_id first and raw counts in the other columns

    Returns:
        Float64 table with the same shape

    Raises:
        NormalizationError: If any sample's row sum is zero
    """
    row_sums = check_nonzero_rows(df)
    mean_depth = row_sums.sum() / df.height
    value_cols = [col for col in df.columns if col != SAMPLE_ID_COL]

    return (
        df.with_columns(row_sums.alias("_row_sum"))
        .with_columns([
            (pl.col(col).cast(pl.Float64) * mean_depth / pl.col("_row_sum")).alias(col)
            for col in value_cols
        ])
        .drop("_row_sum")
    )


def log_table(df: pl.DataFrame, base: str) -> pl.DataFrame:
    """Apply log_base(x + 1) to every count column.

    Raises:
        ValueError: If base is not "e" or "10"
    """
    if base not in LOG_BASES:
        raise ValueError(f'log base only accepts "e" or "10", got "{base}"')
    log_base = math.e if base == "e" else 10.0
    value_cols = [col for col in df.columns if col != SAMPLE_ID_COL]
    return df.with_columns([
        (pl.col(col).cast(pl.Float64) + 1.0).log(log_base).alias(col)
        for col in value_cols
    ])


def normalize_tables(
    tables: dict[str, pl.DataFrame],
    log_base: str | None = None,
) -> dict[str, pl.DataFrame]:
    """Normalize every rank table, optionally adding log tables.

    Returns:
        Output tag ("norm_<rank>" or "norm_Log<base>_<rank>") -> table
    """
    output = {}
    for level, df in tables.items():
        normalized = normalize_table(df)
        output[f"{NORM_TAG}_{level}"] = normalized
        if log_base is not None:
            output[f"{NORM_TAG}_{log_tag(log_base)}_{level}"] = log_table(normalized, log_base)

    logger.info(
        "normalize_complete",
        tables=len(output),
        log_base=log_base,
    )
    return output


def log_transform_tables(tables: dict[str, pl.DataFrame], log_base: str) -> dict[str, pl.DataFrame]:
    """Log transform raw rank tables without normalizing.

    Returns:
        Output tag ("Log<base>_<rank>") -> table

    Raises:
        NormalizationError: If any sample's row sum is zero
    """
    output = {}
    for level, df in tables.items():
        check_nonzero_rows(df)
        output[f"{log_tag(log_base)}_{level}"] = log_table(df, log_base)

    logger.info("log_transform_complete", tables=len(output), log_base=log_base)
    return output
