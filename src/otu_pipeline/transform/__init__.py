"""Count-table post-processing stages."""

from otu_pipeline.transform.filters import (
    LOW_COUNT_AUDIT_FILE,
    SCARCE_AUDIT_FILE,
    filter_low_counts,
    filter_scarce_otus,
    find_scarce_taxa,
)
from otu_pipeline.transform.models import StageResult
from otu_pipeline.transform.normalize import (
    log_transform_tables,
    normalize_table,
    normalize_tables,
)
from otu_pipeline.transform.rarefy import rarefaction_depth, rarefy_cohort, rarefy_sample

__all__ = [
    "LOW_COUNT_AUDIT_FILE",
    "SCARCE_AUDIT_FILE",
    "filter_low_counts",
    "filter_scarce_otus",
    "find_scarce_taxa",
    "StageResult",
    "log_transform_tables",
    "normalize_table",
    "normalize_tables",
    "rarefaction_depth",
    "rarefy_cohort",
    "rarefy_sample",
]
