"""Classifier report adapters and per-sample aggregation."""

from otu_pipeline.parsers.aggregate import (
    PATHWAY_LEVEL,
    ParsedSample,
    SampleAggregator,
    group_input_files,
    parse_cohort,
    parse_sample_file,
    sample_id_from_file,
)
from otu_pipeline.parsers.models import (
    FORMAT_KINDS,
    OTU_COUNT_COLUMN,
    FormatKind,
    MatrixFlavor,
    ParseContext,
    SampleIdMap,
)

__all__ = [
    "PATHWAY_LEVEL",
    "ParsedSample",
    "SampleAggregator",
    "group_input_files",
    "parse_cohort",
    "parse_sample_file",
    "sample_id_from_file",
    "FORMAT_KINDS",
    "OTU_COUNT_COLUMN",
    "FormatKind",
    "MatrixFlavor",
    "ParseContext",
    "SampleIdMap",
]
