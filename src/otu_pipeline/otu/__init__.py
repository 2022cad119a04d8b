"""OTU count files, cohort generations and taxa tables."""

from otu_pipeline.otu.compile import CohortSummary, compile_cohort
from otu_pipeline.otu.io import (
    PROVENANCE_FILE,
    SUMMARY_FILE,
    count_file_name,
    is_count_file,
    read_cohort,
    read_count_file,
    sample_id_from_count_file,
    staged_directory,
    write_count_file,
    write_generation,
)
from otu_pipeline.otu.taxa_tables import (
    PATHWAY_TABLE,
    SAMPLE_ID_COL,
    build_taxa_tables,
    read_taxa_table,
    taxa_table_name,
    write_taxa_table,
)

__all__ = [
    "CohortSummary",
    "compile_cohort",
    "PROVENANCE_FILE",
    "SUMMARY_FILE",
    "count_file_name",
    "is_count_file",
    "read_cohort",
    "read_count_file",
    "sample_id_from_count_file",
    "staged_directory",
    "write_count_file",
    "write_generation",
    "PATHWAY_TABLE",
    "SAMPLE_ID_COL",
    "build_taxa_tables",
    "read_taxa_table",
    "taxa_table_name",
    "write_taxa_table",
]
