"""Taxonomy ranks, paths and reconciliation of sparse assignments."""

from otu_pipeline.taxonomy.levels import (
    LEVEL_PREFIXES,
    OTU_SEPARATOR,
    TaxonomyLevels,
    level_for_prefix,
    strip_quotes,
    unclassified_taxon,
)
from otu_pipeline.taxonomy.models import RawAssignment, TaxonEntry, TaxonPath
from otu_pipeline.taxonomy.reconcile import (
    CladeCounts,
    rank_scoped_path,
    reconcile,
    redistribute_clade_counts,
)

__all__ = [
    "LEVEL_PREFIXES",
    "OTU_SEPARATOR",
    "TaxonomyLevels",
    "level_for_prefix",
    "strip_quotes",
    "unclassified_taxon",
    "RawAssignment",
    "TaxonEntry",
    "TaxonPath",
    "CladeCounts",
    "rank_scoped_path",
    "reconcile",
    "redistribute_clade_counts",
]
