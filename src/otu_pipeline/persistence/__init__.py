"""Persistence layer for pipeline checkpoints and provenance tracking."""

from otu_pipeline.persistence.duckdb_store import PipelineStore
from otu_pipeline.persistence.provenance import ProvenanceTracker

__all__ = ["PipelineStore", "ProvenanceTracker"]
