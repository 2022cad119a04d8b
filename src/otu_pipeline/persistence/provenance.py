"""Provenance tracking for pipeline reproducibility."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class ProvenanceTracker:
    """
    Tracks provenance metadata for one pipeline command.

    Records pipeline version, config hash, taxonomy ranks, input format
    and the processing steps that produced a generation.
    """

    def __init__(self, pipeline_version: str, config: "PipelineConfig"):
        """
        Initialize provenance tracker.

        Args:
            pipeline_version: Pipeline version string (e.g., "0.1.0")
            config: PipelineConfig instance
        """
        self.pipeline_version = pipeline_version
        self.config_hash = config.config_hash()
        self.taxonomy_levels = list(config.taxonomy.levels)
        self.input_format = config.parser.format
        self.processing_steps = []
        self.created_at = datetime.now(timezone.utc)

    def record_step(self, step_name: str, details: Optional[dict] = None) -> None:
        """
        Record a processing step.

        Args:
            step_name: Name of the processing step
            details: Optional dictionary of stage parameters and statistics
        """
        step = {
            "name": step_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if details:
            step["details"] = details
        self.processing_steps.append(step)

    def create_metadata(self) -> dict:
        """
        Create full provenance metadata dictionary.

        Returns:
            Dictionary with all provenance information
        """
        return {
            "pipeline_version": self.pipeline_version,
            "config_hash": self.config_hash,
            "taxonomy_levels": self.taxonomy_levels,
            "input_format": self.input_format,
            "created_at": self.created_at.isoformat(),
            "processing_steps": self.processing_steps,
        }

    def save_sidecar(self, output_path: Path) -> Path:
        """
        Save provenance metadata as a JSON sidecar next to an output.

        Args:
            output_path: Generation directory or output file.
                         Sidecar is saved as {name}.provenance.json beside it.

        Returns:
            Path to the sidecar file
        """
        output_path = Path(output_path)
        sidecar_path = output_path.parent / f"{output_path.name}.provenance.json"
        sidecar_path.parent.mkdir(parents=True, exist_ok=True)

        with open(sidecar_path, "w") as f:
            json.dump(self.create_metadata(), f, indent=2, default=str)
        return sidecar_path

    def save_to_store(self, store: "PipelineStore") -> None:
        """
        Append this run's provenance to the DuckDB store.

        Args:
            store: PipelineStore instance
        """
        metadata = self.create_metadata()

        store.conn.execute("""
            CREATE TABLE IF NOT EXISTS _provenance (
                version VARCHAR,
                config_hash VARCHAR,
                taxonomy_levels VARCHAR,
                created_at TIMESTAMP,
                steps_json VARCHAR
            )
        """)

        store.conn.execute("""
            INSERT INTO _provenance (version, config_hash, taxonomy_levels, created_at, steps_json)
            VALUES (?, ?, ?, ?, ?)
        """, [
            metadata["pipeline_version"],
            metadata["config_hash"],
            ",".join(metadata["taxonomy_levels"]),
            metadata["created_at"],
            json.dumps(metadata["processing_steps"], default=str),
        ])

    @classmethod
    def from_config(
        cls,
        config: "PipelineConfig",
        version: Optional[str] = None
    ) -> "ProvenanceTracker":
        """
        Create ProvenanceTracker from a PipelineConfig.

        Args:
            config: PipelineConfig instance
            version: Pipeline version string. If None, uses otu_pipeline.__version__

        Returns:
            ProvenanceTracker instance
        """
        if version is None:
            from otu_pipeline import __version__
            version = __version__

        return cls(version, config)
