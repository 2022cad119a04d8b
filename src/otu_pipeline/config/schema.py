"""Pydantic models for pipeline configuration."""

import hashlib
import json
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

# Full taxonomy hierarchy, top to bottom
TAXONOMY_LEVELS = ["domain", "phylum", "class", "order", "family", "genus", "species"]

# Input formats understood by the parser layer
SUPPORTED_FORMATS = [
    "score_gated",
    "read_lineage",
    "cumulative_path",
    "per_level_file",
    "taxa_matrix",
    "pathway_matrix",
]

LOG_BASES = ("e", "10")


class TaxonomyConfig(BaseModel):
    """Taxonomy ranks reported by the pipeline."""

    levels: list[str] = Field(
        default_factory=lambda: list(TAXONOMY_LEVELS),
        description="Contiguous run of taxonomy ranks to report (top to bottom)",
    )
    fill_to_bottom: bool = Field(
        default=False,
        description="Fill ranks below the deepest assignment with Unclassified placeholders",
    )

    @field_validator("levels")
    @classmethod
    def validate_levels(cls, v: list[str]) -> list[str]:
        """Lowercase, order canonically and require a contiguous run of ranks."""
        levels = [level.strip().lower() for level in v]
        if not levels:
            raise ValueError("At least one taxonomy level must be configured")

        unknown = [level for level in levels if level not in TAXONOMY_LEVELS]
        if unknown:
            raise ValueError(
                f"Invalid taxonomy levels {unknown}, valid options: {TAXONOMY_LEVELS}"
            )

        indexes = sorted({TAXONOMY_LEVELS.index(level) for level in levels})
        if indexes != list(range(indexes[0], indexes[-1] + 1)):
            raise ValueError(
                f"Taxonomy levels must be contiguous, got {[TAXONOMY_LEVELS[i] for i in indexes]}"
            )

        return [TAXONOMY_LEVELS[i] for i in indexes]


class ParserConfig(BaseModel):
    """Classifier report parsing options."""

    format: str = Field(
        default="cumulative_path",
        description="Classifier report format",
    )
    rdp_threshold: int = Field(
        default=80,
        ge=0,
        le=100,
        description="Minimum confidence score (0-100) for score-gated assignments",
    )
    mapping_file: Path | None = Field(
        default=None,
        description="Mapping file translating matrix header ids to sample ids",
    )
    mapping_file_column: str = Field(
        default="InputFileName",
        description="Mapping file column holding the original input file name",
    )
    keep_unmapped_pathways: bool = Field(
        default=False,
        description="Keep UNMAPPED/UNINTEGRATED rows of pathway matrices",
    )
    workers: int = Field(
        default=1,
        ge=1,
        description="Number of worker processes used to parse sample files",
    )

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported format '{v}', valid options: {SUPPORTED_FORMATS}")
        return v


class FilterConfig(BaseModel):
    """Low-count and scarce-OTU filter thresholds."""

    min_count: int = Field(
        default=2,
        ge=1,
        description="OTUs with a count below this value are removed per sample",
    )
    scarce_cutoff: float = Field(
        default=0.25,
        gt=0.0,
        lt=1.0,
        description="OTUs found in fewer than this fraction of samples are removed",
    )


class RarefyConfig(BaseModel):
    """Rarefaction parameters."""

    quantile: float = Field(
        default=0.5,
        gt=0.0,
        lt=1.0,
        description="Quantile of sample depths used as the rarefaction depth",
    )
    iterations: int = Field(
        default=10,
        ge=1,
        description="Number of random subsampling iterations per sample",
    )
    remove_low_samples: bool = Field(
        default=True,
        description="Drop samples whose total count is below the rarefaction depth",
    )
    seed: int = Field(
        default=42,
        ge=0,
        description="Random seed for reproducible subsampling",
    )


class NormalizeConfig(BaseModel):
    """Normalization and log transform options."""

    log_base: str | None = Field(
        default=None,
        description='Log base for transformed tables: "e", "10" or unset',
    )

    @field_validator("log_base", mode="before")
    @classmethod
    def validate_log_base(cls, v):
        """YAML reads 10 as an int, so coerce before checking the allowed values."""
        if v is None:
            return None
        v = str(v).strip()
        if v not in LOG_BASES:
            raise ValueError(f'log_base only accepts "e" or "10", got "{v}"')
        return v


class PipelineConfig(BaseModel):
    """Main pipeline configuration."""

    data_dir: Path = Field(
        ...,
        description="Directory holding count table generations",
    )
    duckdb_path: Path = Field(
        ...,
        description="Path to DuckDB database file",
    )
    taxonomy: TaxonomyConfig = Field(
        default_factory=TaxonomyConfig,
        description="Taxonomy rank configuration",
    )
    parser: ParserConfig = Field(
        default_factory=ParserConfig,
        description="Classifier report parser configuration",
    )
    filters: FilterConfig = Field(
        default_factory=FilterConfig,
        description="OTU filter configuration",
    )
    rarefy: RarefyConfig = Field(
        default_factory=RarefyConfig,
        description="Rarefaction configuration",
    )
    normalize: NormalizeConfig = Field(
        default_factory=NormalizeConfig,
        description="Normalization configuration",
    )
    report_num_hits: bool = Field(
        default=True,
        description="Persist per-sample hit counts after each stage",
    )

    @field_validator("data_dir")
    @classmethod
    def create_directory(cls, v: Path) -> Path:
        """Create directory if it doesn't exist."""
        v.mkdir(parents=True, exist_ok=True)
        return v

    def config_hash(self) -> str:
        """
        Compute SHA-256 hash of the configuration.

        Returns a deterministic hash based on all config values,
        useful for tracking config changes between generations.
        """
        config_dict = self.model_dump(mode="python")
        config_json = json.dumps(
            config_dict,
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(config_json.encode()).hexdigest()
