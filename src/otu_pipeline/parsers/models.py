"""Data models shared by the classifier report adapters."""

from enum import Enum
from pathlib import Path

import polars as pl
import structlog
from pydantic import BaseModel, ConfigDict, Field

from otu_pipeline.config.schema import PipelineConfig
from otu_pipeline.exceptions import ParseError
from otu_pipeline.taxonomy.levels import TaxonomyLevels, strip_quotes

logger = structlog.get_logger()

# Column in the per-sample side channel written by the parse step
OTU_COUNT_COLUMN = "OTU_COUNT"


class FormatKind(str, Enum):
    """Classifier report grammar, selected once per input directory."""

    SCORE_GATED = "score_gated"
    READ_LINEAGE = "read_lineage"
    CUMULATIVE_PATH = "cumulative_path"
    PER_LEVEL_FILE = "per_level_file"
    MATRIX = "matrix"


class MatrixFlavor(str, Enum):
    """Row content of a sample-by-feature matrix."""

    TAXA = "taxa"
    PATHWAY = "pathway"


# Config format string -> (kind, matrix flavor)
FORMAT_KINDS: dict[str, tuple[FormatKind, MatrixFlavor | None]] = {
    "score_gated": (FormatKind.SCORE_GATED, None),
    "read_lineage": (FormatKind.READ_LINEAGE, None),
    "cumulative_path": (FormatKind.CUMULATIVE_PATH, None),
    "per_level_file": (FormatKind.PER_LEVEL_FILE, None),
    "taxa_matrix": (FormatKind.MATRIX, MatrixFlavor.TAXA),
    "pathway_matrix": (FormatKind.MATRIX, MatrixFlavor.PATHWAY),
}


class SampleIdMap(BaseModel):
    """Translation from matrix header ids back to pipeline sample ids.

    Built once from a tab-delimited mapping file whose first column holds the
    classifier-side id and whose designated column holds the original input
    file name (extension stripped). An empty map translates ids unchanged.
    """

    model_config = ConfigDict(frozen=True)

    ids: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_mapping_file(cls, path: Path, column: str = "InputFileName") -> "SampleIdMap":
        """Read the mapping file.

        Raises:
            ParseError: If the file is empty or lacks the designated column
        """
        try:
            df = pl.read_csv(path, separator="\t", infer_schema_length=0, quote_char=None)
        except pl.exceptions.NoDataError as e:
            raise ParseError("Mapping file is empty", path) from e

        columns = {strip_quotes(name).strip(): name for name in df.columns}
        if column not in columns:
            raise ParseError(f"Unable to find column {column} in header {list(columns)}", path, 1)

        ids = {}
        for classifier_id, file_name in df.select(df.columns[0], columns[column]).iter_rows():
            classifier_id = strip_quotes(classifier_id or "").strip()
            if not classifier_id:
                continue
            file_name = strip_quotes(file_name or "").strip()
            ids[classifier_id] = file_name.split(".")[0] if file_name else classifier_id

        logger.info("sample_id_map_loaded", path=str(path), entries=len(ids))
        return cls(ids=ids)

    def translate(self, header_id: str) -> str:
        """Sample id for a matrix header id.

        Raises:
            KeyError: If the map is non-empty and the id is not in it
        """
        if not self.ids:
            return header_id
        return self.ids[header_id]


class ParseContext(BaseModel):
    """Everything an adapter needs to parse one input, passed explicitly.

    Picklable, so it can be shipped to worker processes.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: FormatKind
    flavor: MatrixFlavor | None = None
    levels: TaxonomyLevels = Field(default_factory=TaxonomyLevels)
    rdp_threshold: int = 80
    fill_to_bottom: bool = False
    keep_unmapped_pathways: bool = False
    sample_ids: SampleIdMap = Field(default_factory=SampleIdMap)

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ParseContext":
        """Build the parse context, loading the sample id map if configured."""
        kind, flavor = FORMAT_KINDS[config.parser.format]
        sample_ids = SampleIdMap()
        if config.parser.mapping_file is not None:
            sample_ids = SampleIdMap.from_mapping_file(
                config.parser.mapping_file, config.parser.mapping_file_column
            )

        return cls(
            kind=kind,
            flavor=flavor,
            levels=TaxonomyLevels.from_config(config.taxonomy),
            rdp_threshold=config.parser.rdp_threshold,
            fill_to_bottom=config.taxonomy.fill_to_bottom,
            keep_unmapped_pathways=config.parser.keep_unmapped_pathways,
            sample_ids=sample_ids,
        )
