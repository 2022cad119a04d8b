from .loader import load_config, load_config_with_overrides
from .schema import (
    FilterConfig,
    NormalizeConfig,
    ParserConfig,
    PipelineConfig,
    RarefyConfig,
    TaxonomyConfig,
)

__all__ = [
    "load_config",
    "load_config_with_overrides",
    "PipelineConfig",
    "TaxonomyConfig",
    "ParserConfig",
    "FilterConfig",
    "RarefyConfig",
    "NormalizeConfig",
]
