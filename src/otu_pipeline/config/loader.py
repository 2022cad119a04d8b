"""Configuration loading with YAML parsing and validation."""

from pathlib import Path
from typing import Any

import pydantic_yaml
import yaml

from .schema import PipelineConfig


def load_config(config_path: Path | str) -> PipelineConfig:
    """
    Load and validate pipeline configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated PipelineConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If config is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        yaml_content = f.read()

    return pydantic_yaml.parse_yaml_raw_as(PipelineConfig, yaml_content)


def parse_override(assignment: str) -> tuple[str, Any]:
    """Split a "rarefy.quantile=0.25" assignment, reading the value as YAML.

    Raises:
        ValueError: If there is no "=" or the key is empty
    """
    key, sep, raw = assignment.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"Expected KEY=VALUE, got {assignment!r}")
    return key, yaml.safe_load(raw) if raw.strip() else None


def load_config_with_overrides(
    config_path: Path | str,
    overrides: dict[str, Any],
) -> PipelineConfig:
    """
    Load config from YAML and apply dotted-key overrides, e.g. from `--set`.

    Args:
        config_path: Path to YAML configuration file
        overrides: Values keyed by field path, e.g. "rarefy.quantile"

    Returns:
        Validated PipelineConfig with overrides applied

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If an override names a field the config does not have
        pydantic.ValidationError: If final config is invalid
    """
    config = load_config(config_path)
    if not overrides:
        return config

    config_dict = config.model_dump()
    for key, value in overrides.items():
        *sections, field = key.split(".")
        target = config_dict
        for section in sections:
            target = target.get(section) if isinstance(target, dict) else None
        if not isinstance(target, dict) or field not in target:
            raise ValueError(f"Unknown config key: {key}")
        target[field] = value

    return PipelineConfig.model_validate(config_dict)
