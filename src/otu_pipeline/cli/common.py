"""Helpers shared by the stage commands."""

import logging
from pathlib import Path

import click
import polars as pl

from otu_pipeline.config.loader import load_config_with_overrides
from otu_pipeline.config.schema import PipelineConfig
from otu_pipeline.exceptions import OtuFileError
from otu_pipeline.otu import (
    read_taxa_table,
    staged_directory,
    taxa_table_name,
    write_generation,
    write_taxa_table,
)
from otu_pipeline.otu.taxa_tables import PATHWAY_TABLE
from otu_pipeline.persistence import PipelineStore, ProvenanceTracker
from otu_pipeline.transform import StageResult

logger = logging.getLogger(__name__)

PARSED_DIR = "parsed"
TABLES_DIR = "tables"


def load_stage_config(ctx) -> PipelineConfig:
    config_path = ctx.obj['config_path']
    click.echo("Loading configuration...")
    overrides = ctx.obj.get('overrides', {})
    config = load_config_with_overrides(config_path, overrides)
    click.echo(click.style(f"  Config loaded: {config_path}", fg='green'))
    for key, value in overrides.items():
        click.echo(f"  Override: {key} = {value}")
    click.echo()
    return config


def persist_hits(
    config: PipelineConfig,
    column: str,
    hits: dict[str, int],
    provenance: ProvenanceTracker,
) -> None:
    """Write one hits-per-sample column and the run's provenance to DuckDB."""
    if not config.report_num_hits:
        logger.debug("Skipping hits column %s (report_num_hits is off)", column)
        return

    with PipelineStore.from_config(config) as store:
        store.save_sample_hits(column, hits)
        provenance.save_to_store(store)
    click.echo(click.style(f"  Saved '{column}' for {len(hits)} samples", fg='green'))


def emit_stage_result(
    config: PipelineConfig,
    result: StageResult,
    output_dir: Path,
    force: bool,
    provenance: ProvenanceTracker,
) -> Path:
    """Write a stage's generation, hits column and provenance sidecar.

    Returns:
        Path to the provenance sidecar
    """
    click.echo(f"Writing generation to {output_dir}...")
    paths = write_generation(
        output_dir,
        result.cohort,
        stage=result.stage,
        tag=result.tag,
        details=result.provenance_details(),
        audit_files=result.audit,
        overwrite=force,
    )
    click.echo(click.style(f"  {len(result.cohort)} samples written", fg='green'))
    for file_name, lines in result.audit.items():
        click.echo(f"  Audit: {paths['dir'] / file_name} ({len(lines)} entries)")
    click.echo()

    provenance.record_step(result.stage, result.provenance_details())
    persist_hits(config, result.hits_column, result.hits, provenance)
    return provenance.save_sidecar(paths['dir'])


def read_table_dir(input_dir: Path, levels) -> dict[str, pl.DataFrame]:
    """Load the untagged taxaCount_<rank>.tsv tables of a directory.

    Raises:
        OtuFileError: If no taxa table is found
    """
    tables = {}
    for level in [*levels, PATHWAY_TABLE]:
        path = input_dir / taxa_table_name(level)
        if path.exists():
            tables[level] = read_taxa_table(path)

    if not tables:
        raise OtuFileError("No taxa tables found", input_dir)
    return tables


def write_table_dir(
    tables: dict[str, pl.DataFrame],
    output_dir: Path,
    force: bool = False,
) -> list[Path]:
    """Write tagged tables, keys like "norm_genus", as taxaCount_<key>.tsv.

    The directory is staged and renamed into place; an existing one is only
    replaced when force is set.
    """
    with staged_directory(output_dir, overwrite=force) as tmp_dir:
        for key, df in tables.items():
            write_taxa_table(df, tmp_dir / taxa_table_name(key))
    return [output_dir / taxa_table_name(key) for key in tables]
