"""Normalization commands: depth normalization and log transform of taxa tables."""

import logging
import sys
from pathlib import Path

import click

from otu_pipeline.cli.common import TABLES_DIR, load_stage_config, read_table_dir, write_table_dir
from otu_pipeline.config.schema import LOG_BASES
from otu_pipeline.persistence import ProvenanceTracker
from otu_pipeline.taxonomy import TaxonomyLevels
from otu_pipeline.transform import log_transform_tables, normalize_tables

logger = logging.getLogger(__name__)


def _table_dirs(config, input_dir, output_dir, default_output):
    input_dir = input_dir or Path(config.data_dir) / TABLES_DIR
    output_dir = output_dir or Path(config.data_dir) / default_output
    return input_dir, output_dir


@click.command('normalize')
@click.option(
    '--input-dir',
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help='Directory of taxaCount_<rank>.tsv tables (default: <data_dir>/tables)'
)
@click.option(
    '--output-dir',
    type=click.Path(path_type=Path),
    default=None,
    help='Output directory (default: <data_dir>/normalized)'
)
@click.option(
    '--force',
    is_flag=True,
    help='Overwrite an existing output directory'
)
@click.pass_context
def normalize(ctx, input_dir, output_dir, force):
    """Rescale every sample of each taxa table to the cohort's mean depth.

    When normalize.log_base is set ("e" or "10"), log(norm + 1) tables are
    written alongside as taxaCount_norm_Log<base>_<rank>.tsv.
    """
    click.echo(click.style("=== Normalize Taxa Tables ===", bold=True))
    click.echo()

    try:
        config = load_stage_config(ctx)
        input_dir, output_dir = _table_dirs(config, input_dir, output_dir, "normalized")
        provenance = ProvenanceTracker.from_config(config)
        levels = TaxonomyLevels.from_config(config.taxonomy)

        click.echo(f"Reading taxa tables from {input_dir}...")
        tables = read_table_dir(input_dir, levels)
        click.echo(click.style(f"  Loaded {len(tables)} tables", fg='green'))
        click.echo()

        click.echo("Normalizing...")
        normalized = normalize_tables(tables, log_base=config.normalize.log_base)
        for path in write_table_dir(normalized, output_dir, force):
            click.echo(click.style(f"  {path}", fg='green'))
        click.echo()

        provenance.record_step('normalize', {
            "input_dir": str(input_dir),
            "log_base": config.normalize.log_base,
            "tables": list(normalized),
        })
        sidecar = provenance.save_sidecar(output_dir)
        click.echo(f"Provenance: {sidecar}")
        click.echo(click.style("Normalize complete!", fg='green', bold=True))

    except Exception as e:
        click.echo(click.style(f"Normalize failed: {e}", fg='red'), err=True)
        logger.exception("Normalize command failed")
        sys.exit(1)


@click.command('log-transform')
@click.option(
    '--input-dir',
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help='Directory of taxaCount_<rank>.tsv tables (default: <data_dir>/tables)'
)
@click.option(
    '--output-dir',
    type=click.Path(path_type=Path),
    default=None,
    help='Output directory (default: <data_dir>/logTransformed)'
)
@click.option(
    '--log-base',
    type=click.Choice(LOG_BASES),
    default=None,
    help='Logarithm base (default: normalize.log_base from config)'
)
@click.option(
    '--force',
    is_flag=True,
    help='Overwrite an existing output directory'
)
@click.pass_context
def log_transform(ctx, input_dir, output_dir, log_base, force):
    """Apply log(x + 1) to raw taxa tables without normalizing."""
    click.echo(click.style("=== Log Transform Taxa Tables ===", bold=True))
    click.echo()

    try:
        config = load_stage_config(ctx)
        log_base = log_base or config.normalize.log_base
        if log_base is None:
            click.echo(click.style(
                "No log base: pass --log-base or set normalize.log_base",
                fg='red'
            ), err=True)
            sys.exit(1)

        input_dir, output_dir = _table_dirs(config, input_dir, output_dir, "logTransformed")
        provenance = ProvenanceTracker.from_config(config)
        levels = TaxonomyLevels.from_config(config.taxonomy)

        click.echo(f"Reading taxa tables from {input_dir}...")
        tables = read_table_dir(input_dir, levels)
        click.echo(click.style(f"  Loaded {len(tables)} tables", fg='green'))
        click.echo()

        click.echo(f"Applying log{log_base}(x + 1)...")
        transformed = log_transform_tables(tables, log_base)
        for path in write_table_dir(transformed, output_dir, force):
            click.echo(click.style(f"  {path}", fg='green'))
        click.echo()

        provenance.record_step('log_transform', {
            "input_dir": str(input_dir),
            "log_base": log_base,
            "tables": list(transformed),
        })
        sidecar = provenance.save_sidecar(output_dir)
        click.echo(f"Provenance: {sidecar}")
        click.echo(click.style("Log transform complete!", fg='green', bold=True))

    except Exception as e:
        click.echo(click.style(f"Log transform failed: {e}", fg='red'), err=True)
        logger.exception("Log transform command failed")
        sys.exit(1)
