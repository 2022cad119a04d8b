"""Main CLI entry point for otu-pipeline.

Provides command group with global options and subcommands for pipeline stages.
"""

import logging
from pathlib import Path

import click
import structlog

from otu_pipeline import __version__
from otu_pipeline.config.loader import load_config_with_overrides, parse_override
from otu_pipeline.cli.parse_cmd import parse
from otu_pipeline.cli.compile_cmd import compile_tables
from otu_pipeline.cli.normalize_cmd import normalize, log_transform
from otu_pipeline.cli.rarefy_cmd import rarefy
from otu_pipeline.cli.filter_cmd import filter_low, filter_scarce
from otu_pipeline.persistence import PipelineStore


def collect_overrides(ctx, param, values) -> dict:
    """Turn repeated --set KEY=VALUE options into an overrides dict."""
    overrides = {}
    for assignment in values:
        try:
            key, value = parse_override(assignment)
        except ValueError as e:
            raise click.BadParameter(str(e), ctx=ctx, param=param) from e
        overrides[key] = value
    return overrides


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


@click.group()
@click.option(
    '--config',
    type=click.Path(exists=True, path_type=Path),
    default='config/default.yaml',
    help='Path to pipeline configuration YAML file'
)
@click.option(
    '--set',
    'overrides',
    multiple=True,
    metavar='KEY=VALUE',
    callback=collect_overrides,
    help='Override a config value, e.g. --set rarefy.quantile=0.25 (repeatable)'
)
@click.option(
    '--verbose',
    is_flag=True,
    help='Enable verbose logging (DEBUG level)'
)
@click.pass_context
def cli(ctx, config, overrides, verbose):
    """otu-pipeline: Turn taxonomic classifier reports into OTU count tables.

    Parses RDP, Kraken, MetaPhlAn, Kraken2, SLIMM, QIIME and HUMAnN2 output
    into per-sample counts, then compiles, rarefies, filters and normalizes
    them.
    """
    # Set up context
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['overrides'] = overrides
    ctx.obj['verbose'] = verbose

    # Set logging level
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger().setLevel(level)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))
    if verbose:
        logging.debug("Verbose logging enabled")


@cli.command()
@click.pass_context
def info(ctx):
    """Display pipeline information and configuration summary."""
    config_path = ctx.obj['config_path']

    click.echo(f"OTU Pipeline v{__version__}")
    click.echo(f"Config: {config_path}")
    click.echo()

    try:
        config = load_config_with_overrides(config_path, ctx.obj['overrides'])

        config_hash = config.config_hash()
        click.echo(f"Config Hash: {config_hash[:16]}...")
        click.echo()

        click.echo(click.style("Taxonomy:", bold=True))
        click.echo(f"  Levels: {', '.join(config.taxonomy.levels)}")
        click.echo(f"  Fill to bottom: {config.taxonomy.fill_to_bottom}")
        click.echo()

        click.echo(click.style("Parser:", bold=True))
        click.echo(f"  Format: {config.parser.format}")
        click.echo(f"  RDP threshold: {config.parser.rdp_threshold}")
        click.echo(f"  Mapping file: {config.parser.mapping_file}")
        click.echo(f"  Workers: {config.parser.workers}")
        click.echo()

        click.echo(click.style("Stages:", bold=True))
        click.echo(f"  Min count: {config.filters.min_count}")
        click.echo(f"  Scarce cutoff: {config.filters.scarce_cutoff}")
        click.echo(f"  Rarefy quantile: {config.rarefy.quantile} "
                   f"({config.rarefy.iterations} iterations, seed {config.rarefy.seed})")
        click.echo(f"  Log base: {config.normalize.log_base}")
        click.echo()

        click.echo(click.style("Paths:", bold=True))
        click.echo(f"  Data Directory: {config.data_dir}")
        click.echo(f"  DuckDB Path: {config.duckdb_path}")

        if config.report_num_hits and config.duckdb_path.exists():
            with PipelineStore.from_config(config) as store:
                hits = store.load_sample_hits()
            if hits is not None:
                click.echo()
                click.echo(click.style("Hits per sample:", bold=True))
                click.echo(f"  Samples: {hits.height}")
                click.echo(f"  Columns: {', '.join(hits.columns[1:])}")

    except Exception as e:
        click.echo(click.style(f"Error loading config: {e}", fg='red'), err=True)
        ctx.exit(1)


# Register commands
cli.add_command(parse)
cli.add_command(compile_tables)
cli.add_command(normalize)
cli.add_command(log_transform)
cli.add_command(rarefy)
cli.add_command(filter_low)
cli.add_command(filter_scarce)


if __name__ == '__main__':
    cli()
