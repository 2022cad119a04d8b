"""Rarefy command: subsample every sample to a common depth."""

import logging
import sys
from pathlib import Path

import click

from otu_pipeline.cli.common import PARSED_DIR, emit_stage_result, load_stage_config
from otu_pipeline.otu import read_cohort
from otu_pipeline.persistence import ProvenanceTracker
from otu_pipeline.transform import rarefy_cohort
from otu_pipeline.transform.rarefy import rarefy_tag

logger = logging.getLogger(__name__)


@click.command('rarefy')
@click.option(
    '--input-dir',
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help='Generation of otuCount files (default: <data_dir>/parsed)'
)
@click.option(
    '--output-dir',
    type=click.Path(path_type=Path),
    default=None,
    help='Generation directory (default: <data_dir>/rarefyQ<percent>)'
)
@click.option(
    '--force',
    is_flag=True,
    help='Overwrite an existing generation'
)
@click.pass_context
def rarefy(ctx, input_dir, output_dir, force):
    """Rarefy OTU counts to the rarefy.quantile depth of sample totals.

    Each sample is shuffled and truncated rarefy.iterations times; the floor
    of the mean tally per OTU is kept. Samples below the depth are removed
    when rarefy.remove_low_samples is set.
    """
    click.echo(click.style("=== Rarefy OTU Counts ===", bold=True))
    click.echo()

    try:
        config = load_stage_config(ctx)
        input_dir = input_dir or Path(config.data_dir) / PARSED_DIR
        output_dir = output_dir or Path(config.data_dir) / rarefy_tag(config.rarefy.quantile)
        provenance = ProvenanceTracker.from_config(config)

        click.echo(f"Reading count files from {input_dir}...")
        cohort = read_cohort(input_dir)
        click.echo(click.style(f"  Loaded {len(cohort)} samples", fg='green'))
        click.echo()

        click.echo(f"Rarefying at quantile {config.rarefy.quantile}...")
        result = rarefy_cohort(cohort, config.rarefy)
        click.echo(click.style(f"  Depth: {result.details['depth']}", fg='green'))
        if result.dropped_samples:
            click.echo(click.style(
                f"  Dropped samples: {', '.join(result.dropped_samples)}",
                fg='yellow'
            ))
        click.echo()

        sidecar = emit_stage_result(config, result, output_dir, force, provenance)

        click.echo(click.style("=== Rarefy Summary ===", bold=True))
        click.echo(f"Samples kept: {len(result.cohort)}")
        click.echo(f"Total count removed: {result.removed_total}")
        click.echo(f"Provenance: {sidecar}")
        click.echo()
        click.echo(click.style("Rarefy complete!", fg='green', bold=True))

    except Exception as e:
        click.echo(click.style(f"Rarefy failed: {e}", fg='red'), err=True)
        logger.exception("Rarefy command failed")
        sys.exit(1)
