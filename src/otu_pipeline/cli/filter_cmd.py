"""Filter commands: remove low-count OTUs and OTUs of scarce taxa."""

import logging
import sys
from pathlib import Path

import click

from otu_pipeline.cli.common import PARSED_DIR, emit_stage_result, load_stage_config
from otu_pipeline.otu import read_cohort
from otu_pipeline.persistence import ProvenanceTracker
from otu_pipeline.taxonomy import TaxonomyLevels
from otu_pipeline.transform import filter_low_counts, filter_scarce_otus
from otu_pipeline.transform.filters import low_count_tag, scarce_tag

logger = logging.getLogger(__name__)

INPUT_DIR_HELP = 'Generation of otuCount files (default: <data_dir>/parsed)'


def _print_summary(result, sidecar):
    click.echo(click.style("=== Filter Summary ===", bold=True))
    click.echo(f"Samples kept: {len(result.cohort)}")
    click.echo(f"Unique OTUs removed: {result.removed_unique}")
    click.echo(f"Total count removed: {result.removed_total}")
    if result.dropped_samples:
        click.echo(f"Dropped samples: {', '.join(result.dropped_samples)}")
    click.echo(f"Provenance: {sidecar}")
    click.echo()


@click.command('filter-low')
@click.option(
    '--input-dir',
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help=INPUT_DIR_HELP
)
@click.option(
    '--output-dir',
    type=click.Path(path_type=Path),
    default=None,
    help='Generation directory (default: <data_dir>/min<min_count>)'
)
@click.option(
    '--min-count',
    type=click.IntRange(min=1),
    default=None,
    help='Override filters.min_count'
)
@click.option(
    '--force',
    is_flag=True,
    help='Overwrite an existing generation'
)
@click.pass_context
def filter_low(ctx, input_dir, output_dir, min_count, force):
    """Remove, per sample, OTUs whose count is below the minimum."""
    click.echo(click.style("=== Low-Count OTU Filter ===", bold=True))
    click.echo()

    try:
        config = load_stage_config(ctx)
        min_count = min_count or config.filters.min_count
        input_dir = input_dir or Path(config.data_dir) / PARSED_DIR
        output_dir = output_dir or Path(config.data_dir) / low_count_tag(min_count)
        provenance = ProvenanceTracker.from_config(config)

        click.echo(f"Reading count files from {input_dir}...")
        cohort = read_cohort(input_dir)
        click.echo(click.style(f"  Loaded {len(cohort)} samples", fg='green'))
        click.echo()

        click.echo(f"Removing OTUs with count < {min_count}...")
        result = filter_low_counts(cohort, min_count)
        click.echo()

        sidecar = emit_stage_result(config, result, output_dir, force, provenance)
        _print_summary(result, sidecar)
        click.echo(click.style("Filter complete!", fg='green', bold=True))

    except Exception as e:
        click.echo(click.style(f"Low-count filter failed: {e}", fg='red'), err=True)
        logger.exception("Low-count filter command failed")
        sys.exit(1)


@click.command('filter-scarce')
@click.option(
    '--input-dir',
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help=INPUT_DIR_HELP
)
@click.option(
    '--output-dir',
    type=click.Path(path_type=Path),
    default=None,
    help='Generation directory (default: <data_dir>/scarce<percent>)'
)
@click.option(
    '--cutoff',
    type=click.FloatRange(min=0.0, max=1.0, min_open=True, max_open=True),
    default=None,
    help='Override filters.scarce_cutoff'
)
@click.option(
    '--force',
    is_flag=True,
    help='Overwrite an existing generation'
)
@click.pass_context
def filter_scarce(ctx, input_dir, output_dir, cutoff, force):
    """Remove OTUs containing a taxon found in too few samples.

    A taxon is scarce when it appears in fewer than
    ceil(cutoff * number of samples) samples.
    """
    click.echo(click.style("=== Scarce OTU Filter ===", bold=True))
    click.echo()

    try:
        config = load_stage_config(ctx)
        cutoff = cutoff or config.filters.scarce_cutoff
        input_dir = input_dir or Path(config.data_dir) / PARSED_DIR
        output_dir = output_dir or Path(config.data_dir) / scarce_tag(cutoff)
        provenance = ProvenanceTracker.from_config(config)
        levels = TaxonomyLevels.from_config(config.taxonomy)

        click.echo(f"Reading count files from {input_dir}...")
        cohort = read_cohort(input_dir)
        click.echo(click.style(f"  Loaded {len(cohort)} samples", fg='green'))
        click.echo()

        click.echo(f"Removing OTUs of taxa in fewer than {cutoff:.0%} of samples...")
        result = filter_scarce_otus(cohort, levels, cutoff)
        click.echo(f"  Minimum samples per taxon: {result.details['min_samples']}")
        click.echo()

        sidecar = emit_stage_result(config, result, output_dir, force, provenance)
        _print_summary(result, sidecar)
        click.echo(click.style("Filter complete!", fg='green', bold=True))

    except Exception as e:
        click.echo(click.style(f"Scarce filter failed: {e}", fg='red'), err=True)
        logger.exception("Scarce filter command failed")
        sys.exit(1)
