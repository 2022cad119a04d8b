"""Compile command: summarize a generation and build per-rank taxa tables."""

import logging
import sys
from pathlib import Path

import click

from otu_pipeline.cli.common import PARSED_DIR, TABLES_DIR, load_stage_config, write_table_dir
from otu_pipeline.otu import build_taxa_tables, compile_cohort, read_cohort
from otu_pipeline.persistence import ProvenanceTracker
from otu_pipeline.taxonomy import TaxonomyLevels

logger = logging.getLogger(__name__)


@click.command('compile')
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
    help='Directory for taxaCount_<rank>.tsv tables (default: <data_dir>/tables)'
)
@click.option(
    '--force',
    is_flag=True,
    help='Overwrite an existing output directory'
)
@click.pass_context
def compile_tables(ctx, input_dir, output_dir, force):
    """Compile per-sample OTU counts into sample x taxon tables.

    Writes one taxaCount_<rank>.tsv per configured rank (or a single
    taxaCount_pathway.tsv for pathway cohorts) and reports the samples with
    the fewest and most unique OTUs.
    """
    click.echo(click.style("=== Compile Taxa Tables ===", bold=True))
    click.echo()

    try:
        config = load_stage_config(ctx)
        input_dir = input_dir or Path(config.data_dir) / PARSED_DIR
        output_dir = output_dir or Path(config.data_dir) / TABLES_DIR
        provenance = ProvenanceTracker.from_config(config)
        levels = TaxonomyLevels.from_config(config.taxonomy)

        click.echo(f"Reading count files from {input_dir}...")
        cohort = read_cohort(input_dir)
        summary = compile_cohort(cohort)
        click.echo(click.style(f"  Loaded {summary.n_samples} samples", fg='green'))
        click.echo()

        click.echo("Building taxa tables...")
        tables = build_taxa_tables(cohort, levels)
        written = write_table_dir(tables, output_dir, force)
        for path in written:
            click.echo(click.style(f"  {path}", fg='green'))
        click.echo()

        stats = summary.statistics()
        provenance.record_step('compile', {
            "input_dir": str(input_dir),
            "tables": list(tables),
            **stats,
        })
        sidecar = provenance.save_sidecar(output_dir)

        click.echo(click.style("=== Compile Summary ===", bold=True))
        click.echo(f"Samples: {summary.n_samples}")
        click.echo(f"Distinct OTUs: {len(summary.summary)}")
        if summary.min_unique is not None:
            click.echo(f"Fewest unique OTUs: {summary.min_unique[0]} ({summary.min_unique[1]})")
            click.echo(f"Most unique OTUs: {summary.max_unique[0]} ({summary.max_unique[1]})")
        click.echo(f"Provenance: {sidecar}")
        click.echo()
        click.echo(click.style("Compile complete!", fg='green', bold=True))

    except Exception as e:
        click.echo(click.style(f"Compile failed: {e}", fg='red'), err=True)
        logger.exception("Compile command failed")
        sys.exit(1)
