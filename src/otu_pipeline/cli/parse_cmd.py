"""Parse command: turn classifier reports into per-sample OTU count files.

Steps:
1. Load config and build the parse context (format, ranks, sample id map)
2. Parse every report, in parallel when parser.workers > 1
3. Write the parsed generation (otuCount_<sample>.tsv + summary)
4. Persist the OTU_COUNT hits column and provenance
"""

import logging
import sys
from pathlib import Path

import click

from otu_pipeline.cli.common import PARSED_DIR, load_stage_config, persist_hits
from otu_pipeline.otu import write_generation
from otu_pipeline.parsers import OTU_COUNT_COLUMN, ParseContext, parse_cohort
from otu_pipeline.persistence import ProvenanceTracker

logger = logging.getLogger(__name__)


@click.command('parse')
@click.option(
    '--input-dir',
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help='Directory of classifier reports'
)
@click.option(
    '--output-dir',
    type=click.Path(path_type=Path),
    default=None,
    help='Generation directory (default: <data_dir>/parsed)'
)
@click.option(
    '--force',
    is_flag=True,
    help='Overwrite an existing generation'
)
@click.pass_context
def parse(ctx, input_dir, output_dir, force):
    """Parse classifier reports into OTU count files.

    The report layout comes from parser.format in the config:
    score_gated (RDP), read_lineage (Kraken), cumulative_path (MetaPhlAn,
    Kraken2), per_level_file (SLIMM), taxa_matrix (QIIME) or
    pathway_matrix (HUMAnN2).

    Examples:

        otu-pipeline parse --input-dir reports/

        otu-pipeline --config my.yaml parse --input-dir reports/ --force
    """
    click.echo(click.style("=== Parse Classifier Reports ===", bold=True))
    click.echo()

    try:
        config = load_stage_config(ctx)
        output_dir = output_dir or Path(config.data_dir) / PARSED_DIR
        provenance = ProvenanceTracker.from_config(config)

        click.echo(f"Parsing {config.parser.format} reports in {input_dir}...")
        context = ParseContext.from_config(config)
        samples = parse_cohort(input_dir, context, workers=config.parser.workers)
        click.echo(click.style(f"  Parsed {len(samples)} samples", fg='green'))
        click.echo()

        cohort = {sample.sample_id: sample.otu_counts() for sample in samples}
        hits = {sample.sample_id: sample.total for sample in samples}
        details = {
            "input_dir": str(input_dir),
            "format": config.parser.format,
            "samples": len(samples),
        }

        click.echo(f"Writing generation to {output_dir}...")
        paths = write_generation(output_dir, cohort, stage="parse", details=details, overwrite=force)
        click.echo(click.style(f"  Summary: {paths['summary']}", fg='green'))
        click.echo()

        provenance.record_step('parse', details)
        persist_hits(config, OTU_COUNT_COLUMN, hits, provenance)
        sidecar = provenance.save_sidecar(paths['dir'])

        click.echo(click.style("=== Parse Summary ===", bold=True))
        click.echo(f"Samples: {len(samples)}")
        click.echo(f"Total OTU count: {sum(hits.values())}")
        click.echo(f"Output: {paths['dir']}")
        click.echo(f"Provenance: {sidecar}")
        click.echo()
        click.echo(click.style("Parse complete!", fg='green', bold=True))

    except Exception as e:
        click.echo(click.style(f"Parse failed: {e}", fg='red'), err=True)
        logger.exception("Parse command failed")
        sys.exit(1)
