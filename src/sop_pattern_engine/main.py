"""
Main CLI entry point for the SOP Pattern Engine.

Usage:
    sop-pattern-engine generate --output ./data/actions.json
    sop-pattern-engine render-draft --store-dir ./store --draft-id <id>
    sop-pattern-engine report --input ./analysis.json --format json|markdown

render-draft and report read what an application running PatternDetector
saves: a JsonFileDraftStore directory and an analysis result as JSON.
"""

import click
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .drafting.sop_drafter import SOPDrafter
from .models import PatternAnalysisResult
from .report.generator import ReportGenerator
from .storage.stores import DraftFilter, JsonFileDraftStore
from .synthetic.config import ActionLogConfig
from .synthetic.generator import ActionLogGenerator


class CLIContext:
    """Holds options shared between CLI commands."""

    def __init__(self):
        self.log_level = 'WARNING'


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


@click.group()
@click.version_option(version=__version__)
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              default='WARNING', help='Logging verbosity')
@click.pass_context
def cli(ctx, log_level: str):
    """SOP Pattern Engine

    Mines action logs for repeated workflows, similar requests and
    scheduled routines, and drafts standard operating procedures.
    """
    ctx.ensure_object(CLIContext)
    ctx.obj.log_level = log_level
    logging.basicConfig(
        level=getattr(logging, log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


@cli.command()
@click.option('--output', '-o', type=click.Path(), default='./data/actions.json',
              help='Output JSON file for generated events')
@click.option('--seed', default=42, help='Random seed for reproducibility')
@click.option('--weeks', default=6, type=click.IntRange(1, 52), help='Weeks of activity to generate')
@click.option('--organization-id', default='org-demo', help='Organization id stamped on every event')
@click.option('--start-date', default=None, help='First day of generated activity (YYYY-MM-DD)')
@pass_context
def generate(ctx, output: str, seed: int, weeks: int, organization_id: str,
             start_date: Optional[str]):
    """Generate a synthetic action log.

    The log contains scheduled routines, families of similar requests
    and random noise sessions. Output is deterministic for a seed and
    start date.
    """
    config = ActionLogConfig(
        seed=seed,
        weeks=weeks,
        organization_id=organization_id,
        start_date=start_date,
    )
    click.echo(f"Generating {weeks} weeks of activity for {organization_id}...")
    try:
        generator = ActionLogGenerator(config)
        events = generator.generate_all()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    output_path = generator.save_output(Path(output))

    click.echo(f"Generated {len(events)} events")
    for key, count in generator.stats.items():
        click.echo(f"  {key}: {count}")
    click.echo(f"Saved to {output_path}")


@cli.command('render-draft')
@click.option('--store-dir', '-s', required=True, type=click.Path(exists=True, file_okay=False),
              help='Directory holding drafts.json')
@click.option('--draft-id', '-d', default=None, help='Render a single draft')
@click.option('--organization-id', default=None, help='Render every draft of an organization')
@click.option('--output-dir', '-o', type=click.Path(), default=None,
              help='Write one <draft-id>.yaml per draft instead of printing')
@pass_context
def render_draft(ctx, store_dir: str, draft_id: Optional[str],
                 organization_id: Optional[str], output_dir: Optional[str]):
    """Render stored SOP drafts as YAML SOP definitions.

    The store directory is the one an application writes through a
    PatternDetector built with JsonFileDraftStore(store_dir).
    """
    if not draft_id and not organization_id:
        click.echo("Error: Provide --draft-id or --organization-id", err=True)
        sys.exit(1)

    store = JsonFileDraftStore(Path(store_dir))
    drafter = SOPDrafter(store)

    if draft_id:
        draft = store.get_draft(draft_id)
        if draft is None:
            click.echo(f"Error: Draft {draft_id} not found in {store_dir}", err=True)
            sys.exit(1)
        drafts = [draft]
    else:
        drafts = store.list_drafts(organization_id, DraftFilter(limit=100))
        if not drafts:
            click.echo(f"Error: No drafts for {organization_id} in {store_dir}", err=True)
            sys.exit(1)

    if output_dir is None:
        for i, draft in enumerate(drafts):
            if i:
                click.echo('---')
            click.echo(drafter.to_yaml(draft), nl=False)
        return

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    for draft in drafts:
        output_file = output_path / f'{draft.id}.yaml'
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(drafter.to_yaml(draft))
        click.echo(f"Wrote {output_file}")


@cli.command()
@click.option('--input', '-i', 'input_file', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Saved analysis result JSON')
@click.option('--format', '-f', 'output_format', type=click.Choice(['json', 'markdown']),
              default='markdown', help='Output format')
@click.option('--output', '-o', type=click.Path(), default=None,
              help='Output file (prints to stdout if omitted)')
@pass_context
def report(ctx, input_file: str, output_format: str, output: Optional[str]):
    """Generate a report from a saved analysis result.

    The input is PatternAnalysisResult.to_dict() of a PatternDetector.analyze
    run, saved as JSON by the application that runs the analysis.
    Candidates are annotated with their score breakdown, recommendation
    and a plain-language explanation.
    """
    try:
        with open(input_file, 'r', encoding='utf-8') as f:
            result = PatternAnalysisResult.from_dict(json.load(f))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        click.echo(f"Error: Could not read analysis result from {input_file}: {e}", err=True)
        sys.exit(1)

    content = ReportGenerator(output_format=output_format).generate(result)

    if output is None:
        click.echo(content)
        return

    output_path = Path(output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        f.write(content)
    click.echo(f"Report saved to {output_path}")


def main():
    """Main entry point."""
    cli()


if __name__ == '__main__':
    main()
