"""Main CLI entry point for GitLab Org Migrate."""

import sys
import asyncio
from typing import Optional
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .. import __version__
from ..config.config import Config
from ..utils.logging import setup_logging
from ..migration.engine import MigrationEngine
from ..migration.errors import PreflightError
from ..migration.orchestrator import MigrationSummary

console = Console()

DEFAULT_CONFIG_PATHS = ('config.yaml', 'config.yml', '.gitlab-org-migrate.yaml')

OUTCOME_STYLES = {
    'completed': 'green',
    'failed': 'red',
    'aborted': 'yellow',
    'disabled': 'dim',
}


@click.group()
@click.version_option(version=__version__, prog_name='gitlab-org-migrate')
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose logging',
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """GitLab Org Migrate - Migrate users, groups, namespaces, and projects between GitLab instances."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    # Basic logging until the configuration is loaded
    log_level = 'DEBUG' if verbose else 'INFO'
    setup_logging(log_level)


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
def init(output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]GitLab Org Migrate[/bold green]\n'
            'Initializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)
    except OSError as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)

    console.print(f'[green]✓[/green] Configuration template created at: {output}')
    console.print(
        f'[yellow]Please edit {output} with your GitLab instance details[/yellow]'
    )


@cli.command()
@click.option('--source-host', '-s', help='Source GitLab host')
@click.option('--source-token', '-t', help='Source personal access token')
@click.option('--dest-host', '-d', help='Destination GitLab host')
@click.option('--dest-token', '-T', help='Destination personal access token')
@click.option(
    '--scheme',
    '-p',
    type=click.Choice(['http', 'https']),
    help='URL scheme for both instances',
)
@click.pass_context
def migrate(
    ctx: click.Context,
    source_host: Optional[str],
    source_token: Optional[str],
    dest_host: Optional[str],
    dest_token: Optional[str],
    scheme: Optional[str],
) -> None:
    """Start the migration process."""
    console.print(
        Panel.fit(
            '[bold blue]GitLab Org Migrate[/bold blue]\n'
            'Starting migration process...',
            border_style='blue',
        )
    )

    try:
        config = _load_config(
            ctx,
            source_host=source_host,
            source_token=source_token,
            dest_host=dest_host,
            dest_token=dest_token,
            scheme=scheme,
        )
    except (FileNotFoundError, ValidationError) as e:
        console.print(f'[red]✗[/red] Invalid configuration: {e}')
        sys.exit(1)

    _setup_logging_with_config(ctx, config)

    try:
        summary = asyncio.run(_run_migration(config))
    except PreflightError as e:
        console.print(f'[red]✗[/red] Preflight check failed: {e}')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]✗[/red] Migration failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)

    _display_migration_summary(summary)


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Check connectivity and credentials of both instances."""
    console.print(
        Panel.fit(
            '[bold cyan]GitLab Org Migrate[/bold cyan]\nValidating configuration...',
            border_style='cyan',
        )
    )

    try:
        config = _load_config(ctx)
    except (FileNotFoundError, ValidationError) as e:
        console.print(f'[red]✗[/red] Invalid configuration: {e}')
        sys.exit(1)

    console.print('[green]✓[/green] Configuration validation completed')

    if not config.validate_connectivity():
        console.print('[red]✗[/red] Connectivity validation failed')
        sys.exit(1)

    console.print('[green]✓[/green] Connectivity validation passed')


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the effective migration configuration."""
    console.print(
        Panel.fit(
            '[bold magenta]GitLab Org Migrate[/bold magenta]\nMigration Configuration',
            border_style='magenta',
        )
    )

    try:
        config = _load_config(ctx)
    except (FileNotFoundError, ValidationError) as e:
        console.print(f'[red]✗[/red] Failed to load configuration: {e}')
        sys.exit(1)

    settings = config.migration

    table = Table(title='Migration Configuration')
    table.add_column('Setting', style='cyan')
    table.add_column('Value', style='green')

    table.add_row('Source URL', config.source.url)
    table.add_row('Destination URL', config.destination.url)
    table.add_row('Source Token', _mask(config.source.token))
    table.add_row('Destination Token', _mask(config.destination.token))
    for phase in ('users', 'groups', 'memberships', 'namespaces', 'projects'):
        table.add_row(f'Migrate {phase.title()}', '✓' if getattr(settings, phase) else '✗')
    table.add_row('Retry Attempts', str(settings.retry_attempts))
    table.add_row('Initial Retry Delay', f'{settings.retry_initial_delay:g}s')
    table.add_row('Export Polls', f'{settings.max_polls} every {settings.poll_interval:g}s')
    table.add_row('Project Workers', str(settings.project_workers))
    table.add_row(
        'Run Timeout', f'{settings.run_timeout:g}s' if settings.run_timeout else 'none'
    )
    table.add_row('Work Directory', settings.work_dir)
    table.add_row('Log Level', config.logging.level)

    console.print(table)


def _mask(token: str) -> str:
    return 'set' if token else 'missing'


def _load_config(ctx: click.Context, **overrides: Optional[str]) -> Config:
    """Load configuration from command line, file and environment.

    Command line values take precedence over a configuration file, which
    takes precedence over environment variables.
    """
    config_path = ctx.obj.get('config_path')
    if not config_path:
        config_path = next(
            (path for path in DEFAULT_CONFIG_PATHS if Path(path).exists()), None
        )

    try:
        return Config.load(config_path, **overrides)
    except ValidationError as e:
        if config_path:
            raise
        raise FileNotFoundError(
            'No configuration found. Use --config to specify a file or run '
            f'"gitlab-org-migrate init" to create one ({e.error_count()} '
            'missing or invalid value(s) in environment and options).'
        ) from e


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    verbose = ctx.obj.get('verbose', False)

    # Verbose flag overrides the configured level
    log_level = 'DEBUG' if verbose else config.logging.level
    setup_logging(
        level=log_level, log_file=config.logging.file, log_format=config.logging.format
    )


async def _run_migration(config: Config) -> MigrationSummary:
    """Run the migration with a spinner on the console."""
    engine = MigrationEngine(config)

    with Progress(
        SpinnerColumn(),
        TextColumn('[progress.description]{task.description}'),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task('[blue]Migration in progress...', total=None)
        return await engine.migrate()


def _display_migration_summary(summary: MigrationSummary) -> None:
    """Display migration summary results."""
    table = Table(title='Migration Summary')
    table.add_column('Phase', style='cyan')
    table.add_column('Outcome')
    table.add_column('Attempted', style='blue')
    table.add_column('Successful', style='green')
    table.add_column('Skipped', style='yellow')
    table.add_column('Failed', style='red')

    for name, phase in summary.phases.items():
        outcome = phase.outcome.value
        counters = phase.counters
        table.add_row(
            name.title(),
            f'[{OUTCOME_STYLES[outcome]}]{outcome}[/{OUTCOME_STYLES[outcome]}]',
            str(counters.attempted),
            str(counters.succeeded),
            str(counters.skipped),
            str(counters.failed),
        )

    totals = summary.totals
    table.add_row(
        '[bold]Total[/bold]',
        '',
        str(totals.attempted),
        str(totals.succeeded),
        str(totals.skipped),
        str(totals.failed),
    )
    console.print(table)

    if summary.completed_at:
        duration = summary.completed_at - summary.started_at
        console.print(f'\n[blue]Migration Duration:[/blue] {duration}')

    if summary.reconciliation is not None:
        counts = summary.reconciliation.counts
        console.print(
            f'[blue]Project imports:[/blue] {counts["completed"]} completed, '
            f'{counts["pending"]} pending, {counts["failed"]} failed'
        )

    if summary.cancelled:
        console.print('[yellow]Run was cancelled before all work completed[/yellow]')

    errors = [
        f'{result.entity_type} {result.label or result.entity_id}: {result.error_message}'
        for result in summary.failed_results
    ]
    if errors:
        console.print(f'\n[red]Errors ({len(errors)}):[/red]')
        for error in errors[:5]:  # Show first 5 errors
            console.print(f'  • {error}')
        if len(errors) > 5:
            console.print(f'  ... and {len(errors) - 5} more errors')

    if summary.report_file:
        console.print(f'\n[blue]Report:[/blue] {summary.report_file}')
    console.print(f'[blue]Log file:[/blue] {summary.log_file}')


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Migration interrupted by user[/red]')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
