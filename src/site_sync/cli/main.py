"""Main CLI entry point for site-sync."""

import sys
import json
import asyncio
from typing import Dict, List, Optional, Tuple
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    BarColumn,
    TaskProgressColumn,
)
from rich.table import Table

from .. import __version__
from ..agent.installation import Installation
from ..agent.server import run_server
from ..agent.service import RemoteAgent
from ..config.config import Config
from ..config.agent import AgentConfig
from ..exceptions import SyncError
from ..models.conflict import Conflict, Resolution
from ..models.operation import ComponentSelection, Direction, SyncOperation
from ..utils.logging import setup_logging
from ..migration.engine import SyncEngine
from ..migration.events import ProgressEvent

console = Console()

DEFAULT_CONFIG_PATHS = ['site-sync.yaml', 'site-sync.yml', '.site-sync.yaml']
RESOLUTION_CHOICES = [Resolution.PUSH.value, Resolution.PULL.value, Resolution.SKIP.value]


@click.group()
@click.version_option(version=__version__, prog_name='site-sync')
@click.option(
    '--config',
    '-c',
    type=click.Path(),
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
    """site-sync - Migrate extensions, themes, tables and media between installations."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    setup_logging('DEBUG' if verbose else 'WARNING')


@cli.command()
@click.option(
    '--output',
    '-o',
    default='site-sync.yaml',
    help='Output configuration file path',
)
def init(output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]site-sync[/bold green]\nInitializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)
        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(
            f'[yellow]Please edit {output} with your installation details[/yellow]'
        )
    except OSError as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Check that both installations can be reached."""
    console.print(
        Panel.fit(
            '[bold cyan]site-sync[/bold cyan]\nValidating installations...',
            border_style='cyan',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        engine = SyncEngine(config)
        chosen = asyncio.run(engine.test_connectivity())

        table = Table(title='Connectivity')
        table.add_column('Role', style='cyan')
        table.add_column('Installation', style='blue')
        table.add_column('Transport', style='green')
        table.add_row('Source', config.source.label, chosen['source'])
        table.add_row('Target', config.target.label, chosen['target'])
        console.print(table)

        console.print('[green]✓[/green] Connectivity validation passed')

    except (SyncError, FileNotFoundError, ValueError) as e:
        console.print(f'[red]✗[/red] Validation failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.option(
    '--direction',
    '-d',
    type=click.Choice([d.value for d in Direction]),
    default=Direction.PUSH.value,
    show_default=True,
    help='push copies source to target, pull copies target back to source',
)
@click.option('--extension', '-e', 'extensions', multiple=True, help='Extension name')
@click.option('--theme', '-t', 'themes', multiple=True, help='Theme name')
@click.option('--table', 'tables', multiple=True, help='Database table name')
@click.option('--media', is_flag=True, help='Migrate the media library')
@click.option(
    '--yes',
    '-y',
    is_flag=True,
    help='Resolve every conflict with --resolution instead of prompting',
)
@click.option(
    '--resolution',
    type=click.Choice(RESOLUTION_CHOICES),
    default=Resolution.PUSH.value,
    show_default=True,
    help='Resolution applied to all conflicts with --yes',
)
@click.pass_context
def sync(
    ctx: click.Context,
    direction: str,
    extensions: Tuple[str, ...],
    themes: Tuple[str, ...],
    tables: Tuple[str, ...],
    media: bool,
    yes: bool,
    resolution: str,
) -> None:
    """Run a sync operation."""
    console.print(
        Panel.fit(
            f'[bold blue]site-sync[/bold blue]\nStarting {direction}...',
            border_style='blue',
        )
    )

    selection = ComponentSelection(
        extensions=list(extensions), themes=list(themes), tables=list(tables), media=media
    )
    if selection.is_empty():
        console.print('[yellow]Nothing selected - use --extension, --theme, --table or --media[/yellow]')
        sys.exit(1)

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        operation = asyncio.run(
            _run_sync(config, Direction(direction), selection, yes, resolution)
        )
        _display_sync_summary(operation)

        if operation.status.value == 'failed':
            sys.exit(1)

    except (SyncError, FileNotFoundError, ValueError) as e:
        console.print(f'[red]✗[/red] Sync failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument('operation_id', required=False)
@click.pass_context
def status(ctx: click.Context, operation_id: Optional[str]) -> None:
    """Show one operation, or list recorded operations."""
    console.print(
        Panel.fit(
            '[bold magenta]site-sync[/bold magenta]\nOperation Status',
            border_style='magenta',
        )
    )

    try:
        config = _load_config(ctx)
        engine = SyncEngine(config)

        if operation_id:
            _display_sync_summary(engine.store.get(operation_id))
            return

        table = Table(title='Sync Operations')
        table.add_column('ID', style='cyan')
        table.add_column('Direction', style='blue')
        table.add_column('Status', style='green')
        table.add_column('Progress', style='yellow')
        table.add_column('Created')

        for operation in engine.list_operations():
            table.add_row(
                operation.id,
                operation.direction.value,
                operation.status.value,
                f'{operation.progress}%',
                operation.created_at.strftime('%Y-%m-%d %H:%M:%S'),
            )
        console.print(table)

    except (SyncError, FileNotFoundError, ValueError) as e:
        console.print(f'[red]✗[/red] Failed to load status: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')
        return Config.from_file(config_path)

    for path in DEFAULT_CONFIG_PATHS:
        if Path(path).exists():
            return Config.from_file(path)

    try:
        return Config.from_env()
    except ValueError:
        raise FileNotFoundError(
            'No configuration found. Use --config to specify a file or run "site-sync init" to create one.'
        )


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    log_level = 'DEBUG' if ctx.obj.get('verbose', False) else config.logging.level
    setup_logging(
        level=log_level, log_file=config.logging.file, log_format=config.logging.format
    )


def _prompt_resolutions(conflicts: List[Conflict]) -> Dict[str, Resolution]:
    table = Table(title='Database Conflicts')
    table.add_column('ID', style='cyan')
    table.add_column('Table', style='blue')
    table.add_column('Rows', style='yellow')
    table.add_column('Description')
    for conflict in conflicts:
        table.add_row(conflict.id, conflict.table, str(conflict.count), conflict.description)
    console.print(table)

    resolutions = {}
    for conflict in conflicts:
        choice = click.prompt(
            f'Resolution for {conflict.id}',
            type=click.Choice(RESOLUTION_CHOICES),
            default=Resolution.SKIP.value,
        )
        resolutions[conflict.id] = Resolution(choice)
    return resolutions


async def _run_sync(
    config: Config,
    direction: Direction,
    selection: ComponentSelection,
    auto_resolve: bool,
    resolution: str,
) -> SyncOperation:
    """Run one operation with a progress bar fed by the event bus."""
    engine = SyncEngine(config)

    with Progress(
        SpinnerColumn(),
        TextColumn('[progress.description]{task.description}'),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(f'[blue]{direction.value.title()} starting...', total=100)

        def on_event(event: ProgressEvent) -> None:
            progress.update(task, completed=event.progress, description=event.message)

        unsubscribe = engine.events.subscribe(on_event)

        async def on_conflicts(conflicts: List[Conflict]):
            if auto_resolve:
                return {c.id: Resolution(resolution) for c in conflicts}
            progress.stop()
            try:
                return _prompt_resolutions(conflicts)
            finally:
                progress.start()

        try:
            return await engine.sync(direction, selection, on_conflicts)
        finally:
            unsubscribe()


def _display_sync_summary(operation: SyncOperation) -> None:
    """Display per-kind results and failures."""
    style = {'completed': 'green', 'failed': 'red'}.get(operation.status.value, 'yellow')
    console.print(
        f'[{style}]Operation {operation.id}: {operation.status.value}'
        f' ({operation.progress}%)[/{style}] - {operation.status_view().message}'
    )
    if operation.outcome:
        console.print(f'[blue]Outcome:[/blue] {operation.outcome.value}')

    table = Table(title='Sync Summary')
    table.add_column('Component', style='cyan')
    table.add_column('Total', style='blue')
    table.add_column('Successful', style='green')
    table.add_column('Failed', style='red')
    table.add_column('Skipped', style='yellow')

    for kind, counts in operation.results_by_kind().items():
        table.add_row(
            kind.title(),
            str(counts['total']),
            str(counts['successful']),
            str(counts['failed']),
            str(counts['skipped']),
        )
    console.print(table)

    if operation.started_at and operation.completed_at:
        console.print(f'\n[blue]Duration:[/blue] {operation.completed_at - operation.started_at}')

    errors = [f'{r.kind.value} {r.name}: {r.message}' for r in operation.results if not r.success]
    if errors:
        console.print(f'\n[red]Errors ({len(errors)}):[/red]')
        for error in errors[:5]:
            console.print(f'  • {error}')
        if len(errors) > 5:
            console.print(f'  ... and {len(errors) - 5} more errors')


# Remote agent commands, run on the installation host


@cli.group()
@click.option(
    '--agent-config',
    'agent_config',
    envvar='SITE_SYNC_AGENT_CONFIG',
    default='site-sync-agent.yaml',
    show_default=True,
    type=click.Path(),
    help='Remote agent configuration file',
)
@click.pass_context
def agent(ctx: click.Context, agent_config: str) -> None:
    """Remote agent for this installation."""
    ctx.obj['agent_config'] = agent_config


def _load_agent(ctx: click.Context):
    config = AgentConfig.from_file(ctx.obj['agent_config'])
    return RemoteAgent(Installation(config)), config


def _fail_json(message: str) -> None:
    click.echo(json.dumps({'message': message}), err=True)
    sys.exit(1)


@agent.command()
@click.option('--host', default=None, help='Listen address')
@click.option('--port', type=int, default=None, help='Listen port')
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Serve the agent over HTTP."""
    setup_logging('INFO')
    service, config = _load_agent(ctx)
    run_server(service, config, host=host, port=port)


@agent.command(name='exec')
@click.argument('action')
@click.option('--args', 'args_json', default='{}', help='JSON object of arguments')
@click.pass_context
def exec_action(ctx: click.Context, action: str, args_json: str) -> None:
    """Run one control action and print its JSON result."""
    try:
        args = json.loads(args_json)
        service, _ = _load_agent(ctx)
        result = service.execute(action, args)
    except (SyncError, ValueError, OSError) as e:
        _fail_json(str(e))
        return
    click.echo(json.dumps(result))


@agent.command()
@click.argument('endpoint')
@click.option('--input', 'input_path', type=click.Path(), help='JSON request body file')
@click.option('--output', 'output_path', type=click.Path(), help='Write the JSON response here')
@click.pass_context
def call(
    ctx: click.Context, endpoint: str, input_path: Optional[str], output_path: Optional[str]
) -> None:
    """Handle one protocol request from a file."""
    try:
        body = {}
        if input_path:
            with open(input_path, 'r', encoding='utf-8') as f:
                body = json.load(f)
        service, _ = _load_agent(ctx)
        result = service.handle(endpoint, body)
    except (SyncError, ValueError, OSError) as e:
        _fail_json(str(e))
        return

    if output_path:
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(result, f)
        click.echo(json.dumps({'success': True, 'output': output_path}))
    else:
        click.echo(json.dumps(result))


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Interrupted by user[/red]')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
