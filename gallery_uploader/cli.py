"""
Gallery Uploader CLI
Command-line interface for configuration and headless watching.
"""

import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import Config, ConfigManager
from .file_watcher import WatchFolderError
from .logger import setup_logger
from .session import ConnectionState, WatchSession
from .upload_manager import ManagerStartError
from .utils import format_duration, mask_secret

console = Console()


def _load_config(config_path):
    manager = ConfigManager(Path(config_path) if config_path else None)
    try:
        return manager, manager.load()
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        sys.exit(1)


def _stats_table(session: WatchSession, elapsed: float) -> Table:
    stats = session.stats()
    table = Table(title=f"Upload Queue ({format_duration(elapsed)})")
    table.add_column("Total", justify="right")
    table.add_column("Queued", justify="right", style="cyan")
    table.add_column("Active", justify="right", style="yellow")
    table.add_column("Completed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(
        str(stats.total), str(stats.queued), str(stats.active),
        str(stats.completed), str(stats.failed)
    )
    return table


@click.group()
@click.version_option(version=__version__)
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), default=None,
              help="Path to config.json (default: ./config.json)")
@click.pass_context
def cli(ctx, config_path):
    """Gallery Uploader - watch a folder and upload photos to an event gallery"""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


@cli.command()
@click.pass_context
def setup(ctx):
    """Run interactive setup."""
    console.print("\n[bold cyan]Gallery Uploader Setup[/bold cyan]\n")

    manager = ConfigManager(Path(ctx.obj['config_path']) if ctx.obj['config_path'] else None)
    existing = None
    if manager.exists():
        try:
            existing = manager.load()
        except ValueError as e:
            console.print(f"[yellow]Ignoring invalid configuration in {manager.config_path}: {escape(str(e))}[/yellow]\n")

    api_endpoint = click.prompt("API Endpoint", default=existing.api_endpoint if existing else None)
    api_key = click.prompt("API Key", hide_input=True)
    event_code = click.prompt("Event Code", default=existing.event_code if existing else None)
    watch_folder = click.prompt(
        "Watch Folder",
        type=click.Path(exists=True, file_okay=False),
        default=existing.watch_folder if existing else None
    )

    try:
        config = Config(
            api_endpoint=api_endpoint,
            api_key=api_key,
            event_code=event_code,
            watch_folder=watch_folder
        )
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        sys.exit(1)

    manager.save(config)
    console.print(f"[green]✓ Configuration saved to {manager.config_path}[/green]")


@cli.command('config-show')
@click.pass_context
def config_show(ctx):
    """Show current configuration."""
    manager, config = _load_config(ctx.obj['config_path'])

    table = Table(title=str(manager.config_path))
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for key, value in config.model_dump().items():
        if key == 'api_key':
            value = mask_secret(value)
        table.add_row(key, "" if value is None else str(value))

    console.print(table)


@cli.command('test-connection')
@click.pass_context
def test_connection(ctx):
    """Check the API key against the gallery service."""
    _, config = _load_config(ctx.obj['config_path'])
    setup_logger(log_level="WARNING")

    session = WatchSession(config)
    try:
        status = session.test_connection()
    finally:
        session.close()

    if status.state is ConnectionState.CONNECTED:
        console.print(f"[green]✓ Connected: {escape(str(status.message))}[/green]")
    else:
        console.print(f"[red]✗ Connection failed: {escape(str(status.message))}[/red]")
        sys.exit(1)


@cli.command()
@click.option('--folder', type=click.Path(exists=True, file_okay=False), default=None,
              help="Override the configured watch folder")
@click.option('--event-code', default=None, help="Override the configured event code")
@click.option('--interval', default=5, show_default=True, help="Seconds between status updates")
@click.pass_context
def watch(ctx, folder, event_code, interval):
    """Watch the folder and upload new photos until interrupted."""
    _, config = _load_config(ctx.obj['config_path'])

    if folder:
        config.watch_folder = folder
    if event_code:
        config.event_code = event_code

    setup_logger(
        log_dir=Path(config.log_dir) if config.log_dir else None,
        log_level=config.log_level,
        console=True
    )

    session = WatchSession(config)
    try:
        session.start()
    except (WatchFolderError, ManagerStartError) as e:
        console.print(f"[red]Failed to start: {escape(str(e))}[/red]")
        session.close()
        sys.exit(1)

    console.print(f"[bold]Watching[/bold] {session.watch_folder} → {session.gallery_url()}")
    console.print("Press Ctrl-C to stop.\n")

    started = time.time()
    try:
        while True:
            time.sleep(interval)
            console.print(_stats_table(session, time.time() - started))
    except KeyboardInterrupt:
        console.print("\nStopping...")
    finally:
        session.close()

    console.print(_stats_table(session, time.time() - started))


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
