#!/usr/bin/env python3
"""
udpxfer CLI

Command-line interface for the UDP file transfer server and client.

Usage:
    python cli.py serve 9000 --root ./shared          # Serve a directory
    python cli.py download HOST 9000 files.txt         # Download listed files
    python cli.py config                               # Show effective config
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.progress import (
    Progress, SpinnerColumn, TextColumn, BarColumn, DownloadColumn,
    TransferSpeedColumn,
)
from rich.panel import Panel
from rich.logging import RichHandler

from udpxfer import FileClient, FileServer, load_config
from udpxfer.config import EXAMPLE_CONFIG
from udpxfer.file import read_file_list

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """udpxfer - reliable file transfer over UDP."""
    config = load_config(Path(config_path) if config_path else None)
    try:
        config.validate()
    except ValueError as e:
        raise click.ClickException(f"Bad configuration: {e}")
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('port', type=click.IntRange(0, 65535))
@click.option('--host', default=None, help='Address to bind')
@click.option('--root', type=click.Path(exists=True, file_okay=False),
              help='Directory to serve')
@click.option('--max-sessions', type=click.IntRange(min=1),
              help='Refuse downloads while this many transfers are live')
@click.option('--idle-timeout', type=click.FloatRange(min=0, min_open=True),
              help='Abandon a transfer after this many silent seconds')
@click.option('--pin-peer', is_flag=True,
              help='Only answer the address that started each transfer')
@click.pass_context
def serve(ctx, port, host, root, max_sessions, idle_timeout, pin_peer):
    """Serve files on PORT."""
    config = ctx.obj['config']
    config.port = port
    if host:
        config.host = host
    if root:
        config.root_dir = Path(root)
    if max_sessions:
        config.max_sessions = max_sessions
    if idle_timeout:
        config.session_idle_timeout = idle_timeout
    if pin_peer:
        config.pin_peer = True

    async def run():
        server = FileServer(config)

        try:
            await server.start()

            console.print(Panel.fit(
                f"[bold green]File Server Started[/bold green]\n\n"
                f"Control Port: [yellow]{server.address[1]}[/yellow]\n"
                f"Data Ports: [yellow]{config.port_range_start}-{config.port_range_end}[/yellow]\n"
                f"Serving: [blue]{server.store.root}[/blue]",
                title="Server Info"
            ))
            console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

            await server.wait_closed()
        finally:
            stats = server.get_stats()
            await server.stop()
            console.print(
                f"[green]Server stopped[/green] "
                f"[dim]({stats.get('downloads_accepted', 0)} downloads, "
                f"{format_size(stats.get('bytes_sent', 0))} sent)[/dim]"
            )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@cli.command()
@click.argument('host')
@click.argument('port', type=click.IntRange(1, 65535))
@click.argument('file_list', type=click.Path(exists=True, dir_okay=False))
@click.option('--output-dir', '-o', type=click.Path(file_okay=False),
              help='Where to write downloaded files')
@click.option('--atomic', is_flag=True,
              help='Write to NAME.part and rename when complete')
@click.pass_context
def download(ctx, host, port, file_list, output_dir, atomic):
    """Download every file listed in FILE_LIST from HOST:PORT."""
    config = ctx.obj['config']
    if output_dir:
        config.output_dir = Path(output_dir)
    if atomic:
        config.atomic_downloads = True

    filenames = read_file_list(Path(file_list))
    if not filenames:
        console.print("[yellow]No filenames in list[/yellow]")
        return

    async def run():
        async with FileClient(host, port, config) as client:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                DownloadColumn(),
                TransferSpeedColumn(),
                console=console,
            ) as progress:
                tasks = {}

                def update_progress(p):
                    task = tasks.get(p.file_name)
                    if task is None:
                        task = progress.add_task(p.file_name, total=p.file_size or None)
                        tasks[p.file_name] = task
                    progress.update(task, total=p.file_size or None,
                                    completed=p.bytes_downloaded)
                    if p.phase == 'failed':
                        progress.update(task, description=f"[red]{p.file_name}[/red]")

                results = await client.download_all(filenames, update_progress)

            return results

    results = asyncio.run(run())
    print_results(results)

    if not all(r.ok for r in results):
        ctx.exit(1)


@cli.command('config')
@click.option('--example', is_flag=True, help='Print an example config file')
@click.pass_context
def show_config(ctx, example):
    """Show the effective configuration."""
    if example:
        console.print(EXAMPLE_CONFIG)
        return

    config = ctx.obj['config']
    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


def print_results(results):
    """Summary table of a download batch."""
    table = Table(title="Downloads")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("Details", style="dim")

    styles = {'complete': 'green', 'refused': 'yellow', 'failed': 'red'}
    for r in results:
        style = styles.get(r.status, 'white')
        table.add_row(
            r.filename,
            f"[{style}]{r.status}[/{style}]",
            format_size(r.size) if r.ok else "-",
            str(r.path) if r.ok else (r.reason or ""),
        )

    console.print(table)


def format_size(bytes_count: Optional[float]) -> str:
    """Format bytes as human-readable size."""
    bytes_count = bytes_count or 0
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
