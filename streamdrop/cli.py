#!/usr/bin/env python3
"""
streamdrop CLI

Command-line interface for point-to-point file transfer.

Usage:
    streamdrop server [ADDRESS] [OUTPUT_DIR]     # Receive files forever
    streamdrop client ADDRESS FILE [FILE ...]    # Send files
    streamdrop show-config                       # Print effective settings
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List

import click
from rich.console import Console
from rich.table import Table
from rich.progress import (
    Progress, TextColumn, BarColumn, DownloadColumn, TransferSpeedColumn,
    TimeElapsedColumn, TimeRemainingColumn, TaskID,
)
from rich.panel import Panel
from rich.markup import escape
from rich.logging import RichHandler

from .config import Config, load_config, EXAMPLE_CONFIG
from .transfer import (
    PeerConnectionError, FileSender, TransferServer, TransferProgress,
    TransferResult, SessionState,
)
from .transfer.receiver import admission_for
from .utils import parse_address, format_address, format_size, format_speed

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def make_progress() -> Progress:
    return Progress(
        TimeElapsedColumn(),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    )


class ProgressTracker:
    """Maps session progress callbacks onto rich progress bars, one per file."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self._tasks: Dict[int, TaskID] = {}

    def update(self, p: TransferProgress):
        key = id(p)
        task = self._tasks.get(key)

        if task is None:
            if p.finished or not p.file_name:
                return
            arrow = '→' if p.direction == 'send' else '←'
            task = self.progress.add_task(f"{arrow} {escape(p.file_name)}", total=p.total_bytes)
            self._tasks[key] = task

        self.progress.update(task, completed=p.bytes_transferred, total=p.total_bytes)

        if p.phase == SessionState.COMPLETED:
            self.progress.update(task, completed=p.total_bytes)
            self._tasks.pop(key)
        elif p.phase == SessionState.FAILED:
            self.progress.update(task, description=f"[red]✗ {escape(p.file_name)}[/red]")
            self.progress.stop_task(task)
            self._tasks.pop(key)


def describe_result(result: TransferResult) -> str:
    """One-line rich-markup summary of a result."""
    if not result.ok:
        return (f"[red]✗ {escape(result.file_name or '<unknown>')}[/red] "
                f"({result.peer}): {escape(f'[{result.error.kind}] {result.error}')}")

    outcome = result.outcome
    line = (f"[green]✓ {escape(result.file_name)}[/green] "
            f"{format_size(outcome.bytes_transferred)} in {outcome.elapsed:.2f}s "
            f"({format_speed(outcome.average_throughput)})")
    if result.direction == 'receive':
        if outcome.integrity_verified:
            line += "\n  File integrity verified"
        else:
            line += "\n  [yellow]Warning: File integrity check failed[/yellow]"
        line += f"\n  File received and saved to [blue]{escape(str(outcome.destination_path))}[/blue]"
    else:
        line += f" → {result.peer}"
    return line


def results_table(results: List[TransferResult]) -> Table:
    table = Table(title="Transfers")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("Time", justify="right")
    table.add_column("Speed", justify="right")
    table.add_column("Detail")

    for r in results:
        if r.ok:
            table.add_row(
                escape(r.file_name),
                "[green]sent[/green]",
                format_size(r.bytes_transferred),
                f"{r.outcome.elapsed:.2f}s",
                format_speed(r.outcome.average_throughput),
                r.outcome.digest.hex()[:16] + "...",
            )
        else:
            table.add_row(
                escape(r.file_name),
                f"[red]{r.error.kind}[/red]",
                format_size(r.bytes_transferred),
                "-",
                "-",
                escape(str(r.error)),
            )
    return table


def address_argument(ctx, param, value):
    """click callback: validate host:port."""
    if value is None:
        return None
    try:
        return parse_address(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              help='JSON config file')
@click.option('--chunk-size', type=click.IntRange(min=1), help='Bytes per read/write')
@click.pass_context
def cli(ctx, verbose, config_path, chunk_size):
    """streamdrop - send files to a listening peer over TCP."""
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(f"Bad configuration: {e}")
    config.apply({'chunk_size': chunk_size})

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('address', required=False, callback=address_argument)
@click.argument('output_dir', required=False,
                type=click.Path(file_okay=False, path_type=Path))
@click.option('--max-incoming', type=click.IntRange(min=1),
              help='Cap concurrent receives (default: no cap)')
@click.pass_context
def server(ctx, address, output_dir, max_incoming):
    """Listen on ADDRESS (default 0.0.0.0:8080) and save files to OUTPUT_DIR."""
    config: Config = ctx.obj['config']
    host, port = address or (config.host, config.port)
    output_dir = output_dir or config.output_dir
    max_incoming = max_incoming or config.max_incoming

    async def run():
        with make_progress() as progress:
            tracker = ProgressTracker(progress)

            def report(result: TransferResult):
                progress.console.print(describe_result(result))

            srv = TransferServer(
                host=host,
                port=port,
                output_dir=output_dir,
                chunk_size=config.chunk_size,
                admission=admission_for(max_incoming),
                progress_callback=tracker.update,
                result_callback=report,
            )
            await srv.start()

            progress.console.print(Panel.fit(
                f"[bold green]Receiving files[/bold green]\n\n"
                f"Address: [yellow]{srv.address}[/yellow]\n"
                f"Output Dir: [blue]{output_dir or Path.cwd()}[/blue]",
                title="streamdrop server"
            ))
            progress.console.print("[dim]Press Ctrl+C to stop[/dim]\n")

            try:
                await srv.serve_forever()
            finally:
                await srv.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped[/yellow]")
    except PeerConnectionError as e:
        console.print(f"[red]Server error: {escape(str(e))}[/red]")
        ctx.exit(1)


@cli.command()
@click.argument('address', callback=address_argument)
@click.argument('files', nargs=-1, required=True,
                type=click.Path(dir_okay=False, path_type=Path))
@click.option('--parallel', '-p', type=click.IntRange(min=1),
              help='Maximum files in flight (default 5)')
@click.option('--header-gap', type=click.FloatRange(min=0),
              help='Seconds to pause between name and size (0 disables)')
@click.pass_context
def client(ctx, address, files, parallel, header_gap):
    """Send FILES to the receiver at ADDRESS."""
    config: Config = ctx.obj['config']
    host, port = address

    async def run():
        with make_progress() as progress:
            tracker = ProgressTracker(progress)
            sender = FileSender(
                max_parallel=parallel or config.max_parallel_transfers,
                chunk_size=config.chunk_size,
                header_gap=config.header_gap if header_gap is None else header_gap,
                progress_callback=tracker.update,
            )
            return await sender.send_all((host, port), files)

    results = asyncio.run(run())

    console.print(results_table(results))
    failed = [r for r in results if not r.ok]
    for r in failed:
        console.print(f"[red]Error sending file: {escape(str(r.error))}[/red]")

    if failed:
        console.print(f"[red]{len(failed)} of {len(results)} file(s) failed "
                      f"({format_address(host, port)})[/red]")
        ctx.exit(1)


@cli.command('show-config')
@click.option('--example', is_flag=True, help='Print an example config file instead')
@click.option('--save', 'save_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Also write the effective configuration to this file')
@click.pass_context
def show_config(ctx, example, save_path):
    """Print the effective configuration as JSON."""
    if example:
        click.echo(EXAMPLE_CONFIG.strip())
        return
    config: Config = ctx.obj['config']
    if save_path:
        config.save(save_path)
    click.echo(json.dumps(config.to_dict(), indent=2))


if __name__ == '__main__':
    cli()
