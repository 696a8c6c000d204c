"""Command line interface for file tidy."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from .core.duplicates import DuplicateDetector
from .core.history import HistoryLog, UndoService
from .core.scanner import Scanner
from .core.watcher import DirectoryWatcher
from .exceptions import FileTidyError, WatcherError
from .models.config import Config, ScanOptions, load_config
from .models.file_record import WatchEvent, format_file_size

console = Console()


def _load(config_path: Optional[Path]) -> Config:
    return load_config(config_path) if config_path else Config.default()


def _fail(message: str) -> None:
    console.print(f"\n[red]Error: {message}[/red]")
    sys.exit(1)


@click.group()
@click.version_option(package_name="file-tidy")
@click.option('--config', 'config_path', type=click.Path(exists=True, path_type=Path),
              help='Configuration file path')
@click.option('--history-file', type=click.Path(path_type=Path),
              help='History file (default: ~/.tidy/history.json)')
@click.option('--verbose', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, config_path: Optional[Path], history_file: Optional[Path], verbose: bool):
    """Scan, de-duplicate, watch and undo file organization runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = _load(config_path)
    except FileTidyError as e:
        _fail(str(e))
    if history_file:
        config.history_path = history_file
    ctx.obj = config


@cli.command()
@click.argument('directory', type=click.Path(path_type=Path))
@click.option('--recursive', is_flag=True, help='Scan subdirectories')
@click.option('--depth', type=int, default=None, help='Max depth when recursive (0 = no limit)')
@click.option('--content', is_flag=True, help='Read previews of text files')
@click.pass_obj
def scan(config: Config, directory: Path, recursive: bool, depth: Optional[int], content: bool):
    """List the files in DIRECTORY that would be handed to the categorizer."""
    options = ScanOptions(
        recursive=recursive or config.scan.recursive,
        max_depth=config.scan.max_depth if depth is None else depth,
        ignore_patterns=config.scan.ignore_patterns,
        read_content=content or config.scan.read_content,
        max_content_size=config.scan.max_content_size,
    )

    async def _scan():
        async with Scanner() as scanner:
            return await scanner.scan(directory, options), list(scanner.skipped)

    try:
        files, skipped = asyncio.run(_scan())
    except FileTidyError as e:
        _fail(str(e))

    table = Table(title=f"{len(files)} files in {directory}")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    for record in files:
        table.add_row(record.name, record.mime_type or "-",
                      format_file_size(record.size),
                      record.modified_at.strftime('%Y-%m-%d %H:%M'))
    console.print(table)

    for path in skipped:
        console.print(f"[yellow]Skipped unreadable directory: {path}[/yellow]")


@cli.command()
@click.argument('root', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--depth', type=int, default=3, show_default=True)
@click.option('--limit', type=int, default=100, show_default=True)
@click.option('--include-empty', is_flag=True, help='Also list empty folders')
def folders(root: Path, depth: int, limit: int, include_empty: bool):
    """Show the existing folder structure under ROOT."""
    async def _folders():
        async with Scanner() as scanner:
            return await scanner.scan_folder_structure(
                root, max_depth=depth, max_folders=limit, include_empty=include_empty)

    for folder in asyncio.run(_folders()):
        console.print(folder)


@cli.command()
@click.argument('directory', type=click.Path(path_type=Path))
@click.option('--recursive', is_flag=True, help='Scan subdirectories')
@click.pass_obj
def duplicates(config: Config, directory: Path, recursive: bool):
    """Find files with identical content in DIRECTORY."""
    options = ScanOptions(recursive=recursive, max_depth=0,
                          ignore_patterns=config.scan.ignore_patterns)

    async def _detect():
        async with Scanner() as scanner, DuplicateDetector() as detector:
            files = await scanner.scan(directory, options)
            return await detector.detect(files, compute_hashes=True)

    try:
        groups = asyncio.run(_detect())
    except FileTidyError as e:
        _fail(str(e))

    if not groups:
        console.print("[green]No duplicates found[/green]")
        return

    total = sum(group.wasted_bytes for group in groups)
    console.print(f"[bold]{len(groups)} duplicate groups, {format_file_size(total)} wasted[/bold]")
    for group in groups:
        console.print(f"\n[cyan]{group.hash[:12]}[/cyan] "
                      f"({format_file_size(group.wasted_bytes)} wasted)")
        keeper = group.keeper
        for record in group.files:
            marker = "[green]keep[/green]" if record is keeper else "    "
            console.print(f"  {marker} {record.path} ({format_file_size(record.size)})")


@cli.command()
@click.option('--limit', type=int, default=10, show_default=True)
@click.option('--entry', 'entry_id', help='Show the moves of one entry')
@click.pass_obj
def history(config: Config, limit: int, entry_id: Optional[str]):
    """Show recent organize operations."""
    log = HistoryLog(config.history_path)

    if entry_id:
        entry = log.get(entry_id)
        if entry is None:
            _fail(f"History entry {entry_id} not found")
        table = Table(title=f"Entry {entry.id}")
        table.add_column("From", style="cyan")
        table.add_column("To")
        for move in entry.moves:
            table.add_row(str(move.source), str(move.destination))
        console.print(table)
        return

    entries = log.recent(limit)
    if not entries:
        console.print("No history")
        return

    table = Table(title="Recent operations")
    table.add_column("ID", style="cyan")
    table.add_column("When")
    table.add_column("Source")
    table.add_column("Target")
    table.add_column("Files", justify="right")
    for entry in entries:
        table.add_row(entry.id, entry.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
                      str(entry.source_root), str(entry.target_root), str(len(entry.moves)))
    console.print(table)


@cli.command()
@click.argument('entry_id', required=False)
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation')
@click.option('--keep', is_flag=True, help='Keep the entry in history afterwards')
@click.pass_obj
def undo(config: Config, entry_id: Optional[str], yes: bool, keep: bool):
    """Move the files of an operation back (default: the most recent one)."""
    log = HistoryLog(config.history_path)

    if entry_id:
        entry = log.get(entry_id)
    else:
        recent = log.recent(1)
        entry = recent[0] if recent else None

    if entry is None:
        console.print("[yellow]Nothing to undo[/yellow]")
        return

    console.print(f"\nOperation {entry.id} from {entry.timestamp.strftime('%Y-%m-%d %H:%M:%S')}")
    console.print(f"Source: {entry.source_root}")
    console.print(f"Target: {entry.target_root}")
    console.print(f"Files moved: {len(entry.moves)}")

    if not yes and not Confirm.ask(f"\nMove {len(entry.moves)} files back?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    async def _undo():
        service = UndoService(log)
        try:
            return await service.undo(entry, delete_after=not keep)
        finally:
            service.close()

    result = asyncio.run(_undo())
    if result.is_failure():
        _fail(str(result.error()))

    report = result.value()
    console.print(f"\n[green]Restored {report.restored} files to {entry.source_root}[/green]")
    if report.skipped:
        console.print(f"[yellow]{report.skipped} files skipped (moved or deleted since)[/yellow]")
    if report.failed:
        console.print(f"[red]{report.failed} files could not be moved back[/red]")
        for error in report.errors[:10]:
            console.print(f"  • {error}")


@cli.command()
@click.argument('paths', nargs=-1, type=click.Path(path_type=Path))
@click.option('--delay', type=int, default=None, help='Quiet period in milliseconds')
@click.option('--recursive', is_flag=True, help='Watch subdirectories')
@click.pass_obj
def watch(config: Config, paths: List[Path], delay: Optional[int], recursive: bool):
    """Report batches of new or changed files under PATHS until interrupted."""
    watcher_config = config.watcher
    if delay is not None:
        watcher_config.delay = delay / 1000
    if recursive:
        watcher_config.recursive = True
    paths = list(paths) or [config.source_directory]

    def _on_batch(events: List[WatchEvent]) -> None:
        console.print(f"\n[bold cyan]{len(events)} file(s) ready[/bold cyan]")
        for event in events:
            console.print(f"  {event.type.value:6} {event.path}")

    def _on_error(error: WatcherError) -> None:
        console.print(f"[red]{error}[/red]")

    async def _watch():
        watcher = DirectoryWatcher(_on_batch, watcher_config, on_error=_on_error)
        await watcher.start(paths)
        console.print(f"Watching {', '.join(str(p) for p in paths)} (Ctrl+C to stop)")
        try:
            await asyncio.Event().wait()
        finally:
            await watcher.stop()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("\nStopped")


def main():
    cli()


if __name__ == '__main__':
    main()
