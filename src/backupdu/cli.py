"""CLI interface for backupdu."""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from backupdu import __version__
from backupdu.cache import FileCacheStore
from backupdu.config import load_settings
from backupdu.display import (
    console,
    show_disk_usage,
    show_roots,
    show_scan_result,
    show_scanning_progress,
)
from backupdu.models import SortKey, TypeFilter
from backupdu.scanner import (
    ScanRootError,
    discover_backup_roots,
    filter_records,
    get_disk_usage,
    sanitize_scan_root,
    scan_backups,
    sort_records,
)

# Create Typer app
app = typer.Typer(
    name="backupdu",
    help="Disk usage report for server backup directories",
    add_completion=False,
)

NO_RESULT_MESSAGE = "A scan of {root} is already running and no earlier result is cached. Try again shortly."


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"backupdu version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
) -> None:
    """backupdu - backup directory disk usage."""
    configure_logging(verbose)


@app.command()
def scan(
    root: Optional[str] = typer.Argument(None, help="Backup root to scan (default from config)"),
    unpacked: bool = typer.Option(False, "--unpacked", help="Also list archives for unpacked sizes"),
    refresh: bool = typer.Option(False, "--refresh", help="Ignore the cached result"),
    sort: SortKey = typer.Option(SortKey.SIZE_DESC, "--sort", "-s", help="Sort order"),
    type_filter: TypeFilter = typer.Option(TypeFilter.ALL, "--type", "-t", help="Only this backup type"),
    limit: int = typer.Option(20, "--limit", "-n", help="Rows to show (0 for all)"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """Scan a backup root and show what it holds."""
    settings = load_settings(config)
    scan_root = sanitize_scan_root(root, settings.default_root)

    try:
        if as_json:
            result = scan_backups(scan_root, unpacked=unpacked, force_refresh=refresh, settings=settings)
        else:
            with show_scanning_progress() as progress:
                task = progress.add_task(f"Scanning {scan_root}...", total=None)

                def update_progress(path: str, current: int, total: int):
                    progress.update(task, completed=current, total=total)

                result = scan_backups(
                    scan_root,
                    unpacked=unpacked,
                    force_refresh=refresh,
                    settings=settings,
                    progress_callback=update_progress,
                )
    except ScanRootError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if result is None:
        console.print(f"[yellow]{NO_RESULT_MESSAGE.format(root=scan_root)}[/yellow]")
        raise typer.Exit(1)

    records = sort_records(filter_records(result.records, type_filter), sort)

    if as_json:
        result = result.model_copy(update={"records": records})
        typer.echo(result.model_dump_json(indent=2))
        return

    show_scan_result(result, records=records, limit=limit or None)


@app.command()
def roots() -> None:
    """List backup roots found in the conventional locations."""
    show_roots(discover_backup_roots())


@app.command()
def usage(
    root: Optional[str] = typer.Argument(None, help="Backup root (default from config)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """Show disk usage of a backup root's filesystem by backup type."""
    settings = load_settings(config)
    scan_root = sanitize_scan_root(root, settings.default_root)

    try:
        result = scan_backups(scan_root, settings=settings)
    except ScanRootError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if result is None:
        console.print(f"[yellow]{NO_RESULT_MESSAGE.format(root=scan_root)}[/yellow]")
    show_disk_usage(get_disk_usage(scan_root), result)


@app.command()
def sweep(
    clear: bool = typer.Option(False, "--all", help="Remove every cached result, not just stale ones"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """Delete stale cached scan results."""
    settings = load_settings(config)
    store = FileCacheStore(settings.cache_dir)
    try:
        removed = store.clear() if clear else store.sweep(settings.cache_retention)
    except OSError as e:
        console.print(f"[red]Error: cannot sweep {settings.cache_dir}: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"Removed {removed} cache files from {settings.cache_dir}")


@app.command()
def tui(
    root: Optional[str] = typer.Argument(None, help="Backup root (default from config)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """Launch the interactive report."""
    try:
        from backupdu.tui import run_tui
    except ImportError:
        console.print("[red]TUI not available.[/red]")
        console.print("Install with: [bold]pip install backup-disk-usage[tui][/bold]")
        raise typer.Exit(1)

    settings = load_settings(config)
    run_tui(sanitize_scan_root(root, settings.default_root), settings=settings)


if __name__ == "__main__":
    app()
