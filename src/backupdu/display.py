"""Rich terminal display for backupdu."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from backupdu.models import (
    GIB,
    BackupRecord,
    BackupType,
    DiskUsage,
    ScanDiagnostics,
    ScanResult,
    format_size,
)
from backupdu.scanner import type_breakdown

console = Console()

# Records above this size are highlighted
HIGH_USAGE_BYTES = 10 * GIB

TYPE_COLORS = {
    BackupType.DAILY: "blue",
    BackupType.WEEKLY: "magenta",
    BackupType.MONTHLY: "yellow",
    BackupType.SYSTEM: "purple",
    BackupType.MANUAL: "dark_orange",
    BackupType.OTHER: "grey50",
}

SUMMARY_TYPES = (BackupType.DAILY, BackupType.WEEKLY, BackupType.MONTHLY)


def type_color(backup_type: BackupType | str) -> str:
    """Rich colour used for a backup type everywhere it is drawn."""
    return TYPE_COLORS.get(BackupType.coerce(backup_type), "white")


def type_label(backup_type: BackupType | str) -> str:
    """Get styled label for a backup type."""
    backup_type = BackupType.coerce(backup_type)
    color = type_color(backup_type)
    return f"[{color}]{backup_type.value}[/{color}]"


def format_gb(size_bytes: Optional[int]) -> str:
    """Size in GiB with two decimals, the way the report lists records."""
    if size_bytes is None:
        return "[dim]unknown[/dim]"
    return f"{size_bytes / GIB:.2f}"


def show_summary(result: ScanResult) -> None:
    """Display the one-line totals summary."""
    totals = result.totals
    parts = [
        f"[bold]Total:[/bold] {format_size(totals.overall_size)} ({totals.overall_count} items)"
    ]
    for backup_type in SUMMARY_TYPES:
        parts.append(f"{backup_type.value.capitalize()}: {format_size(totals.type_total(backup_type))}")

    console.print(
        Panel(
            " | ".join(parts),
            title=f"{result.scan_root} [dim]({result.layout.value})[/dim]",
            border_style="blue",
        )
    )


def show_records(records: list[BackupRecord], limit: Optional[int] = 20, unpacked: bool = False) -> None:
    """Display the records table."""
    if not records:
        console.print("[yellow]No backups found.[/yellow]")
        return

    shown = records if limit is None else records[:limit]
    table = Table(
        title=f"Top Backups ({len(records)})", show_header=True, header_style="bold"
    )
    table.add_column("Size (GB)", justify="right")
    if unpacked:
        table.add_column("Unpacked (GB)", justify="right")
    table.add_column("File")
    table.add_column("Modified")
    table.add_column("Type")
    table.add_column("Bucket")

    for record in shown:
        size_cell = format_gb(record.size_bytes)
        if record.size_bytes is not None and record.size_bytes > HIGH_USAGE_BYTES:
            size_cell = f"[bold red]{size_cell}[/bold red]"

        row = [size_cell]
        if unpacked:
            row.append(format_gb(record.unpacked_size_bytes))
        row += [
            record.name,
            record.modified_at.strftime("%Y-%m-%d %H:%M") if record.modified_at else "[dim]-[/dim]",
            type_label(record.backup_type),
            record.bucket_label,
        ]
        table.add_row(*row)

    console.print(table)
    if len(shown) < len(records):
        console.print(f"[dim]...and {len(records) - len(shown)} more[/dim]")


def show_type_totals(result: ScanResult) -> None:
    """Display bytes per type and bucket."""
    sums = result.totals.per_type_bucket_sums
    if not sums:
        return

    table = Table(title="By Type/Bucket", show_header=True, header_style="bold")
    table.add_column("Type")
    table.add_column("Bucket")
    table.add_column("Size", justify="right")

    for backup_type in BackupType:
        buckets = sums.get(backup_type.value)
        if not buckets:
            continue
        for label, size in sorted(buckets.items()):
            table.add_row(type_label(backup_type), label, format_size(size))

    console.print(table)


def show_diagnostics(diagnostics: ScanDiagnostics) -> None:
    """Display what could not be measured, if anything."""
    if not diagnostics.has_problems:
        return

    parts = []
    if diagnostics.unknown_size_count:
        parts.append(f"{diagnostics.unknown_size_count} unknown sizes")
    if diagnostics.du_timeouts:
        parts.append(f"{diagnostics.du_timeouts} size timeouts")
    if diagnostics.list_timeouts:
        parts.append(f"{diagnostics.list_timeouts} listing timeouts")
    if diagnostics.archive_timeouts:
        parts.append(f"{diagnostics.archive_timeouts} archive timeouts")
    if diagnostics.truncated_listings:
        parts.append(f"{diagnostics.truncated_listings} listings capped")
    if diagnostics.deadline_skips:
        parts.append(f"{diagnostics.deadline_skips} skipped at deadline")
    console.print(f"[yellow]! {', '.join(parts)}[/yellow]")


def show_scan_result(
    result: ScanResult,
    records: Optional[list[BackupRecord]] = None,
    limit: Optional[int] = 20,
) -> None:
    """Display a full scan report; records defaults to the result's own, unsorted."""
    show_summary(result)
    show_diagnostics(result.diagnostics)
    console.print()
    show_records(result.records if records is None else records, limit=limit, unpacked=result.unpacked)
    console.print()
    show_type_totals(result)
    console.print(f"[dim]Scanned {result.scanned_at:%Y-%m-%d %H:%M:%S}[/dim]")


def show_roots(roots: list[str]) -> None:
    """Display discovered backup roots."""
    if not roots:
        console.print("[yellow]No backup roots found.[/yellow]")
        return

    console.print("[bold]Backup Roots[/bold]")
    for root in roots:
        console.print(f"  • {root}")


def show_disk_usage(disk_usage: DiskUsage, result: Optional[ScanResult] = None) -> None:
    """Display a usage bar for the disk plus the share taken by each backup type."""
    used_percent = disk_usage.used_percent
    if used_percent >= 90:
        color = "red"
    elif used_percent >= 75:
        color = "yellow"
    else:
        color = "green"

    bar_width = 40
    filled = int(bar_width * used_percent / 100)
    console.print(f"[bold]Disk:[/bold] {disk_usage.mount_point}")
    console.print(
        f"[{color}]{'█' * filled}[/{color}][dim]{'░' * (bar_width - filled)}[/dim] "
        f"[{color}]{used_percent:.0f}%[/{color}]"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Slice")
    table.add_column("Size", justify="right")
    table.add_column("Share", justify="right")

    if result is not None:
        for type_key, size in sorted(type_breakdown(result).items(), key=lambda i: i[1], reverse=True):
            if size <= 0:
                continue
            share = size / disk_usage.total_bytes * 100 if disk_usage.total_bytes else 0
            table.add_row(type_label(type_key), format_size(size), f"{share:.1f}%")

    free_share = disk_usage.free_bytes / disk_usage.total_bytes * 100 if disk_usage.total_bytes else 0
    table.add_row("[dim]free[/dim]", format_size(disk_usage.free_bytes), f"{free_share:.1f}%")
    table.add_row("[bold]total[/bold]", format_size(disk_usage.total_bytes), "")
    console.print(table)


def show_scanning_progress() -> Progress:
    """Create progress bar for scanning."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
    )
