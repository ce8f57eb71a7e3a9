"""Custom widgets for backupdu TUI."""

from typing import Optional

from textual.app import ComposeResult
from textual.containers import VerticalScroll
from textual.reactive import reactive
from textual.widgets import Static

from backupdu.display import type_color
from backupdu.models import BackupRecord, DiskUsage, ScanResult, format_size
from backupdu.scanner import type_breakdown


class DiskUsageBar(Static):
    """Disk usage bar split into one segment per backup type."""

    usage_percent: reactive[float] = reactive(0.0)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.disk_usage: Optional[DiskUsage] = None
        self.breakdown: dict[str, int] = {}

    def update_usage(self, disk_usage: DiskUsage, result: Optional[ScanResult] = None) -> None:
        """Update with new disk usage data."""
        self.disk_usage = disk_usage
        self.breakdown = type_breakdown(result) if result else {}
        self.usage_percent = disk_usage.used_percent
        self.refresh()

    def render(self) -> str:
        """Render the disk usage bar."""
        if not self.disk_usage:
            return "[dim]Loading disk usage...[/dim]"

        du = self.disk_usage
        bar_width = 50
        segments = []
        used_cells = 0
        for type_key, size in sorted(self.breakdown.items(), key=lambda i: i[1], reverse=True):
            cells = int(bar_width * size / du.total_bytes) if du.total_bytes else 0
            if cells <= 0:
                continue
            color = type_color(type_key)
            segments.append(f"[{color}]{'█' * cells}[/{color}]")
            used_cells += cells

        other_used = max(int(bar_width * du.used_percent / 100) - used_cells, 0)
        segments.append(f"[white]{'▓' * other_used}[/white]")
        segments.append(f"[dim]{'░' * max(bar_width - used_cells - other_used, 0)}[/dim]")

        legend = "  ".join(
            f"[{type_color(k)}]■[/] {k} {format_size(v)}"
            for k, v in sorted(self.breakdown.items())
        )
        return (
            f"[bold]Disk:[/bold] {du.mount_point}  {du.used_percent:.0f}% used\n"
            f"{''.join(segments)}\n"
            f"{legend}\n"
            f"[dim]Free: {du.free_gb:.0f} GB / Total: {du.total_gb:.0f} GB[/dim]"
        )


class RecordDetail(VerticalScroll):
    """Panel showing one record in full."""

    def compose(self) -> ComposeResult:
        yield Static("Select a backup to see details", id="detail-content")

    def show_record(self, record: BackupRecord) -> None:
        """Display information about a record."""
        lines = [
            f"[bold]{record.name}[/bold]",
            f"[dim]{record.path}[/dim]",
            "",
            f"Type:     [{type_color(record.backup_type)}]"
            f"{record.backup_type.value}[/]",
            f"Bucket:   {record.bucket_label}",
            f"Kind:     {record.entry_kind.value}",
            f"Size:     {record.size_human} [dim]({record.size_method.value})[/dim]",
        ]
        if record.unpacked_size_bytes is not None:
            lines.append(f"Unpacked: {format_size(record.unpacked_size_bytes)}")
        if record.modified_at:
            lines.append(f"Modified: {record.modified_at:%Y-%m-%d %H:%M}")
        self.query_one("#detail-content", Static).update("\n".join(lines))
