"""TUI screens for backupdu."""

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.screen import Screen
from textual.widgets import DataTable, Footer, Header, Static

from backupdu.display import format_gb, type_color
from backupdu.models import BackupType
from backupdu.scanner import (
    ScanRootError,
    filter_records,
    get_disk_usage,
    scan_backups,
    sort_records,
)
from backupdu.tui.widgets import DiskUsageBar, RecordDetail


class ReportScreen(Screen):
    """Backup records with totals, sorting and filtering."""

    BINDINGS = [
        Binding("s", "cycle_sort", "Sort"),
        Binding("t", "cycle_filter", "Type"),
        Binding("u", "toggle_unpacked", "Unpacked"),
        Binding("r", "refresh", "Rescan"),
    ]

    def compose(self) -> ComposeResult:
        yield Header()

        with Container(id="main-container"):
            yield DiskUsageBar(id="disk-bar")

            with Horizontal(id="content"):
                with Vertical(id="left-panel"):
                    yield Static("", id="totals")
                    yield DataTable(id="record-table")
                    yield Static("", id="status-line")

                with Vertical(id="right-panel"):
                    yield RecordDetail(id="record-detail")

        yield Footer()

    def on_mount(self) -> None:
        """Initialize the screen."""
        self._shown = []
        table = self.query_one("#record-table", DataTable)
        table.cursor_type = "row"
        table.add_columns("Size (GB)", "Unpacked (GB)", "File", "Modified", "Type", "Bucket")

        self.refresh_data()

    def refresh_data(self, force: bool = False) -> None:
        """Scan (or read the cache) in a worker thread."""
        self.notify(f"Scanning {self.app.scan_root}...", timeout=2)
        self.run_worker(lambda: self._load_data(force), thread=True, exclusive=True)

    def _load_data(self, force: bool) -> None:
        """Load data in background."""
        app = self.app
        try:
            result = scan_backups(
                app.scan_root,
                unpacked=app.unpacked,
                force_refresh=force,
                settings=app.scan_settings,
            )
            disk_usage = get_disk_usage(app.scan_root)
        except (ScanRootError, OSError) as e:
            self.app.call_from_thread(self._show_error, str(e))
            return

        self.app.call_from_thread(self._apply_result, result, disk_usage)

    def _show_error(self, message: str) -> None:
        self.query_one("#status-line", Static).update(f"[red]{message}[/red]")
        self.notify(message, severity="error", timeout=5)

    def _apply_result(self, result, disk_usage) -> None:
        app = self.app
        if result is None:
            self._show_error("A scan is already running and nothing is cached yet")
            return

        app.result = result
        self.query_one("#disk-bar", DiskUsageBar).update_usage(disk_usage, result)
        self._update_totals()
        self._update_table()
        self.notify("Scan complete!", timeout=2)

    def _update_totals(self) -> None:
        result = self.app.result
        if result is None:
            return

        totals = result.totals
        parts = [f"[bold]Total:[/bold] {result.overall_human} ({totals.overall_count} items)"]
        for backup_type in BackupType:
            size = totals.type_total(backup_type)
            if size:
                color = type_color(backup_type)
                parts.append(f"[{color}]{backup_type.value}[/]: {format_gb(size)} GB")

        diagnostics = result.diagnostics
        if diagnostics.has_problems:
            parts.append(
                f"[yellow]{diagnostics.unknown_size_count} unknown, "
                f"{diagnostics.du_timeouts + diagnostics.list_timeouts} timeouts[/yellow]"
            )
        self.query_one("#totals", Static).update(" | ".join(parts))

    def _update_table(self) -> None:
        """Fill the table from the current result, sort and filter."""
        app = self.app
        table = self.query_one("#record-table", DataTable)
        table.clear()

        if app.result is None:
            return

        records = sort_records(filter_records(app.result.records, app.type_filter), app.sort_key)
        self._shown = records
        for i, record in enumerate(records):
            color = type_color(record.backup_type)
            table.add_row(
                format_gb(record.size_bytes),
                format_gb(record.unpacked_size_bytes) if app.result.unpacked else "-",
                record.name,
                f"{record.modified_at:%Y-%m-%d %H:%M}" if record.modified_at else "-",
                f"[{color}]{record.backup_type.value}[/]",
                record.bucket_label,
                key=str(i),
            )

        self.query_one("#status-line", Static).update(
            f"sort: {app.sort_key.value}  type: {app.type_filter.value}  "
            f"unpacked: {'on' if app.unpacked else 'off'}  rows: {len(records)}"
        )

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        """Show details when row is highlighted."""
        if event.row_key is None:
            return

        index = int(str(event.row_key.value))
        if index < len(self._shown):
            self.query_one("#record-detail", RecordDetail).show_record(self._shown[index])

    def action_cycle_sort(self) -> None:
        """Switch to the next sort order."""
        sort_key = self.app.next_sort()
        self._update_table()
        self.notify(f"Sorted by {sort_key.value}", timeout=1)

    def action_cycle_filter(self) -> None:
        """Switch to the next type filter."""
        type_filter = self.app.next_filter()
        self._update_table()
        self.notify(f"Showing {type_filter.value}", timeout=1)

    def action_toggle_unpacked(self) -> None:
        """Toggle unpacked archive sizes; this needs a different cached scan."""
        self.app.unpacked = not self.app.unpacked
        self.refresh_data()

    def action_refresh(self) -> None:
        """Force a rescan."""
        self.refresh_data(force=True)
