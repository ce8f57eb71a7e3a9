"""Main TUI application for backupdu."""

from typing import Optional

from textual.app import App
from textual.binding import Binding

from backupdu.config import Settings, load_settings
from backupdu.models import ScanResult, SortKey, TypeFilter
from backupdu.tui.screens import ReportScreen

SORT_CYCLE = list(SortKey)
FILTER_CYCLE = list(TypeFilter)


class BackupUsageApp(App):
    """Interactive backup usage report."""

    TITLE = "backupdu"
    SUB_TITLE = "Backup Disk Usage"

    CSS_PATH = "styles.tcss"

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("?", "help", "Help"),
    ]

    SCREENS = {
        "report": ReportScreen,
    }

    def __init__(self, scan_root: str, settings: Optional[Settings] = None):
        super().__init__()
        self.scan_root = scan_root
        self.scan_settings = settings or load_settings()
        self.result: Optional[ScanResult] = None
        self.sort_key = SortKey.SIZE_DESC
        self.type_filter = TypeFilter.ALL
        self.unpacked = False

    def on_mount(self) -> None:
        """Called when the app is mounted."""
        self.sub_title = f"Backup Disk Usage - {self.scan_root}"
        self.push_screen("report")

    def next_sort(self) -> SortKey:
        """Advance to the next sort order."""
        index = SORT_CYCLE.index(self.sort_key)
        self.sort_key = SORT_CYCLE[(index + 1) % len(SORT_CYCLE)]
        return self.sort_key

    def next_filter(self) -> TypeFilter:
        """Advance to the next type filter."""
        index = FILTER_CYCLE.index(self.type_filter)
        self.type_filter = FILTER_CYCLE[(index + 1) % len(FILTER_CYCLE)]
        return self.type_filter

    def action_help(self) -> None:
        """Show help information."""
        self.notify(
            "S cycles sort, T cycles type filter, U toggles unpacked sizes, R rescans",
            title="Help",
            timeout=5,
        )


def run_tui(scan_root: str, settings: Optional[Settings] = None) -> None:
    """Run the interactive report.

    Args:
        scan_root: Sanitized backup root to report on
        settings: Tunables (loaded from config if None)
    """
    app = BackupUsageApp(scan_root, settings=settings)
    app.run()
