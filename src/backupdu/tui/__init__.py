"""Interactive report for backupdu (requires the ``tui`` extra)."""

from backupdu.tui.app import BackupUsageApp, run_tui

__all__ = ["BackupUsageApp", "run_tui"]
