"""backupdu - backup directory disk usage reporting for hosting servers."""

__version__ = "0.1.0"
