"""Data models for backupdu."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

GIB = 1024**3


class BackupType(str, Enum):
    """Backup cadence a scan target belongs to."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MANUAL = "manual"
    SYSTEM = "system"
    OTHER = "other"

    @classmethod
    def coerce(cls, value) -> "BackupType":
        """Map any value onto the closed set, folding unknowns to OTHER."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class LayoutKind(str, Enum):
    """On-disk layout detected under a scan root."""

    FLAT_DATED = "flat_dated"  # <date>/accounts, <date>/system
    ARCHIVED_FULL = "archived_full"  # full/<type>/accounts
    BUCKETED_DATED = "bucketed_dated"  # daily|weekly|monthly/<date or user>
    UNKNOWN = "unknown"


class SizeMethod(str, Enum):
    """How a record's size was obtained."""

    STAT = "stat"
    DU = "du"
    DU_TIMEOUT = "du_timeout"


class EntryKind(str, Enum):
    FILE = "file"
    DIR = "dir"


class SortKey(str, Enum):
    """Sort orders offered by the report."""

    SIZE_DESC = "size_desc"
    SIZE_ASC = "size_asc"
    DATE_DESC = "date_desc"
    DATE_ASC = "date_asc"


class TypeFilter(str, Enum):
    """Type filters offered by the report."""

    ALL = "all"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MANUAL = "manual"
    SYSTEM = "system"


def format_size(size_bytes: Optional[int]) -> str:
    """Format bytes as a human-readable string (binary units)."""
    if size_bytes is None:
        return "unknown"
    if size_bytes >= 1024**4:
        return f"{size_bytes / 1024**4:.1f} TB"
    elif size_bytes >= GIB:
        return f"{size_bytes / GIB:.1f} GB"
    elif size_bytes >= 1024**2:
        return f"{size_bytes / 1024**2:.1f} MB"
    elif size_bytes >= 1024:
        return f"{size_bytes / 1024:.1f} KB"
    else:
        return f"{size_bytes} B"


class CommandResult(BaseModel):
    """Outcome of one bounded external command."""

    command: list[str] = Field(default_factory=list, description="Argument vector that was run")
    success: bool = Field(False, description="Exited with status 0 and did not time out")
    stdout: str = Field("", description="Captured standard output (partial on timeout)")
    stderr: str = Field("", description="Captured standard error (partial on timeout)")
    timed_out: bool = Field(False, description="Whether the wall-clock bound was hit")
    exit_code: Optional[int] = Field(None, description="Process exit status, if it exited")
    elapsed: float = Field(0.0, description="Wall-clock seconds spent")


class ListedEntry(BaseModel):
    """One immediate child of a listed directory."""

    name: str
    is_dir: bool = False


class Listing(BaseModel):
    """Shallow listing of one directory, bounded by time and item count."""

    path: str
    entries: list[ListedEntry] = Field(default_factory=list)
    timed_out: bool = False
    truncated: bool = False
    error: Optional[str] = None

    @property
    def dirs(self) -> list[ListedEntry]:
        return [e for e in self.entries if e.is_dir]

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.entries]


class ScanTarget(BaseModel):
    """One unit of measurement work."""

    backup_type: BackupType = Field(BackupType.OTHER, description="Backup cadence")
    bucket_label: str = Field(..., description="Grouping label (date, directory or type/label)")
    scan_path: str = Field(..., description="File or directory to measure")
    is_file: bool = Field(False, description="Whether scan_path is a single file")


class BackupRecord(BaseModel):
    """One measured scan target."""

    size_bytes: Optional[int] = Field(None, ge=0, description="Size in bytes, None if unknown")
    unpacked_size_bytes: Optional[int] = Field(
        None, ge=0, description="Uncompressed archive size, None if unknown or not requested"
    )
    size_method: SizeMethod = Field(..., description="How size_bytes was measured")
    path: str = Field(..., description="Measured path")
    modified_at: Optional[datetime] = Field(None, description="Modification time, if readable")
    bucket_label: str = Field(..., description="Aggregation bucket")
    backup_type: BackupType = Field(BackupType.OTHER, description="Backup cadence")
    entry_kind: EntryKind = Field(..., description="file or dir")

    @property
    def size_known(self) -> bool:
        return self.size_bytes is not None

    @property
    def size_gb(self) -> Optional[float]:
        """Size in GiB rounded to two places, like the panel shows it."""
        if self.size_bytes is None:
            return None
        return round(self.size_bytes / GIB, 2)

    @property
    def size_human(self) -> str:
        return format_size(self.size_bytes)

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1] or self.path


class ScanTotals(BaseModel):
    """Sums over records whose size is known."""

    overall_size: int = 0
    overall_count: int = 0
    per_type_bucket_sums: dict[str, dict[str, int]] = Field(
        default_factory=dict, description="backup type -> bucket label -> bytes"
    )

    def type_total(self, backup_type: BackupType | str) -> int:
        """Total bytes recorded for one backup type."""
        key = BackupType.coerce(backup_type).value
        return sum(self.per_type_bucket_sums.get(key, {}).values())


class ScanDiagnostics(BaseModel):
    """Counters describing what could not be measured."""

    list_timeouts: int = 0
    du_timeouts: int = 0
    archive_timeouts: int = 0
    unknown_size_count: int = 0
    truncated_listings: int = 0
    deadline_skips: int = 0

    @property
    def has_problems(self) -> bool:
        return any(
            (
                self.list_timeouts,
                self.du_timeouts,
                self.archive_timeouts,
                self.unknown_size_count,
                self.truncated_listings,
                self.deadline_skips,
            )
        )


class ScanResult(BaseModel):
    """Complete result of scanning one backup root."""

    scan_root: str = Field(..., description="Root that was scanned")
    layout: LayoutKind = Field(LayoutKind.UNKNOWN, description="Detected layout")
    unpacked: bool = Field(False, description="Whether unpacked archive sizes were requested")
    scanned_at: datetime = Field(default_factory=datetime.now)
    records: list[BackupRecord] = Field(default_factory=list)
    totals: ScanTotals = Field(default_factory=ScanTotals)
    diagnostics: ScanDiagnostics = Field(default_factory=ScanDiagnostics)

    @property
    def overall_human(self) -> str:
        return format_size(self.totals.overall_size)


class DiskUsage(BaseModel):
    """Usage of the filesystem holding a backup root."""

    total_bytes: int = Field(..., description="Total disk size in bytes")
    used_bytes: int = Field(..., description="Used space in bytes")
    free_bytes: int = Field(..., description="Free space in bytes")
    mount_point: str = Field("/", description="Path the usage was read for")

    @property
    def total_gb(self) -> float:
        return self.total_bytes / GIB

    @property
    def used_gb(self) -> float:
        return self.used_bytes / GIB

    @property
    def free_gb(self) -> float:
        return self.free_bytes / GIB

    @property
    def used_percent(self) -> float:
        """Percentage of disk used."""
        return (self.used_bytes / self.total_bytes) * 100 if self.total_bytes > 0 else 0
