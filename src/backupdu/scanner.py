"""Backup scanning: detect, enumerate, measure, aggregate, cache."""

import logging
import os
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, NamedTuple, Optional

from backupdu.aggregator import aggregate
from backupdu.archive import inspect_archive, is_archive
from backupdu.cache import CacheStore, FileCacheStore, cache_key, get_or_compute
from backupdu.config import Settings, load_settings
from backupdu.layout import detect_layout
from backupdu.models import (
    BackupRecord,
    BackupType,
    DiskUsage,
    EntryKind,
    ScanDiagnostics,
    ScanResult,
    ScanTarget,
    SizeMethod,
    SortKey,
    TypeFilter,
)
from backupdu.sizing import SizeProbe, make_probe, measure_target
from backupdu.targets import enumerate_targets

logger = logging.getLogger(__name__)

ROOT_BASES = ("/backup", "/newbackup")
MAX_ROOT_INDEX = 5

# Roots that must never be scanned
BLOCKED_ROOTS = frozenset(
    {
        "/",
        "/bin",
        "/boot",
        "/dev",
        "/etc",
        "/lib",
        "/lib64",
        "/proc",
        "/root",
        "/run",
        "/sbin",
        "/sys",
        "/usr",
        "/var/lib",
    }
)
# ...and nothing below these
BLOCKED_TREES = ("/proc", "/sys", "/dev")


class ScanRootError(ValueError):
    """The scan root does not exist or cannot be read."""


def sanitize_scan_root(raw: Optional[str], default: str = "/backup") -> str:
    """
    Normalize a user-supplied scan root.

    Empty input, ``..`` components and system directories fall back to
    default; relative paths are made absolute.

    Args:
        raw: Path as received from the user
        default: Canonical root to fall back to

    Returns:
        Absolute, normalized path without a trailing slash
    """
    value = (raw or "").strip()
    if not value:
        return default

    if ".." in value.split("/"):
        logger.warning("Rejected scan root %r: parent traversal", value)
        return default

    if not value.startswith("/"):
        value = "/" + value
    value = os.path.normpath(value)
    if value.startswith("//"):
        value = "/" + value.lstrip("/")

    if value in BLOCKED_ROOTS or any(value.startswith(tree + "/") for tree in BLOCKED_TREES):
        logger.warning("Rejected scan root %r: system directory", value)
        return default

    return value


def ensure_scan_root(scan_root: str) -> None:
    """Raise ScanRootError unless scan_root is a readable directory."""
    if not os.path.isdir(scan_root):
        raise ScanRootError(f"Backup root {scan_root} does not exist")
    if not os.access(scan_root, os.R_OK | os.X_OK):
        raise ScanRootError(f"Backup root {scan_root} is not readable")


def discover_backup_roots(
    bases: tuple[str, ...] = ROOT_BASES, max_index: int = MAX_ROOT_INDEX
) -> list[str]:
    """
    Existing candidate backup roots among the conventional locations.

    Checks each base and its numbered variants (``/backup``, ``/backup1`` ...
    ``/backup5``), in that order.
    """
    roots = []
    for base in bases:
        for candidate in [base] + [f"{base}{i}" for i in range(1, max_index + 1)]:
            if os.path.isdir(candidate):
                roots.append(candidate)
    return roots


def _modified_at(path: str) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(os.stat(path).st_mtime)
    except (OSError, OverflowError, ValueError):
        return None


class _Measured(NamedTuple):
    """One record plus the timeouts hit while producing it."""

    record: BackupRecord
    du_timeout: bool = False
    archive_timeout: bool = False
    skipped: bool = False


def measure_one(
    target: ScanTarget,
    probe: SizeProbe,
    settings: Settings,
    unpacked: bool = False,
    deadline: Optional[float] = None,
) -> _Measured:
    """Measure one target into a BackupRecord."""
    entry_kind = EntryKind.FILE if target.is_file else EntryKind.DIR
    base = dict(
        path=target.scan_path,
        modified_at=_modified_at(target.scan_path),
        bucket_label=target.bucket_label,
        backup_type=BackupType.coerce(target.backup_type),
        entry_kind=entry_kind,
    )

    # Files are a single stat and still measured past the deadline.
    past_deadline = deadline is not None and time.monotonic() > deadline
    if past_deadline and not target.is_file:
        record = BackupRecord(size_bytes=None, size_method=SizeMethod.DU_TIMEOUT, **base)
        return _Measured(record, skipped=True)

    size, method = measure_target(target, probe, settings.du_timeout)

    unpacked_size = None
    archive_timeout = False
    if unpacked and target.is_file and not past_deadline and is_archive(target.scan_path):
        inspection = inspect_archive(
            target.scan_path,
            settings.archive_timeout,
            low_priority=settings.low_priority,
            kill_grace=settings.kill_grace,
        )
        unpacked_size = inspection.size_bytes
        archive_timeout = inspection.timed_out

    record = BackupRecord(
        size_bytes=size, unpacked_size_bytes=unpacked_size, size_method=method, **base
    )
    return _Measured(
        record,
        du_timeout=method == SizeMethod.DU_TIMEOUT,
        archive_timeout=archive_timeout,
    )


def run_scan(
    scan_root: str,
    unpacked: bool = False,
    settings: Optional[Settings] = None,
    probe: Optional[SizeProbe] = None,
    progress_callback: Optional[Callable[[str, int, int], None]] = None,
) -> ScanResult:
    """
    Scan a backup root without consulting the cache.

    Args:
        scan_root: Sanitized absolute root
        unpacked: Also compute unpacked sizes of archive files
        settings: Tunables (defaults if None)
        probe: Listing/size backend (from settings if None)
        progress_callback: Optional callback(path, current, total)

    Returns:
        ScanResult with records in enumeration order
    """
    settings = settings or Settings()
    probe = probe or make_probe(settings)
    deadline = time.monotonic() + settings.scan_deadline
    diagnostics = ScanDiagnostics()

    layout = detect_layout(scan_root)
    targets = enumerate_targets(
        scan_root,
        layout,
        probe=probe,
        list_timeout=settings.list_timeout,
        max_items=settings.max_items,
        diagnostics=diagnostics,
    )
    logger.info("Scanning %s (%s): %d targets", scan_root, layout.value, len(targets))

    def _measure(target: ScanTarget) -> _Measured:
        return measure_one(target, probe, settings, unpacked=unpacked, deadline=deadline)

    total = len(targets)
    if settings.workers > 1 and total > 1:
        with ThreadPoolExecutor(max_workers=settings.workers) as executor:
            measured_iter = executor.map(_measure, targets)
            measured = []
            for i, item in enumerate(measured_iter):
                measured.append(item)
                if progress_callback:
                    progress_callback(item.record.path, i + 1, total)
    else:
        measured = []
        for i, target in enumerate(targets):
            measured.append(_measure(target))
            if progress_callback:
                progress_callback(target.scan_path, i + 1, total)

    for item in measured:
        if item.skipped:
            diagnostics.deadline_skips += 1
        if item.du_timeout:
            diagnostics.du_timeouts += 1
        if item.archive_timeout:
            diagnostics.archive_timeouts += 1
    if diagnostics.deadline_skips:
        logger.warning(
            "Scan deadline of %.0fs reached, %d targets left unmeasured",
            settings.scan_deadline,
            diagnostics.deadline_skips,
        )

    return aggregate(
        [item.record for item in measured],
        diagnostics,
        scan_root=scan_root,
        layout=layout,
        unpacked=unpacked,
    )


def scan_backups(
    scan_root: Optional[str] = None,
    unpacked: bool = False,
    force_refresh: bool = False,
    settings: Optional[Settings] = None,
    store: Optional[CacheStore] = None,
    probe: Optional[SizeProbe] = None,
    progress_callback: Optional[Callable[[str, int, int], None]] = None,
) -> Optional[ScanResult]:
    """
    Scan a backup root through the result cache.

    Args:
        scan_root: Root to scan, sanitized first (settings.default_root if None)
        unpacked: Also compute unpacked archive sizes
        force_refresh: Ignore a fresh cached result
        settings: Tunables (loaded from config if None)
        store: Cache store (a FileCacheStore in settings.cache_dir if None)
        probe: Listing/size backend (from settings if None)
        progress_callback: Optional callback(path, current, total)

    Returns:
        ScanResult, or None when another process is computing it and no
        earlier result is stored

    Raises:
        ScanRootError: If the root does not exist or is not readable
    """
    settings = settings or load_settings()
    root = sanitize_scan_root(scan_root, settings.default_root)
    ensure_scan_root(root)

    store = store or FileCacheStore(settings.cache_dir)
    try:
        store.sweep(settings.cache_retention)
    except OSError as e:
        logger.warning("Cache sweep failed: %s", e)

    return get_or_compute(
        store,
        cache_key(root, unpacked),
        settings.cache_ttl,
        force_refresh,
        lambda: run_scan(
            root,
            unpacked=unpacked,
            settings=settings,
            probe=probe,
            progress_callback=progress_callback,
        ),
    )


# =============================================================================
# Report helpers
# =============================================================================


def sort_records(records: list[BackupRecord], sort_key: SortKey | str) -> list[BackupRecord]:
    """
    Sort records by size or modification time.

    Records without a known size (or mtime, for date sorts) go last in
    either direction.
    """
    sort_key = SortKey(sort_key)

    if sort_key in (SortKey.SIZE_DESC, SortKey.SIZE_ASC):
        known = [r for r in records if r.size_bytes is not None]
        unknown = [r for r in records if r.size_bytes is None]
        known.sort(key=lambda r: r.size_bytes, reverse=sort_key == SortKey.SIZE_DESC)
    else:
        known = [r for r in records if r.modified_at is not None]
        unknown = [r for r in records if r.modified_at is None]
        known.sort(key=lambda r: r.modified_at, reverse=sort_key == SortKey.DATE_DESC)

    return known + unknown


def filter_records(records: list[BackupRecord], type_filter: TypeFilter | str) -> list[BackupRecord]:
    """Records of one backup type (all of them for TypeFilter.ALL)."""
    type_filter = TypeFilter(type_filter)
    if type_filter == TypeFilter.ALL:
        return list(records)
    return [r for r in records if r.backup_type.value == type_filter.value]


def type_breakdown(result: ScanResult) -> dict[str, int]:
    """Bytes per backup type, for the per-type chart."""
    return {
        type_key: sum(buckets.values())
        for type_key, buckets in result.totals.per_type_bucket_sums.items()
    }


def bucket_breakdown(result: ScanResult, backup_type: BackupType | str) -> list[tuple[str, int]]:
    """(bucket label, bytes) pairs of one type, largest first."""
    key = BackupType.coerce(backup_type).value
    buckets = result.totals.per_type_bucket_sums.get(key, {})
    return sorted(buckets.items(), key=lambda item: item[1], reverse=True)


def get_disk_usage(path: str = "/backup") -> DiskUsage:
    """
    Usage of the filesystem holding path.

    Args:
        path: Any path on the filesystem of interest

    Returns:
        DiskUsage with total, used and free bytes
    """
    usage = shutil.disk_usage(path)
    return DiskUsage(
        total_bytes=usage.total,
        used_bytes=usage.used,
        free_bytes=usage.free,
        mount_point=path,
    )
