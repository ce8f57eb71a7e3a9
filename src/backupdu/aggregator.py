"""Folding measured records into totals."""

from typing import Iterable, Optional

from backupdu.models import (
    BackupRecord,
    BackupType,
    LayoutKind,
    ScanDiagnostics,
    ScanResult,
    ScanTotals,
)


def aggregate_totals(records: Iterable[BackupRecord]) -> tuple[ScanTotals, int]:
    """
    Sum known sizes overall and per type/bucket.

    Args:
        records: Measured records

    Returns:
        (totals, number of records whose size is unknown)
    """
    totals = ScanTotals()
    unknown = 0

    for record in records:
        if record.size_bytes is None:
            unknown += 1
            continue

        totals.overall_size += record.size_bytes
        totals.overall_count += 1

        type_key = BackupType.coerce(record.backup_type).value
        buckets = totals.per_type_bucket_sums.setdefault(type_key, {})
        buckets[record.bucket_label] = buckets.get(record.bucket_label, 0) + record.size_bytes

    return totals, unknown


def aggregate(
    records: list[BackupRecord],
    diagnostics: Optional[ScanDiagnostics] = None,
    scan_root: str = "",
    layout: LayoutKind = LayoutKind.UNKNOWN,
    unpacked: bool = False,
) -> ScanResult:
    """
    Build the ScanResult for a finished scan.

    Timeout counters in diagnostics are carried over as they are; the
    unknown-size count is taken from the records themselves.
    """
    totals, unknown = aggregate_totals(records)
    diagnostics = diagnostics.model_copy() if diagnostics is not None else ScanDiagnostics()
    diagnostics.unknown_size_count = unknown

    return ScanResult(
        scan_root=scan_root,
        layout=layout,
        unpacked=unpacked,
        records=list(records),
        totals=totals,
        diagnostics=diagnostics,
    )
