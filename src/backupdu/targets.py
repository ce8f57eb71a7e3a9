"""Scan target enumeration for each backup layout.

Enumeration only ever lists the immediate children of a bounded number of
directories (root, cadence folders, date/type folders and their accounts/
folders). Nothing below that is walked; sizes of deeper trees are left to the
size probe, which is itself time-bounded.
"""

import logging
import os
from typing import Optional

from backupdu.layout import CADENCE_DIRS, date_dir_parents, is_date_name, is_mostly_dated
from backupdu.models import BackupType, LayoutKind, Listing, ScanDiagnostics, ScanTarget
from backupdu.sizing import NativeProbe, SizeProbe

logger = logging.getLogger(__name__)

DEFAULT_LIST_TIMEOUT = 10.0
DEFAULT_MAX_ITEMS = 4000

# Types a full/<name> directory may declare; anything else is OTHER.
ARCHIVED_TYPES = {
    "daily": BackupType.DAILY,
    "weekly": BackupType.WEEKLY,
    "monthly": BackupType.MONTHLY,
    "manual": BackupType.MANUAL,
}

# Subfolders that hold a user's data inside a daily/<user> bucket, in order of preference.
USER_DATA_DIRS = ("accounts", "raw")


def _isdir(path: str) -> bool:
    try:
        return os.path.isdir(path)
    except OSError:
        return False


class TargetEnumerator:
    """Builds ScanTargets for one scan root, counting listing problems."""

    def __init__(
        self,
        probe: Optional[SizeProbe] = None,
        list_timeout: float = DEFAULT_LIST_TIMEOUT,
        max_items: int = DEFAULT_MAX_ITEMS,
        diagnostics: Optional[ScanDiagnostics] = None,
    ):
        self.probe = probe or NativeProbe()
        self.list_timeout = list_timeout
        self.max_items = max_items
        self.diagnostics = diagnostics if diagnostics is not None else ScanDiagnostics()

    def list_dir(self, path: str) -> Listing:
        """Bounded shallow listing of path; problems are counted, not raised."""
        listing = self.probe.list_dir(path, self.list_timeout, self.max_items)
        if listing.timed_out:
            self.diagnostics.list_timeouts += 1
            logger.warning("Listing %s timed out, using %d entries", path, len(listing.entries))
        if listing.truncated:
            self.diagnostics.truncated_listings += 1
            logger.warning("Listing %s capped at %d entries", path, self.max_items)
        if listing.error:
            logger.debug("Listing %s failed: %s", path, listing.error)
        return listing

    def _entries_as_targets(
        self, directory: str, backup_type: BackupType, label: str
    ) -> list[ScanTarget]:
        """One target per immediate entry of directory."""
        return [
            ScanTarget(
                backup_type=backup_type,
                bucket_label=label,
                scan_path=os.path.join(directory, entry.name),
                is_file=not entry.is_dir,
            )
            for entry in self.list_dir(directory).entries
        ]

    def _loose_files(self, listing: Listing, backup_type: BackupType, label: str) -> list[ScanTarget]:
        """Files directly in a listed directory, one target each."""
        return [
            ScanTarget(
                backup_type=backup_type,
                bucket_label=label,
                scan_path=os.path.join(listing.path, entry.name),
                is_file=True,
            )
            for entry in listing.entries
            if not entry.is_dir
        ]

    # -- ARCHIVED_FULL -------------------------------------------------------

    def _archived_full(self, scan_root: str) -> list[ScanTarget]:
        full_dir = os.path.join(scan_root, "full")
        targets: list[ScanTarget] = []

        for child in self.list_dir(full_dir).entries:
            child_path = os.path.join(full_dir, child.name)
            if not child.is_dir:
                targets.append(
                    ScanTarget(
                        backup_type=BackupType.OTHER,
                        bucket_label="full",
                        scan_path=child_path,
                        is_file=True,
                    )
                )
                continue

            backup_type = ARCHIVED_TYPES.get(child.name.lower(), BackupType.OTHER)
            accounts = os.path.join(child_path, "accounts")
            if _isdir(accounts):
                targets += self._entries_as_targets(accounts, backup_type, child.name)
                targets += self._loose_files(self.list_dir(child_path), backup_type, child.name)
                continue

            # full/<type>/<label>/accounts, e.g. a weekday name as label
            listing = self.list_dir(child_path)
            labelled: list[ScanTarget] = []
            plain_labels: list[str] = []
            for sub in listing.dirs:
                sub_accounts = os.path.join(child_path, sub.name, "accounts")
                if _isdir(sub_accounts):
                    labelled += self._entries_as_targets(
                        sub_accounts, backup_type, f"{child.name}/{sub.name}"
                    )
                else:
                    plain_labels.append(sub.name)

            if not labelled:
                targets.append(
                    ScanTarget(backup_type=backup_type, bucket_label=child.name, scan_path=child_path)
                )
                continue

            targets += labelled
            targets += self._loose_files(listing, backup_type, child.name)
            for name in plain_labels:
                targets.append(
                    ScanTarget(
                        backup_type=backup_type,
                        bucket_label=f"{child.name}/{name}",
                        scan_path=os.path.join(child_path, name),
                    )
                )

        return targets

    # -- FLAT_DATED ----------------------------------------------------------

    def _dated_directory(
        self, date_path: str, label: str, backup_type: BackupType
    ) -> list[ScanTarget]:
        """Targets for one <date> directory holding accounts/ and/or system/."""
        targets: list[ScanTarget] = []
        accounts = os.path.join(date_path, "accounts")
        system = os.path.join(date_path, "system")

        has_accounts = _isdir(accounts)
        has_system = _isdir(system)
        if has_accounts:
            targets += self._entries_as_targets(accounts, backup_type, label)
        if has_system:
            targets.append(
                ScanTarget(backup_type=BackupType.SYSTEM, bucket_label=label, scan_path=system)
            )
        if not has_accounts and not has_system:
            targets.append(ScanTarget(backup_type=backup_type, bucket_label=label, scan_path=date_path))
        return targets

    def _flat_dated(self, scan_root: str) -> list[ScanTarget]:
        targets: list[ScanTarget] = []
        for parent in date_dir_parents(scan_root):
            parent_name = os.path.basename(parent)
            backup_type = (
                BackupType.coerce(parent_name) if parent != scan_root else BackupType.DAILY
            )
            listing = self.list_dir(parent)
            for child in listing.dirs:
                if not is_date_name(child.name):
                    continue
                targets += self._dated_directory(
                    os.path.join(parent, child.name), child.name, backup_type
                )
            if parent != scan_root:
                targets += self._loose_files(listing, backup_type, parent_name)
        return targets

    # -- BUCKETED_DATED ------------------------------------------------------

    def _date_bucket(self, bucket_path: str, label: str, backup_type: BackupType) -> ScanTarget:
        """A date bucket is measured through its accounts/ folder when it has one."""
        accounts = os.path.join(bucket_path, "accounts")
        scan_path = accounts if _isdir(accounts) else bucket_path
        return ScanTarget(backup_type=backup_type, bucket_label=label, scan_path=scan_path)

    def _user_bucket(self, user_path: str, label: str) -> ScanTarget:
        scan_path = user_path
        for data_dir in USER_DATA_DIRS:
            candidate = os.path.join(user_path, data_dir)
            if _isdir(candidate):
                scan_path = candidate
                break
        return ScanTarget(backup_type=BackupType.DAILY, bucket_label=label, scan_path=scan_path)

    def _bucketed_dated(self, scan_root: str) -> list[ScanTarget]:
        targets: list[ScanTarget] = []

        for cadence in ("monthly", "weekly"):
            cadence_dir = os.path.join(scan_root, cadence)
            if not _isdir(cadence_dir):
                continue
            backup_type = BackupType.coerce(cadence)
            listing = self.list_dir(cadence_dir)
            for child in listing.dirs:
                targets.append(
                    self._date_bucket(os.path.join(cadence_dir, child.name), child.name, backup_type)
                )
            targets += self._loose_files(listing, backup_type, cadence)

        daily_dir = os.path.join(scan_root, "daily")
        if _isdir(daily_dir):
            listing = self.list_dir(daily_dir)
            children = listing.dirs
            if is_mostly_dated(c.name for c in children):
                for child in children:
                    targets.append(
                        self._date_bucket(
                            os.path.join(daily_dir, child.name), child.name, BackupType.DAILY
                        )
                    )
            else:
                for child in children:
                    targets.append(self._user_bucket(os.path.join(daily_dir, child.name), child.name))
            targets += self._loose_files(listing, BackupType.DAILY, "daily")

        # Bare date directories directly under the root are daily buckets.
        for child in self.list_dir(scan_root).dirs:
            if child.name in CADENCE_DIRS or not is_date_name(child.name):
                continue
            targets.append(
                self._date_bucket(os.path.join(scan_root, child.name), child.name, BackupType.DAILY)
            )

        return targets

    # -- UNKNOWN -------------------------------------------------------------

    def _unknown(self, scan_root: str) -> list[ScanTarget]:
        label = os.path.basename(scan_root.rstrip("/")) or scan_root
        return [ScanTarget(backup_type=BackupType.OTHER, bucket_label=label, scan_path=scan_root)]

    def enumerate(self, scan_root: str, layout: LayoutKind) -> list[ScanTarget]:
        """
        Produce the scan targets for scan_root under the given layout.

        Args:
            scan_root: Absolute path of the scanned root
            layout: Layout returned by detect_layout()

        Returns:
            Targets in enumeration order
        """
        handlers = {
            LayoutKind.ARCHIVED_FULL: self._archived_full,
            LayoutKind.FLAT_DATED: self._flat_dated,
            LayoutKind.BUCKETED_DATED: self._bucketed_dated,
            LayoutKind.UNKNOWN: self._unknown,
        }
        targets = handlers[layout](scan_root)
        logger.debug("%s layout under %s: %d targets", layout.value, scan_root, len(targets))
        return targets


def enumerate_targets(
    scan_root: str,
    layout: LayoutKind,
    probe: Optional[SizeProbe] = None,
    list_timeout: float = DEFAULT_LIST_TIMEOUT,
    max_items: int = DEFAULT_MAX_ITEMS,
    diagnostics: Optional[ScanDiagnostics] = None,
) -> list[ScanTarget]:
    """Scan targets for scan_root; see TargetEnumerator.enumerate()."""
    enumerator = TargetEnumerator(
        probe=probe, list_timeout=list_timeout, max_items=max_items, diagnostics=diagnostics
    )
    return enumerator.enumerate(scan_root, layout)
