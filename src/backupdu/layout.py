"""Backup layout detection.

Three backup systems leave three incompatible trees behind. The detector
looks only at the first levels of a scan root and picks exactly one
LayoutKind, checking the most specific layout first:

1. ``full/`` exists                                   -> ARCHIVED_FULL
2. a date directory holds ``accounts/`` or ``system/`` -> FLAT_DATED
   (date directories directly under the root, or under daily/weekly/monthly)
3. daily/weekly/monthly exist, or bare date dirs      -> BUCKETED_DATED
4. anything else                                      -> UNKNOWN
"""

import logging
import os
import re
from typing import Iterable

from backupdu.models import LayoutKind

logger = logging.getLogger(__name__)

DATE_NAME = re.compile(r"^(?:\d{8}|\d{4}-\d{2}-\d{2})$")

CADENCE_DIRS = ("daily", "weekly", "monthly")
MARKER_DIRS = ("accounts", "system")


def is_date_name(name: str) -> bool:
    """Whether a directory name looks like YYYYMMDD or YYYY-MM-DD."""
    return bool(DATE_NAME.match(name))


def is_mostly_dated(names: Iterable[str]) -> bool:
    """
    Decide whether a set of sibling directories is date buckets or user buckets.

    Majority vote: dates win when at least half of the names are date-shaped.
    An empty set is not dated.
    """
    names = list(names)
    if not names:
        return False
    dated = sum(1 for name in names if is_date_name(name))
    return dated * 2 >= len(names)


def _isdir(path: str) -> bool:
    try:
        return os.path.isdir(path)
    except OSError:
        return False


def dated_children(path: str) -> list[str]:
    """Sorted date-named subdirectory names directly under path."""
    names = []
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    if is_date_name(entry.name) and entry.is_dir():
                        names.append(entry.name)
                except OSError:
                    continue
    except OSError:
        return []
    return sorted(names)


def has_marker_dir(path: str) -> bool:
    """Whether path holds an accounts/ or system/ subdirectory."""
    return any(_isdir(os.path.join(path, marker)) for marker in MARKER_DIRS)


def date_dir_parents(scan_root: str) -> list[str]:
    """Directories whose date-named children are candidate FLAT_DATED buckets."""
    parents = [scan_root]
    for cadence in CADENCE_DIRS:
        cadence_dir = os.path.join(scan_root, cadence)
        if _isdir(cadence_dir):
            parents.append(cadence_dir)
    return parents


def detect_layout(scan_root: str) -> LayoutKind:
    """
    Classify the backup layout under scan_root.

    Only existence checks and shallow listings are performed; an unreadable
    root is reported as UNKNOWN rather than raising.

    Args:
        scan_root: Absolute path of the root to classify

    Returns:
        The first LayoutKind whose rule matches
    """
    if not _isdir(scan_root):
        logger.debug("Scan root %s is not a readable directory", scan_root)
        return LayoutKind.UNKNOWN

    if _isdir(os.path.join(scan_root, "full")):
        return LayoutKind.ARCHIVED_FULL

    for parent in date_dir_parents(scan_root):
        for name in dated_children(parent):
            if has_marker_dir(os.path.join(parent, name)):
                return LayoutKind.FLAT_DATED

    if any(_isdir(os.path.join(scan_root, c)) for c in CADENCE_DIRS):
        return LayoutKind.BUCKETED_DATED
    if dated_children(scan_root):
        return LayoutKind.BUCKETED_DATED

    return LayoutKind.UNKNOWN
