"""Unpacked size of backup archives.

Archives are never extracted: each one is listed with a single invocation of
``unzip -l`` or ``tar -tv`` and the per-entry sizes are summed.
"""

import logging
from typing import Optional

from pydantic import BaseModel

from backupdu.runner import run_command

logger = logging.getLogger(__name__)

# Longest suffix first so .tar.gz is not taken for .gz
TAR_FLAGS = (
    (".tar.gz", "-tvzf"),
    (".tgz", "-tvzf"),
    (".tar.bz2", "-tvjf"),
    (".tar.xz", "-tvJf"),
    (".tar", "-tvf"),
)
ZIP_SUFFIX = ".zip"


class ArchiveInspection(BaseModel):
    """Result of listing one archive."""

    path: str
    size_bytes: Optional[int] = None
    timed_out: bool = False


def archive_kind(path: str) -> Optional[str]:
    """Listing flavour for path: 'zip', a tar flag string, or None."""
    lowered = path.lower()
    if lowered.endswith(ZIP_SUFFIX):
        return "zip"
    for suffix, flags in TAR_FLAGS:
        if lowered.endswith(suffix):
            return flags
    return None


def is_archive(path: str) -> bool:
    return archive_kind(path) is not None


def parse_zip_listing(output: str) -> int:
    """
    Sum entry sizes from ``unzip -l`` output.

    The file table sits between the first two lines made of dashes; the
    first column of each row is the uncompressed length.
    """
    total = 0
    inside = False
    for line in output.splitlines():
        stripped = line.strip()
        if stripped.startswith("---"):
            if inside:
                break
            inside = True
            continue
        if not inside:
            continue
        fields = stripped.split()
        if fields and fields[0].isdigit():
            total += int(fields[0])
    return total


def parse_tar_listing(output: str) -> int:
    """
    Sum entry sizes from ``tar -tv`` output.

    GNU tar prints ``mode owner/group size date time name``; the size is the
    third column.
    """
    total = 0
    for line in output.splitlines():
        fields = line.split(None, 5)
        if len(fields) >= 3 and fields[2].isdigit():
            total += int(fields[2])
    return total


def inspect_archive(
    path: str,
    timeout: float,
    low_priority: bool = True,
    kill_grace: float = 2.0,
) -> ArchiveInspection:
    """
    List an archive and sum its entries.

    Args:
        path: Archive file
        timeout: Bound for the listing command
        low_priority: Run the listing under nice/ionice
        kill_grace: Seconds between SIGTERM and SIGKILL on timeout

    Returns:
        ArchiveInspection; size_bytes is None for zero sums, failures, timeouts
        and unrecognized extensions
    """
    kind = archive_kind(path)
    if kind is None:
        return ArchiveInspection(path=path)

    if kind == "zip":
        argv = ["unzip", "-l", path]
    else:
        argv = ["tar", kind, path]

    result = run_command(argv, timeout, low_priority=low_priority, kill_grace=kill_grace)
    if result.timed_out:
        logger.warning("Listing archive %s timed out after %.1fs", path, timeout)
        return ArchiveInspection(path=path, timed_out=True)

    total = parse_zip_listing(result.stdout) if kind == "zip" else parse_tar_listing(result.stdout)
    if total <= 0:
        logger.debug("No unpacked size for %s (exit %s)", path, result.exit_code)
        return ArchiveInspection(path=path)
    return ArchiveInspection(path=path, size_bytes=total)


def unpacked_size(path: str, timeout: float) -> Optional[int]:
    """Unpacked size of an archive in bytes, None if unknown."""
    return inspect_archive(path, timeout).size_bytes
