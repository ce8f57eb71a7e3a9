"""Directory listing and size measurement backends.

Two interchangeable probes implement SizeProbe:

- CommandProbe runs ``find`` and ``du`` through the bounded runner, at low
  priority. This is the default on servers: a stuck NFS mount only costs the
  configured timeout.
- NativeProbe walks with os.scandir and a byte counter, checking a deadline
  between entries. It needs no external tools.
"""

import logging
import os
import time
from typing import Optional, Protocol

from backupdu.config import ProbeKind, Settings
from backupdu.models import ListedEntry, Listing, ScanTarget, SizeMethod
from backupdu.runner import run_command

logger = logging.getLogger(__name__)

# Below this many seconds a retry is not worth starting.
MIN_RETRY_BUDGET = 0.1


class SizeProbe(Protocol):
    """Backend for shallow listings and directory sizes."""

    def list_dir(self, path: str, timeout: float, max_items: int) -> Listing: ...

    def directory_size(self, path: str, timeout: float) -> Optional[int]: ...


def _cap(path: str, entries: list[ListedEntry], max_items: int, timed_out: bool) -> Listing:
    """Sort entries by name and clip them to max_items."""
    entries.sort(key=lambda e: e.name)
    truncated = len(entries) > max_items
    if truncated:
        logger.debug("Listing of %s clipped to %d of %d entries", path, max_items, len(entries))
        entries = entries[:max_items]
    return Listing(path=path, entries=entries, timed_out=timed_out, truncated=truncated)


def parse_du_output(output: str) -> Optional[int]:
    """First integer field of du's first line, None if there is none."""
    for line in output.splitlines():
        fields = line.split()
        if fields:
            try:
                return int(fields[0])
            except ValueError:
                return None
    return None


class CommandProbe:
    """Probe backed by find/du run under run_command()."""

    LIST_COMMAND = ("find", "{path}", "-mindepth", "1", "-maxdepth", "1", "-printf", "%y\\t%f\\n")
    BYTES_COMMAND = ("du", "-sb")
    KILOBYTES_COMMAND = ("du", "-sk")

    def __init__(
        self,
        low_priority: bool = True,
        kill_grace: float = 2.0,
        bytes_command: tuple[str, ...] | None = None,
        kilobytes_command: tuple[str, ...] | None = None,
    ):
        self.low_priority = low_priority
        self.kill_grace = kill_grace
        self.bytes_command = tuple(bytes_command or self.BYTES_COMMAND)
        self.kilobytes_command = tuple(kilobytes_command or self.KILOBYTES_COMMAND)

    def _run(self, argv: list[str], timeout: float):
        return run_command(
            argv, timeout, low_priority=self.low_priority, kill_grace=self.kill_grace
        )

    def list_dir(self, path: str, timeout: float, max_items: int) -> Listing:
        argv = [path if part == "{path}" else part for part in self.LIST_COMMAND]
        result = self._run(argv, timeout)

        output = result.stdout
        if result.timed_out and output and not output.endswith("\n"):
            # The last line may have been cut off mid-name.
            output = output.rsplit("\n", 1)[0] if "\n" in output else ""

        entries = []
        for line in output.splitlines():
            kind, sep, name = line.partition("\t")
            if not sep or not name:
                continue
            entries.append(ListedEntry(name=name, is_dir=kind == "d"))

        listing = _cap(path, entries, max_items, result.timed_out)
        if not result.success and not result.timed_out:
            listing.error = result.stderr.strip().splitlines()[0] if result.stderr.strip() else None
        return listing

    def directory_size(self, path: str, timeout: float) -> Optional[int]:
        """
        Apparent size of a directory tree in bytes.

        Tries ``du -sb`` first and falls back to ``du -sk`` (scaled by 1024)
        within whatever is left of the same time budget.
        """
        deadline = time.monotonic() + timeout

        result = self._run([*self.bytes_command, path], timeout)
        if result.success:
            size = parse_du_output(result.stdout)
            if size is not None:
                return size

        remaining = deadline - time.monotonic()
        if remaining < MIN_RETRY_BUDGET:
            logger.warning("Size of %s unknown: du timed out after %.1fs", path, timeout)
            return None

        result = self._run([*self.kilobytes_command, path], remaining)
        if result.success:
            size = parse_du_output(result.stdout)
            if size is not None:
                return size * 1024

        logger.warning(
            "Size of %s unknown: du %s", path, "timed out" if result.timed_out else "failed"
        )
        return None


class NativeProbe:
    """Probe backed by os.scandir, bounded by deadlines checked per entry."""

    def __init__(self, max_depth: int = 64):
        self.max_depth = max_depth

    def list_dir(self, path: str, timeout: float, max_items: int) -> Listing:
        deadline = time.monotonic() + timeout
        entries: list[ListedEntry] = []
        timed_out = False
        try:
            with os.scandir(path) as it:
                for entry in it:
                    if time.monotonic() > deadline:
                        timed_out = True
                        break
                    try:
                        is_dir = entry.is_dir(follow_symlinks=False)
                    except OSError:
                        is_dir = False
                    entries.append(ListedEntry(name=entry.name, is_dir=is_dir))
        except OSError as e:
            return Listing(path=path, error=str(e))
        return _cap(path, entries, max_items, timed_out)

    def directory_size(self, path: str, timeout: float) -> Optional[int]:
        """Sum of file sizes below path, or None if the deadline passes first."""
        deadline = time.monotonic() + timeout
        total_size = 0

        def _scan(p: str, depth: int) -> bool:
            nonlocal total_size
            if depth > self.max_depth:
                return True
            try:
                with os.scandir(p) as entries:
                    for entry in entries:
                        if time.monotonic() > deadline:
                            return False
                        try:
                            if entry.is_file(follow_symlinks=False):
                                total_size += entry.stat(follow_symlinks=False).st_size
                            elif entry.is_dir(follow_symlinks=False):
                                if not _scan(entry.path, depth + 1):
                                    return False
                        except OSError:
                            continue
            except OSError:
                pass
            return True

        if not _scan(path, 0):
            logger.warning("Size of %s unknown: walk timed out after %.1fs", path, timeout)
            return None
        return total_size


def make_probe(settings: Settings) -> SizeProbe:
    """Probe selected by the settings."""
    if settings.probe == ProbeKind.NATIVE:
        return NativeProbe()
    return CommandProbe(low_priority=settings.low_priority, kill_grace=settings.kill_grace)


def file_size(path: str) -> Optional[int]:
    """Size of a regular file; a non-positive first answer is re-checked with stat."""
    try:
        size = os.path.getsize(path)
    except OSError:
        size = 0
    if size <= 0:
        try:
            size = os.stat(path).st_size
        except OSError:
            return None
    return size


def measure_target(
    target: ScanTarget, probe: SizeProbe, timeout: float
) -> tuple[Optional[int], SizeMethod]:
    """
    Measure one scan target.

    Args:
        target: File or directory to measure
        probe: Backend used for directories
        timeout: Bound for the directory size computation

    Returns:
        (size in bytes or None if unknown, method used)
    """
    if target.is_file:
        return file_size(target.scan_path), SizeMethod.STAT

    size = probe.directory_size(target.scan_path, timeout)
    if size is None:
        return None, SizeMethod.DU_TIMEOUT
    return size, SizeMethod.DU
