"""Bounded execution of external measurement commands.

Every external tool backupdu invokes (find, du, unzip, tar) goes through
run_command(), which never lets the caller block past the configured
wall-clock bound and keeps whatever output was produced before a timeout.
"""

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from functools import lru_cache, partial
from typing import IO, Sequence

from backupdu.models import CommandResult

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05
READ_CHUNK = 65536


@lru_cache(maxsize=1)
def low_priority_prefix() -> tuple[str, ...]:
    """Argument prefix that lowers CPU and IO priority, where the host supports it."""
    prefix: list[str] = []
    if shutil.which("nice"):
        prefix += ["nice", "-n", "19"]
    if shutil.which("ionice"):
        prefix += ["ionice", "-c", "3"]
    return tuple(prefix)


def _drain(stream: IO[bytes], sink: list[bytes]) -> None:
    """Read a pipe to EOF into sink."""
    try:
        for chunk in iter(partial(stream.read1, READ_CHUNK), b""):
            sink.append(chunk)
    except (OSError, ValueError):
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    """Send sig to the process group of proc, falling back to proc itself."""
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            pass


def _stop(proc: subprocess.Popen, kill_grace: float) -> bool:
    """
    Terminate proc gracefully, then force-kill it if it lingers.

    Returns:
        Whether proc was reaped. A process stuck in uninterruptible IO
        (a hung network mount) may outlive SIGKILL; it is left behind
        rather than waited for.
    """
    _signal_group(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=kill_grace)
        return True
    except subprocess.TimeoutExpired:
        _signal_group(proc, signal.SIGKILL)
    try:
        proc.wait(timeout=kill_grace)
    except subprocess.TimeoutExpired:
        logger.warning("Process %d survived SIGKILL, abandoning it", proc.pid)
        return False
    return True


def run_command(
    command: Sequence[str],
    timeout: float,
    low_priority: bool = False,
    kill_grace: float = 2.0,
) -> CommandResult:
    """
    Run an external command with a hard wall-clock bound.

    The command runs in its own session so that a timeout terminates the
    whole process group (nice/ionice wrappers included). Output is read by
    background threads, so a chatty command cannot block on a full pipe.

    Args:
        command: Argument vector (no shell is involved)
        timeout: Seconds before the command is terminated
        low_priority: Prefix the command with nice/ionice when available
        kill_grace: Seconds to wait after SIGTERM before sending SIGKILL

    Returns:
        CommandResult; success only when exit status is 0 and no timeout
    """
    argv = list(command)
    if low_priority:
        argv = list(low_priority_prefix()) + argv

    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.debug("Cannot start %s: %s", argv[0], e)
        return CommandResult(command=argv, success=False, stderr=str(e), exit_code=127)

    out_chunks: list[bytes] = []
    err_chunks: list[bytes] = []
    readers = [
        threading.Thread(target=_drain, args=(proc.stdout, out_chunks), daemon=True),
        threading.Thread(target=_drain, args=(proc.stderr, err_chunks), daemon=True),
    ]
    for reader in readers:
        reader.start()

    timed_out = False
    while proc.poll() is None:
        if time.monotonic() - start > timeout:
            timed_out = True
            logger.debug("Timeout after %.1fs, stopping: %s", timeout, " ".join(argv))
            _stop(proc, kill_grace)
            break
        time.sleep(POLL_INTERVAL)

    # Orphaned grandchildren may still hold a pipe open.
    for reader in readers:
        reader.join(timeout=max(kill_grace, POLL_INTERVAL))

    exit_code = proc.returncode
    return CommandResult(
        command=argv,
        success=exit_code == 0 and not timed_out,
        stdout=b"".join(out_chunks).decode("utf-8", errors="replace"),
        stderr=b"".join(err_chunks).decode("utf-8", errors="replace"),
        timed_out=timed_out,
        exit_code=exit_code,
        elapsed=time.monotonic() - start,
    )
