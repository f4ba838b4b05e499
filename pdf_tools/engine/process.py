"""External tool discovery and a bounded, cancellable process runner.

Every qpdf / Ghostscript invocation goes through ``run_process``. The child
runs in its own session so that a timeout, a cancellation or an exception
in the calling thread (including SystemExit raised when a gunicorn worker
is aborted) kills the whole process group before the work area is removed.
"""

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from pdf_tools.core.exceptions import MergeCancelledError, ProcessTimeout

logger = logging.getLogger(__name__)

POLL_INTERVAL_SEC = 0.2
REAP_TIMEOUT_SEC = 5.0
# qpdf exits 3 when it succeeded but printed warnings.
QPDF_OK_CODES = (0, 3)


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str
    elapsed: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CancelScope:
    """Cancellation flag that also reads as set once its parent flag is set.

    Lets a stage abort its own sibling calls without cancelling the whole
    request, while still honouring a request-level cancellation.
    """

    def __init__(self, parent: Optional[threading.Event] = None) -> None:
        self._own = threading.Event()
        self._parent = parent

    def set(self) -> None:
        self._own.set()

    def is_set(self) -> bool:
        return self._own.is_set() or (self._parent is not None and self._parent.is_set())


def get_ghostscript_command() -> Optional[str]:
    """Get Ghostscript binary name for current platform."""
    for name in ["gs", "gswin64c", "gswin32c"]:
        if shutil.which(name):
            return name
    return None


def get_qpdf_command() -> Optional[str]:
    """Get qpdf binary name, or None when it is not installed."""
    return "qpdf" if shutil.which("qpdf") else None


def _kill_process_group(proc: subprocess.Popen) -> None:
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    except OSError as exc:
        logger.warning("Failed to kill pid %s: %s", proc.pid, exc)
    try:
        proc.communicate(timeout=REAP_TIMEOUT_SEC)
    except subprocess.TimeoutExpired:
        logger.error("pid %s did not exit after SIGKILL", proc.pid)


def run_process(
    cmd: Sequence[str],
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
    label: Optional[str] = None,
) -> ProcessResult:
    """Run ``cmd`` to completion within ``timeout`` seconds.

    Args:
        cmd: Command and arguments; never passed through a shell.
        timeout: Wall-clock budget in seconds.
        cancel_event: When set, the process group is killed and the call
            raises MergeCancelledError.
        label: Short name used in logs and errors.

    Returns:
        ProcessResult with exit status and captured output.

    Raises:
        ProcessTimeout: The budget ran out; the process group was killed.
        MergeCancelledError: ``cancel_event`` was set.
        OSError: The binary could not be started.
    """
    argv: List[str] = [str(part) for part in cmd]
    label = label or os.path.basename(argv[0])
    start = time.monotonic()
    deadline = start + max(0.0, timeout)

    proc = subprocess.Popen(
        argv,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
        start_new_session=(os.name == "posix"),
    )
    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise MergeCancelledError(f"{label} was cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProcessTimeout(label, timeout)
            try:
                stdout, stderr = proc.communicate(timeout=min(POLL_INTERVAL_SEC, remaining))
                break
            except subprocess.TimeoutExpired:
                continue
    finally:
        if proc.returncode is None:
            logger.warning("Killing %s (pid %s) after %.1fs", label, proc.pid, time.monotonic() - start)
            _kill_process_group(proc)

    elapsed = time.monotonic() - start
    logger.debug("%s exited %s in %.2fs", label, proc.returncode, elapsed)
    return ProcessResult(
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        elapsed=elapsed,
    )
