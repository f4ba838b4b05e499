import os
import shutil
import threading
import time
from pathlib import Path

import pytest

from pdf_tools.core.exceptions import MergeCancelledError, ProcessTimeout
from pdf_tools.engine.process import CancelScope, run_process

pytestmark = pytest.mark.skipif(
    os.name != "posix" or shutil.which("sh") is None,
    reason="process group handling is POSIX-only",
)


def _process_gone(pid: int, wait: float = 3.0) -> bool:
    deadline = time.monotonic() + wait
    while time.monotonic() < deadline:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        # A killed orphan may linger as a zombie until init reaps it.
        try:
            with open(f"/proc/{pid}/stat") as handle:
                if handle.read().split(")")[-1].split()[0] == "Z":
                    return True
        except OSError:
            return True
        time.sleep(0.05)
    return False


def test_captures_output_and_exit_code():
    result = run_process(["sh", "-c", "echo out; echo err >&2; exit 3"], timeout=10)
    assert result.returncode == 3
    assert not result.ok
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_timeout_kills_the_whole_process_group(tmp_path):
    pid_file = tmp_path / "child.pid"
    started = time.monotonic()

    with pytest.raises(ProcessTimeout) as excinfo:
        run_process(["sh", "-c", f"sleep 30 & echo $! > {pid_file}; wait"], timeout=0.5, label="sleeper")

    assert time.monotonic() - started < 10
    assert excinfo.value.label == "sleeper"
    child_pid = int(Path(pid_file).read_text().strip())
    assert _process_gone(child_pid)


def test_cancel_event_stops_the_process():
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(MergeCancelledError) as excinfo:
            run_process(["sleep", "30"], timeout=30, cancel_event=cancel)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 10
    assert excinfo.value.status_code == 499


def test_cancel_scope_follows_parent():
    parent = threading.Event()
    scope = CancelScope(parent)
    assert not scope.is_set()
    parent.set()
    assert scope.is_set()

    local = CancelScope(threading.Event())
    local.set()
    assert local.is_set()
    assert not CancelScope().is_set()
