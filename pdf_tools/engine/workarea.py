"""Per-request temporary storage.

Each merge request gets its own ``merge-<random>`` directory under the
process-wide work root. The directory is removed on every exit path by
``WorkAreaManager.scoped()``.
"""

import contextlib
import logging
import shutil
import tempfile
import threading
import time
import uuid
from pathlib import Path
from typing import Iterator, Optional

from pdf_tools.core.exceptions import WorkAreaFailureError

logger = logging.getLogger(__name__)

WORK_AREA_PREFIX = "merge-"


class WorkArea:
    """One request's private directory plus a byte budget for what is written into it."""

    def __init__(self, path: Path, max_bytes: int) -> None:
        self.path = path
        self.max_bytes = max_bytes
        self._used = 0
        self._lock = threading.Lock()

    @property
    def used_bytes(self) -> int:
        return self._used

    def new_path(self, prefix: str, suffix: str = ".pdf") -> Path:
        """Unique server-generated file name inside the area."""
        return self.path / f"{prefix}_{uuid.uuid4().hex}{suffix}"

    def reserve(self, nbytes: int) -> None:
        """Account ``nbytes`` against the budget, failing once it is exceeded."""
        with self._lock:
            self._used += nbytes
            if self._used > self.max_bytes:
                raise WorkAreaFailureError(
                    f"Temporary storage limit exceeded ({self.max_bytes / (1024 * 1024):.0f} MB)",
                    details={"used_bytes": self._used, "limit_bytes": self.max_bytes},
                )

    def account_file(self, path: Path) -> int:
        """Reserve the size of a file a tool produced in this area."""
        size = path.stat().st_size
        self.reserve(size)
        return size

    def __repr__(self) -> str:
        return f"WorkArea({self.path.name}, used={self._used})"


class WorkAreaManager:
    """Creates and removes work areas under a root fixed at startup."""

    def __init__(self, root: Path, max_bytes: int) -> None:
        self.root = Path(root)
        self.max_bytes = max_bytes

    def ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkAreaFailureError(f"Cannot create work root {self.root}: {exc}", original_error=exc) from exc

    def acquire(self) -> WorkArea:
        self.ensure_root()
        try:
            path = Path(tempfile.mkdtemp(prefix=WORK_AREA_PREFIX, dir=self.root))
        except OSError as exc:
            raise WorkAreaFailureError(f"Cannot allocate temporary storage: {exc}", original_error=exc) from exc
        logger.debug("Acquired work area %s", path.name)
        return WorkArea(path, self.max_bytes)

    def release(self, area: WorkArea) -> None:
        try:
            shutil.rmtree(area.path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise WorkAreaFailureError(
                f"Cannot remove temporary storage {area.path.name}: {exc}", original_error=exc
            ) from exc
        logger.debug("Released work area %s (%d bytes used)", area.path.name, area.used_bytes)

    @contextlib.contextmanager
    def scoped(self) -> Iterator[WorkArea]:
        area = self.acquire()
        try:
            yield area
        except BaseException:
            try:
                self.release(area)
            except WorkAreaFailureError:
                # The original error wins; the stale sweep retries the removal.
                logger.exception("Work area release failed for %s", area.path)
            raise
        else:
            self.release(area)

    def sweep_stale(self, max_age_seconds: int, now: Optional[float] = None) -> int:
        """Remove work areas left behind by crashed processes. Returns how many were removed."""
        if not self.root.exists():
            return 0
        cutoff = (now if now is not None else time.time()) - max_age_seconds
        removed = 0
        for candidate in self.root.glob(f"{WORK_AREA_PREFIX}*"):
            try:
                if not candidate.is_dir() or candidate.stat().st_mtime >= cutoff:
                    continue
                shutil.rmtree(candidate)
                removed += 1
            except OSError as exc:
                logger.error("Cleanup error for %s: %s", candidate.name, exc)
        if removed:
            logger.info("Removed %d stale work area(s) from %s", removed, self.root)
        return removed
