"""Merge orchestration: count, validate, assemble, recompress, linearize.

Every stage runs inside the caller's work area. A request-level deadline
bounds the sum of all stages; each external call gets the smaller of its
stage timeout and whatever is left of the deadline.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from pdf_tools.core.exceptions import MergeCancelledError
from pdf_tools.core.settings import MergeRuntimeSettings
from pdf_tools.core.utils import get_file_size_mb
from pdf_tools.engine.assembler import assemble
from pdf_tools.engine.layout import Layout, check_references, validate_layout, whole_document_layout
from pdf_tools.engine.page_counter import count_all
from pdf_tools.engine.recompress import GhostscriptParams, linearize, recompress
from pdf_tools.engine.sources import SourceSet
from pdf_tools.engine.workarea import WorkArea

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeRequest:
    """One validated merge job. ``layout`` is None for the whole-file mode."""

    sources: SourceSet
    layout: Optional[Layout]
    quality: int
    linearize: bool = False
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass
class MergeResult:
    data: bytes
    page_count: int
    range_count: int
    params: GhostscriptParams
    timings: Dict[str, float] = field(default_factory=dict)


class Deadline:
    """Wall-clock budget shared by every stage of one request."""

    def __init__(self, total_seconds: float) -> None:
        self.total_seconds = total_seconds
        self.expires_at = time.monotonic() + total_seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def budget(self, stage_timeout: float) -> float:
        return min(stage_timeout, self.remaining())


def _check_cancelled(cancel_event: Optional[threading.Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise MergeCancelledError(f"Merge cancelled before {stage}", details={"stage": stage})


def run_merge(
    request: MergeRequest,
    work_area: WorkArea,
    settings: MergeRuntimeSettings,
    cancel_event: Optional[threading.Event] = None,
) -> MergeResult:
    """Produce the merged, recompressed document for ``request``.

    The work area is owned by the caller, which removes it afterwards
    regardless of the outcome.

    Raises:
        PDFMergeError: Any taxonomy error from the stage that failed.
    """
    rid = request.request_id
    deadline = Deadline(settings.merge_timeout_sec)
    timings: Dict[str, float] = {}
    sources = request.sources

    # Unknown ids need no page counts; reject them before any tool runs.
    if request.layout is not None:
        check_references(request.layout, sources.ids())

    _check_cancelled(cancel_event, "count")
    stage_start = time.monotonic()
    counts = count_all(
        sources,
        deadline.budget(settings.count_timeout_sec),
        settings.count_workers,
        cancel_event,
    )
    timings["count"] = time.monotonic() - stage_start
    logger.info(
        "[%s] Counted %d document(s): %s",
        rid,
        len(counts),
        ", ".join(f"{doc_id}={r.pages if r.ok else r.error.error_type}" for doc_id, r in counts.items()),
    )

    layout = request.layout
    if layout is None:
        layout = whole_document_layout(sources.ids(), counts)
        logger.info("[%s] Whole-file mode: synthesized %d layout entries", rid, len(layout))
    layout = validate_layout(layout, sources.ids(), counts)

    _check_cancelled(cancel_event, "extract")
    stage_start = time.monotonic()
    paths = {doc.doc_id: doc.path for doc in sources}
    assembled = assemble(
        work_area,
        layout,
        paths,
        deadline.budget(settings.extract_timeout_sec),
        settings.extract_workers,
        cancel_event,
    )
    timings["assemble"] = time.monotonic() - stage_start

    _check_cancelled(cancel_event, "recompress")
    stage_start = time.monotonic()
    output_path: Path = work_area.new_path("out")
    params = recompress(
        assembled.path,
        output_path,
        request.quality,
        deadline.budget(settings.recompress_timeout_sec),
        cancel_event,
    )
    work_area.account_file(output_path)
    timings["recompress"] = time.monotonic() - stage_start

    if request.linearize:
        _check_cancelled(cancel_event, "linearize")
        stage_start = time.monotonic()
        linearized_path = work_area.new_path("linear")
        linearize(output_path, linearized_path, deadline.budget(settings.linearize_timeout_sec), cancel_event)
        work_area.account_file(linearized_path)
        output_path = linearized_path
        timings["linearize"] = time.monotonic() - stage_start

    data = output_path.read_bytes()
    logger.info(
        "[%s] Merged %d page(s) from %d range(s) -> %.2fMB in %.2fs (%s)",
        rid,
        assembled.page_count,
        len(assembled.ranges),
        get_file_size_mb(output_path),
        sum(timings.values()),
        ", ".join(f"{stage}={elapsed:.2f}s" for stage, elapsed in timings.items()),
    )
    return MergeResult(
        data=data,
        page_count=assembled.page_count,
        range_count=len(assembled.ranges),
        params=params,
        timings=timings,
    )
