"""Page extraction and ordered assembly.

A validated layout is turned into page-range instructions: maximal runs of
consecutive entries on the same document whose pages go up by exactly one
become a single range, every other entry becomes a one-page range. Each
range is extracted into its own part file, then the parts are
concatenated in instruction order, so output page N is always layout
entry N.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from PyPDF2 import PdfReader, PdfWriter

from pdf_tools.core.exceptions import (
    AssemblyFailedError,
    CountTimeoutError,
    ExtractionFailedError,
    ProcessTimeout,
    UnreadableDocumentError,
)
from pdf_tools.engine.layout import LayoutEntry
from pdf_tools.engine.page_counter import count_pages, summarize_qpdf_error
from pdf_tools.engine.process import CancelScope, QPDF_OK_CODES, get_qpdf_command, run_process
from pdf_tools.engine.workarea import WorkArea

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageRange:
    """Inclusive, 1-based page range of one source document."""

    doc_id: str
    path: Path
    start: int
    end: int
    layout_index: int

    @property
    def page_count(self) -> int:
        return self.end - self.start + 1

    @property
    def qpdf_range(self) -> str:
        return str(self.start) if self.start == self.end else f"{self.start}-{self.end}"


@dataclass(frozen=True)
class AssemblyResult:
    path: Path
    ranges: List[PageRange]
    page_count: int


def plan_extraction(layout: Sequence[LayoutEntry], paths: Mapping[str, Path]) -> List[PageRange]:
    """Group the layout into page-range instructions, in layout order."""
    ranges: List[PageRange] = []
    for index, entry in enumerate(layout):
        if ranges:
            last = ranges[-1]
            if last.doc_id == entry.doc_id and entry.page == last.end + 1:
                ranges[-1] = replace(last, end=entry.page)
                continue
        ranges.append(
            PageRange(
                doc_id=entry.doc_id,
                path=paths[entry.doc_id],
                start=entry.page,
                end=entry.page,
                layout_index=index,
            )
        )
    return ranges


def _extract_pypdf(page_range: PageRange, output_path: Path) -> None:
    reader = PdfReader(str(page_range.path), strict=False)
    writer = PdfWriter()
    for page_number in range(page_range.start, page_range.end + 1):
        writer.add_page(reader.pages[page_number - 1])
    with open(output_path, "wb") as handle:
        writer.write(handle)


def _concatenate_pypdf(parts: Sequence[Path], output_path: Path) -> None:
    writer = PdfWriter()
    for part in parts:
        reader = PdfReader(str(part), strict=False)
        for page in reader.pages:
            writer.add_page(page)
    with open(output_path, "wb") as handle:
        writer.write(handle)


def extract_range(
    page_range: PageRange,
    output_path: Path,
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
) -> None:
    """Write ``page_range`` of its source document to ``output_path``.

    Raises:
        ExtractionFailedError: qpdf failed, timed out or produced nothing.
    """
    qpdf = get_qpdf_command()
    if qpdf is None:
        try:
            _extract_pypdf(page_range, output_path)
        except Exception as exc:
            raise ExtractionFailedError.for_range(page_range.doc_id, page_range.start, page_range.end, str(exc)) from exc
        return

    cmd = [qpdf, "--empty", "--pages", str(page_range.path), page_range.qpdf_range, "--", str(output_path)]
    try:
        result = run_process(cmd, timeout, cancel_event, label="qpdf-extract")
    except ProcessTimeout as exc:
        raise ExtractionFailedError.for_range(
            page_range.doc_id, page_range.start, page_range.end, f"timed out after {timeout:.0f}s"
        ) from exc

    if result.returncode not in QPDF_OK_CODES:
        logger.error(
            "qpdf extract failed for %s pages %s (exit %s):\n%s",
            page_range.doc_id,
            page_range.qpdf_range,
            result.returncode,
            result.stderr,
        )
        raise ExtractionFailedError.for_range(
            page_range.doc_id, page_range.start, page_range.end, summarize_qpdf_error(result.stderr)
        )
    if not output_path.exists():
        raise ExtractionFailedError.for_range(page_range.doc_id, page_range.start, page_range.end, "no output produced")


def extract_ranges(
    work_area: WorkArea,
    ranges: Sequence[PageRange],
    timeout: float,
    max_workers: int,
    cancel_event: Optional[threading.Event] = None,
) -> List[Path]:
    """Extract every range into its own part file.

    Calls run concurrently; the returned paths are in instruction order
    regardless of completion order. The first failure cancels the rest.
    """
    outputs = [work_area.new_path(f"part{index:04d}") for index in range(len(ranges))]
    scope = CancelScope(cancel_event)

    def _extract(index: int) -> None:
        extract_range(ranges[index], outputs[index], timeout, scope)
        work_area.account_file(outputs[index])

    workers = max(1, min(len(ranges), max_workers))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="page-extract") as pool:
        futures = [pool.submit(_extract, index) for index in range(len(ranges))]
        try:
            for future in as_completed(futures):
                future.result()
        except BaseException:
            scope.set()
            for future in futures:
                future.cancel()
            raise

    return outputs


def concatenate(
    work_area: WorkArea,
    parts: Sequence[Path],
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
) -> Path:
    """Join part files in the given order into one document.

    Raises:
        AssemblyFailedError: qpdf failed, timed out or produced nothing.
    """
    if not parts:
        raise AssemblyFailedError("Nothing to assemble")
    if len(parts) == 1:
        return parts[0]

    output_path = work_area.new_path("assembled")
    qpdf = get_qpdf_command()
    if qpdf is None:
        try:
            _concatenate_pypdf(parts, output_path)
        except Exception as exc:
            raise AssemblyFailedError(f"Could not assemble pages: {exc}", original_error=exc) from exc
    else:
        cmd = [qpdf, "--empty", "--pages", *[str(p) for p in parts], "--", str(output_path)]
        try:
            result = run_process(cmd, timeout, cancel_event, label="qpdf-assemble")
        except ProcessTimeout as exc:
            raise AssemblyFailedError(f"Assembling pages timed out after {timeout:.0f}s", original_error=exc) from exc
        if result.returncode not in QPDF_OK_CODES:
            logger.error("qpdf assemble failed (exit %s):\n%s", result.returncode, result.stderr)
            raise AssemblyFailedError(f"Could not assemble pages: {summarize_qpdf_error(result.stderr)}")

    if not output_path.exists():
        raise AssemblyFailedError("Could not assemble pages: no output produced")
    work_area.account_file(output_path)
    return output_path


def assemble(
    work_area: WorkArea,
    layout: Sequence[LayoutEntry],
    paths: Mapping[str, Path],
    timeout: float,
    max_workers: int,
    cancel_event: Optional[threading.Event] = None,
) -> AssemblyResult:
    """Build one document whose pages follow ``layout`` exactly.

    Only documents referenced by the layout are read. The result's page
    count is re-checked against the layout length.
    """
    ranges = plan_extraction(layout, paths)
    logger.info(
        "Extracting %d page(s) as %d range(s) from %d document(s)",
        len(layout),
        len(ranges),
        len({r.doc_id for r in ranges}),
    )
    parts = extract_ranges(work_area, ranges, timeout, max_workers, cancel_event)
    output_path = concatenate(work_area, parts, timeout, cancel_event)

    try:
        pages = count_pages(output_path, timeout, cancel_event, filename="assembled document")
    except (UnreadableDocumentError, CountTimeoutError) as exc:
        raise AssemblyFailedError(f"Assembled document could not be checked: {exc.message}", original_error=exc) from exc
    if pages != len(layout):
        raise AssemblyFailedError(
            f"Assembled document has {pages} pages, expected {len(layout)}",
            details={"expected_pages": len(layout), "actual_pages": pages},
        )
    return AssemblyResult(path=output_path, ranges=ranges, page_count=pages)
