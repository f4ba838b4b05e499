"""Authoritative page counting for uploaded documents.

Counts come from ``qpdf --show-npages``. When qpdf is not installed the
count is read in-process with PyPDF2 instead. Counts reported by the
browser are never used.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional

from PyPDF2 import PdfReader

from pdf_tools.core.exceptions import (
    CountTimeoutError,
    PDFMergeError,
    ProcessTimeout,
    UnreadableDocumentError,
)
from pdf_tools.engine.process import QPDF_OK_CODES, get_qpdf_command, run_process
from pdf_tools.engine.sources import SourceDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountResult:
    """Page count for one document, or the error that prevented it."""

    doc_id: str
    pages: Optional[int] = None
    error: Optional[PDFMergeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.pages is not None


def summarize_qpdf_error(stderr: str) -> str:
    lowered = (stderr or "").lower()
    if "password" in lowered or "encrypt" in lowered:
        return "the PDF is password-protected"
    lines = [line.strip() for line in (stderr or "").splitlines() if line.strip()]
    if not lines:
        return "the PDF structure is damaged"
    # qpdf prefixes messages with the file path, which is server-internal.
    return lines[-1].split(": ", 1)[-1]


def _count_pages_pypdf(path: Path, name: str, doc_id: Optional[str]) -> int:
    try:
        with open(path, "rb") as handle:
            reader = PdfReader(handle, strict=False)
            if reader.is_encrypted and not reader.decrypt(""):
                raise UnreadableDocumentError.for_file(name, "the PDF is password-protected", doc_id=doc_id)
            return len(reader.pages)
    except UnreadableDocumentError:
        raise
    except Exception as exc:
        raise UnreadableDocumentError.for_file(name, str(exc) or type(exc).__name__, doc_id=doc_id) from exc


def count_pages(
    path: Path,
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
    filename: Optional[str] = None,
    doc_id: Optional[str] = None,
) -> int:
    """Return the page count of the PDF at ``path``.

    Raises:
        UnreadableDocumentError: Malformed, encrypted or empty PDF.
        CountTimeoutError: qpdf did not answer within ``timeout``.
    """
    name = filename or path.name
    qpdf = get_qpdf_command()
    if qpdf is None:
        logger.warning("qpdf not found, counting %s with PyPDF2", name)
        pages = _count_pages_pypdf(path, name, doc_id)
    else:
        try:
            result = run_process([qpdf, "--show-npages", str(path)], timeout, cancel_event, label="qpdf-npages")
        except ProcessTimeout as exc:
            raise CountTimeoutError.for_file(name, timeout, doc_id=doc_id) from exc

        if result.returncode not in QPDF_OK_CODES:
            logger.warning("qpdf --show-npages failed for %s (exit %s): %s", name, result.returncode, result.stderr.strip())
            raise UnreadableDocumentError.for_file(name, summarize_qpdf_error(result.stderr), doc_id=doc_id)
        try:
            pages = int(result.stdout.strip())
        except ValueError as exc:
            raise UnreadableDocumentError.for_file(name, "page count could not be determined", doc_id=doc_id) from exc

    if pages <= 0:
        raise UnreadableDocumentError.for_file(name, "the PDF has no pages", doc_id=doc_id)
    return pages


def count_all(
    documents: Iterable[SourceDocument],
    timeout: float,
    max_workers: int,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, CountResult]:
    """Count every document concurrently; one document's failure never stops the others.

    Returns a mapping in the documents' upload order. Successful counts are
    also stored on the documents themselves.
    """
    docs = list(documents)
    if not docs:
        return {}

    results: Dict[str, CountResult] = {}
    workers = max(1, min(len(docs), max_workers))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="page-count") as pool:
        futures = {
            pool.submit(count_pages, doc.path, timeout, cancel_event, doc.filename, doc.doc_id): doc
            for doc in docs
        }
        for future in as_completed(futures):
            doc = futures[future]
            try:
                pages = future.result()
            except (UnreadableDocumentError, CountTimeoutError) as exc:
                logger.warning("Page count failed for %s: %s", doc.doc_id, exc.message)
                results[doc.doc_id] = CountResult(doc.doc_id, error=exc)
            else:
                doc.page_count = pages
                results[doc.doc_id] = CountResult(doc.doc_id, pages=pages)

    return {doc.doc_id: results[doc.doc_id] for doc in docs}
