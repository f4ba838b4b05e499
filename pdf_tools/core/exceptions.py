"""Custom exceptions for page-layout merge operations.

All error messages are written in plain English so users know exactly
what went wrong and how to fix it. Every error carries a stable
``error_type`` (the kind reported to clients), an HTTP status code, and
optional ``details`` naming the document, page or stage involved.
"""

from typing import Any, Dict, Optional


class PDFMergeError(Exception):
    """Base exception for all PDF merge errors."""

    error_type: str = "PDFMergeError"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        original_error: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        """JSON body for API responses (keeps the legacy 'error' key)."""
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "error_type": self.error_type,
            "error_message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidRequestError(PDFMergeError):
    """Malformed form data: missing parts, bad quality, duplicate ids."""

    error_type: str = "InvalidRequest"


class InvalidDocumentError(PDFMergeError):
    """Upload is not a PDF (checked by file signature)."""

    error_type: str = "InvalidDocument"
    status_code: int = 415

    @staticmethod
    def for_file(filename: str, doc_id: Optional[str] = None) -> "InvalidDocumentError":
        return InvalidDocumentError(
            f"'{filename}' does not look like a PDF. Only PDF files can be merged.",
            details={"doc_id": doc_id, "filename": filename},
        )


class TooManyDocumentsError(PDFMergeError):
    """More documents were uploaded than one request may carry."""

    error_type: str = "TooManyDocuments"

    @staticmethod
    def for_count(count: int, limit: int) -> "TooManyDocumentsError":
        return TooManyDocumentsError(
            f"Too many PDFs: {count} uploaded (max {limit}). "
            f"Remove some documents and try again.",
            details={"count": count, "limit": limit},
        )


class DocumentTooLargeError(PDFMergeError):
    """A single upload exceeds the per-document byte limit."""

    error_type: str = "DocumentTooLarge"
    status_code: int = 413

    @staticmethod
    def for_file(filename: str, limit_bytes: int, doc_id: Optional[str] = None) -> "DocumentTooLargeError":
        limit_mb = limit_bytes / (1024 * 1024)
        return DocumentTooLargeError(
            f"'{filename}' is too large (max {limit_mb:.0f} MB).",
            details={"doc_id": doc_id, "filename": filename, "limit_bytes": limit_bytes},
        )


class UnreadableDocumentError(PDFMergeError):
    """PDF is malformed, encrypted or otherwise cannot be page-counted."""

    error_type: str = "UnreadableDocument"
    status_code: int = 422

    @staticmethod
    def for_file(filename: str, detail: str = "", doc_id: Optional[str] = None) -> "UnreadableDocumentError":
        base_msg = f"'{filename}' could not be read."
        if detail:
            base_msg = f"{base_msg} Issue: {detail}"
        else:
            base_msg = (
                f"{base_msg} It may be damaged or password-protected. "
                f"Try re-saving it from the original program."
            )
        return UnreadableDocumentError(base_msg, details={"doc_id": doc_id, "filename": filename})


class CountTimeoutError(PDFMergeError):
    """Counting pages took longer than allowed."""

    error_type: str = "CountTimeout"
    status_code: int = 504

    @staticmethod
    def for_file(filename: str, timeout: float, doc_id: Optional[str] = None) -> "CountTimeoutError":
        return CountTimeoutError(
            f"Counting pages of '{filename}' timed out after {timeout:.0f}s.",
            details={"doc_id": doc_id, "filename": filename, "timeout_sec": timeout},
        )


class InvalidLayoutError(PDFMergeError):
    """The requested page layout does not fit the uploaded documents."""

    error_type: str = "InvalidLayout"
    status_code: int = 422

    def __init__(
        self,
        message: str,
        constraint: str,
        entry_index: Optional[int] = None,
        doc_id: Optional[str] = None,
        page: Optional[int] = None,
        original_error: Optional[BaseException] = None,
        extra_details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details: Dict[str, Any] = {
            "constraint": constraint,
            "entry_index": entry_index,
            "doc_id": doc_id,
            "page": page,
        }
        details.update(extra_details or {})
        super().__init__(message, original_error=original_error, details=details)
        self.constraint = constraint
        self.entry_index = entry_index
        self.doc_id = doc_id
        self.page = page


class ExtractionFailedError(PDFMergeError):
    """Pulling a page range out of a source document failed."""

    error_type: str = "ExtractionFailed"
    status_code: int = 500

    @staticmethod
    def for_range(doc_id: str, start: int, end: int, detail: str) -> "ExtractionFailedError":
        pages = f"page {start}" if start == end else f"pages {start}-{end}"
        return ExtractionFailedError(
            f"Could not extract {pages} of document '{doc_id}': {detail}",
            details={"doc_id": doc_id, "start_page": start, "end_page": end, "stage": "extract"},
        )


class AssemblyFailedError(PDFMergeError):
    """Concatenating extracted page ranges failed."""

    error_type: str = "AssemblyFailed"
    status_code: int = 500


class RecompressionFailedError(PDFMergeError):
    """Ghostscript recompression or qpdf linearization failed."""

    error_type: str = "RecompressionFailed"
    status_code: int = 500

    @staticmethod
    def for_stage(stage: str, detail: str) -> "RecompressionFailedError":
        return RecompressionFailedError(
            f"{stage.capitalize()} step failed: {detail}",
            details={"stage": stage},
        )


class WorkAreaFailureError(PDFMergeError):
    """Temporary storage could not be allocated, filled or released."""

    error_type: str = "WorkAreaFailure"
    status_code: int = 500


class MergeCancelledError(PDFMergeError):
    """The request was cancelled while external tools were running."""

    error_type: str = "MergeCancelled"
    status_code: int = 499


class RateLimitedError(PDFMergeError):
    """The client exceeded its request rate."""

    error_type: str = "RateLimited"
    status_code: int = 429


class ProcessTimeout(Exception):
    """Raised by the process runner; components translate it to their own kind."""

    def __init__(self, label: str, timeout: float) -> None:
        super().__init__(f"{label} exceeded {timeout:.0f}s")
        self.label = label
        self.timeout = timeout
