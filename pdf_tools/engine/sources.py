"""Source Set: the validated, size-bounded uploads of one merge request."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional

from werkzeug.utils import secure_filename

from pdf_tools.core.exceptions import (
    DocumentTooLargeError,
    InvalidDocumentError,
    InvalidRequestError,
    TooManyDocumentsError,
)
from pdf_tools.engine.workarea import WorkArea

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF-"
PDF_CONTENT_TYPE = "application/pdf"
CHUNK_SIZE = 8192
MAX_DOC_ID_LENGTH = 128


@dataclass
class SourceDocument:
    """An uploaded PDF stored inside the request's work area."""

    doc_id: str
    filename: str
    size_bytes: int
    path: Path
    page_count: Optional[int] = None


def looks_like_pdf(path: Path) -> bool:
    """True when the file starts with the PDF signature."""
    with open(path, "rb") as handle:
        return handle.read(len(PDF_SIGNATURE)) == PDF_SIGNATURE


def display_filename(filename: Optional[str]) -> str:
    return secure_filename(filename or "") or "document.pdf"


class SourceSet:
    """Uploaded documents keyed by client id, kept in upload order."""

    def __init__(self, work_area: WorkArea, max_documents: int, max_file_bytes: int) -> None:
        self.work_area = work_area
        self.max_documents = max_documents
        self.max_file_bytes = max_file_bytes
        self._docs: Dict[str, SourceDocument] = {}

    def __len__(self) -> int:
        return len(self._docs)

    def __iter__(self) -> Iterator[SourceDocument]:
        return iter(list(self._docs.values()))

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._docs

    def get(self, doc_id: str) -> Optional[SourceDocument]:
        return self._docs.get(doc_id)

    def ids(self) -> List[str]:
        return list(self._docs)

    def check_count(self, count: int) -> None:
        """Reject an upload batch up front, before any bytes are written."""
        if count > self.max_documents:
            raise TooManyDocumentsError.for_count(count, self.max_documents)

    def add(
        self,
        doc_id: str,
        filename: Optional[str],
        stream: BinaryIO,
        content_type: Optional[str] = None,
    ) -> SourceDocument:
        """Copy one upload into the work area under a server-generated name.

        Args:
            doc_id: Client-assigned identifier, unique within the request.
            filename: Client filename, used for messages only.
            stream: Readable binary stream with the upload's bytes.
            content_type: Declared MIME type; checked only when present.

        Returns:
            The stored SourceDocument.
        """
        name = display_filename(filename)
        self.check_count(len(self._docs) + 1)

        if not doc_id or len(doc_id) > MAX_DOC_ID_LENGTH:
            raise InvalidRequestError(f"Invalid document id for {name}")
        if doc_id in self._docs:
            raise InvalidRequestError(f"Duplicate document id: {doc_id}", details={"doc_id": doc_id})

        mimetype = (content_type or "").split(";", 1)[0].strip().lower()
        if mimetype and mimetype not in (PDF_CONTENT_TYPE, "application/octet-stream"):
            raise InvalidDocumentError(
                f"Only PDF files are allowed (got {mimetype} for {name})",
                details={"doc_id": doc_id, "filename": name},
            )

        path = self.work_area.new_path("in")
        written = 0
        try:
            with open(path, "wb") as out:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_file_bytes:
                        raise DocumentTooLargeError.for_file(name, self.max_file_bytes, doc_id=doc_id)
                    self.work_area.reserve(len(chunk))
                    out.write(chunk)

            if not looks_like_pdf(path):
                raise InvalidDocumentError.for_file(name, doc_id=doc_id)
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        doc = SourceDocument(doc_id=doc_id, filename=name, size_bytes=written, path=path)
        self._docs[doc_id] = doc
        logger.info("Stored %s as %s (%.1f KB)", doc_id, path.name, written / 1024)
        return doc
