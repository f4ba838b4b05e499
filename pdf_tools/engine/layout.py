"""Client-declared page layouts and their validation against real page counts.

A layout is the exact output order: ``[{"doc": "a", "page": 1}, ...]``.
Validation is all-or-nothing; a layout with a single bad entry is rejected
as a whole rather than merged without that entry.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from pdf_tools.core.exceptions import InvalidLayoutError
from pdf_tools.engine.page_counter import CountResult

logger = logging.getLogger(__name__)

Layout = Tuple["LayoutEntry", ...]


@dataclass(frozen=True)
class LayoutEntry:
    doc_id: str
    page: int

    def to_dict(self) -> dict:
        return {"doc": self.doc_id, "page": self.page}


def _entry_from_json(index: int, raw: Any) -> LayoutEntry:
    if not isinstance(raw, Mapping):
        raise InvalidLayoutError(
            f"Layout entry {index} must be an object with 'doc' and 'page'",
            constraint="malformed",
            entry_index=index,
        )
    doc_id = raw.get("doc")
    page = raw.get("page")
    if not isinstance(doc_id, str) or not doc_id:
        raise InvalidLayoutError(
            f"Layout entry {index} has no document id",
            constraint="malformed",
            entry_index=index,
        )
    # bool is an int subclass; "page": true is not a page number.
    if isinstance(page, bool) or not isinstance(page, int):
        raise InvalidLayoutError(
            f"Layout entry {index} has an invalid page number for doc {doc_id}",
            constraint="malformed",
            entry_index=index,
            doc_id=doc_id,
        )
    return LayoutEntry(doc_id=doc_id, page=page)


def parse_layout(text: str, max_entries: Optional[int] = None) -> Layout:
    """Parse the JSON layout sent by the client; shape errors raise InvalidLayoutError.

    A layout longer than ``max_entries`` is rejected before any entry is built.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise InvalidLayoutError("Invalid layout: not valid JSON", constraint="malformed", original_error=exc) from exc
    if not isinstance(data, list):
        raise InvalidLayoutError("Invalid layout: expected a list of pages", constraint="malformed")
    if max_entries is not None and len(data) > max_entries:
        raise InvalidLayoutError(
            f"Invalid layout: {len(data)} pages requested, at most {max_entries} allowed",
            constraint="too_many_entries",
            extra_details={"max_entries": max_entries, "entries": len(data)},
        )
    return tuple(_entry_from_json(index, raw) for index, raw in enumerate(data))


def whole_document_layout(doc_ids: Iterable[str], counts: Mapping[str, CountResult]) -> Layout:
    """Every page of every document, in the given order.

    Documents whose count failed contribute a single page-1 entry so the
    validator reports them the same way as in an explicit layout.
    """
    entries = []
    for doc_id in doc_ids:
        result = counts.get(doc_id)
        if result is None or not result.ok:
            entries.append(LayoutEntry(doc_id, 1))
            continue
        entries.extend(LayoutEntry(doc_id, page) for page in range(1, result.pages + 1))
    return tuple(entries)


def check_references(layout: Sequence[LayoutEntry], known_doc_ids: Iterable[str]) -> None:
    """Reject entries naming documents that were not uploaded; needs no page counts."""
    known = set(known_doc_ids)
    for index, entry in enumerate(layout):
        if entry.doc_id not in known:
            raise InvalidLayoutError(
                f"Layout references unknown doc id: {entry.doc_id}",
                constraint="unknown_document",
                entry_index=index,
                doc_id=entry.doc_id,
                page=entry.page,
            )


def validate_layout(
    layout: Sequence[LayoutEntry],
    known_doc_ids: Iterable[str],
    counts: Mapping[str, CountResult],
) -> Layout:
    """Check the layout against the uploaded documents and their authoritative counts.

    Checks, in order: every referenced document was uploaded and counted;
    every page is within ``[1, page_count]``; the layout is not empty.

    Returns:
        The layout as an immutable tuple.

    Raises:
        InvalidLayoutError: On the first violation, naming entry and constraint.
    """
    check_references(layout, known_doc_ids)

    # Report every referenced document that failed counting, not just the first.
    failures = {}
    first_failed = None
    for index, entry in enumerate(layout):
        result = counts.get(entry.doc_id)
        if result is not None and result.ok:
            continue
        if first_failed is None:
            first_failed = (index, entry, result.error if result is not None else None)
        if entry.doc_id not in failures:
            error = result.error if result is not None else None
            failures[entry.doc_id] = {
                "error_type": error.error_type if error is not None else "UnreadableDocument",
                "error_message": error.message if error is not None else "page count unavailable",
            }
    if first_failed is not None:
        index, entry, cause = first_failed
        detail = failures[entry.doc_id]["error_message"]
        raise InvalidLayoutError(
            f"Layout references doc {entry.doc_id}, which could not be read: {detail}",
            constraint="unreadable_document",
            entry_index=index,
            doc_id=entry.doc_id,
            page=entry.page,
            original_error=cause,
            extra_details={"document_errors": failures},
        )

    for index, entry in enumerate(layout):
        max_pages = counts[entry.doc_id].pages
        if entry.page < 1 or entry.page > max_pages:
            raise InvalidLayoutError(
                f"Invalid page {entry.page} for doc {entry.doc_id} (max {max_pages})",
                constraint="page_out_of_range",
                entry_index=index,
                doc_id=entry.doc_id,
                page=entry.page,
            )

    if not layout:
        raise InvalidLayoutError("Layout is empty", constraint="empty_layout")

    logger.debug("Layout validated: %d entries over %d document(s)", len(layout), len({e.doc_id for e in layout}))
    return tuple(layout)
