import pytest

from pdf_tools.core.exceptions import CountTimeoutError, InvalidLayoutError, UnreadableDocumentError
from pdf_tools.engine.layout import (
    LayoutEntry,
    check_references,
    parse_layout,
    validate_layout,
    whole_document_layout,
)
from pdf_tools.engine.page_counter import CountResult

COUNTS = {
    "a": CountResult("a", pages=5),
    "b": CountResult("b", pages=3),
}


def _layout(*pairs):
    return tuple(LayoutEntry(doc, page) for doc, page in pairs)


def test_parse_layout_keeps_order_and_duplicates():
    layout = parse_layout('[{"doc": "b", "page": 2}, {"doc": "a", "page": 1}, {"doc": "b", "page": 2}]')
    assert layout == _layout(("b", 2), ("a", 1), ("b", 2))


@pytest.mark.parametrize(
    "text, entry_index",
    [
        ("not json", None),
        ('{"doc": "a", "page": 1}', None),
        ('[{"doc": "a", "page": 1}, "a:2"]', 1),
        ('[{"doc": "a"}]', 0),
        ('[{"page": 1}]', 0),
        ('[{"doc": "a", "page": "1"}]', 0),
        ('[{"doc": "a", "page": true}]', 0),
        ('[{"doc": "a", "page": 1.5}]', 0),
    ],
)
def test_parse_layout_rejects_malformed_input(text, entry_index):
    with pytest.raises(InvalidLayoutError) as excinfo:
        parse_layout(text)
    assert excinfo.value.constraint == "malformed"
    assert excinfo.value.entry_index == entry_index


def test_parse_layout_rejects_too_many_entries():
    text = "[" + ",".join('{"doc": "a", "page": 1}' for _ in range(4)) + "]"
    assert len(parse_layout(text, max_entries=4)) == 4

    with pytest.raises(InvalidLayoutError) as excinfo:
        parse_layout(text, max_entries=3)
    assert excinfo.value.constraint == "too_many_entries"
    assert excinfo.value.details["max_entries"] == 3
    assert excinfo.value.details["entries"] == 4


def test_valid_layout_is_returned_unchanged():
    layout = _layout(("a", 1), ("a", 2), ("a", 3), ("b", 2), ("a", 5))
    assert validate_layout(layout, ["a", "b"], COUNTS) == layout


def test_page_beyond_document_is_rejected():
    layout = _layout(("a", 1), ("b", 4))
    with pytest.raises(InvalidLayoutError) as excinfo:
        validate_layout(layout, ["a", "b"], COUNTS)
    err = excinfo.value
    assert err.constraint == "page_out_of_range"
    assert (err.entry_index, err.doc_id, err.page) == (1, "b", 4)
    assert err.to_dict()["details"]["entry_index"] == 1


def test_page_zero_is_rejected():
    with pytest.raises(InvalidLayoutError) as excinfo:
        validate_layout(_layout(("a", 0)), ["a", "b"], COUNTS)
    assert excinfo.value.constraint == "page_out_of_range"


def test_unknown_document_is_rejected():
    layout = _layout(("a", 1), ("c", 1))
    with pytest.raises(InvalidLayoutError) as excinfo:
        validate_layout(layout, ["a", "b"], COUNTS)
    assert excinfo.value.constraint == "unknown_document"
    assert excinfo.value.doc_id == "c"
    assert excinfo.value.entry_index == 1


def test_check_references_needs_no_counts():
    with pytest.raises(InvalidLayoutError) as excinfo:
        check_references(_layout(("x", 1)), ["a"])
    assert excinfo.value.constraint == "unknown_document"
    check_references(_layout(("a", 99)), ["a"])


def test_empty_layout_is_rejected():
    with pytest.raises(InvalidLayoutError) as excinfo:
        validate_layout((), ["a"], COUNTS)
    assert excinfo.value.constraint == "empty_layout"


def test_unreadable_documents_are_all_reported():
    counts = dict(COUNTS)
    counts["c"] = CountResult("c", error=UnreadableDocumentError.for_file("c.pdf", "damaged", doc_id="c"))
    counts["d"] = CountResult("d", error=CountTimeoutError.for_file("d.pdf", 30, doc_id="d"))
    layout = _layout(("a", 1), ("c", 1), ("d", 2), ("c", 3))

    with pytest.raises(InvalidLayoutError) as excinfo:
        validate_layout(layout, ["a", "b", "c", "d"], counts)

    err = excinfo.value
    assert err.constraint == "unreadable_document"
    assert (err.entry_index, err.doc_id) == (1, "c")
    assert isinstance(err.original_error, UnreadableDocumentError)
    document_errors = err.details["document_errors"]
    assert set(document_errors) == {"c", "d"}
    assert document_errors["d"]["error_type"] == "CountTimeout"


def test_unreadable_document_not_in_layout_is_ignored():
    counts = dict(COUNTS)
    counts["c"] = CountResult("c", error=UnreadableDocumentError.for_file("c.pdf", doc_id="c"))
    layout = _layout(("b", 3))
    assert validate_layout(layout, ["a", "b", "c"], counts) == layout


def test_whole_document_layout_follows_upload_order():
    layout = whole_document_layout(["b", "a"], COUNTS)
    assert layout == _layout(("b", 1), ("b", 2), ("b", 3), ("a", 1), ("a", 2), ("a", 3), ("a", 4), ("a", 5))


def test_whole_document_layout_with_failed_count_fails_validation():
    counts = {"a": COUNTS["a"], "c": CountResult("c", error=UnreadableDocumentError.for_file("c.pdf", doc_id="c"))}
    layout = whole_document_layout(["a", "c"], counts)
    with pytest.raises(InvalidLayoutError) as excinfo:
        validate_layout(layout, ["a", "c"], counts)
    assert excinfo.value.constraint == "unreadable_document"
