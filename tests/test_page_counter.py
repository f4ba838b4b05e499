from pathlib import Path

import pytest

from pdf_tools.core.exceptions import CountTimeoutError, ProcessTimeout, UnreadableDocumentError
from pdf_tools.engine import page_counter
from pdf_tools.engine.page_counter import count_all, count_pages, summarize_qpdf_error
from pdf_tools.engine.process import ProcessResult
from pdf_tools.engine.sources import SourceDocument


def _doc(doc_id: str, path: Path) -> SourceDocument:
    return SourceDocument(doc_id=doc_id, filename=path.name, size_bytes=path.stat().st_size, path=path)


def test_count_pages_is_idempotent(make_pdf):
    path = make_pdf("seven", pages=7)
    assert count_pages(path, timeout=10) == 7
    assert count_pages(path, timeout=10) == 7


def test_damaged_document_is_unreadable(tmp_path):
    path = tmp_path / "damaged.pdf"
    path.write_bytes(b"%PDF-1.7\n\x00\x01garbage without objects")
    with pytest.raises(UnreadableDocumentError) as excinfo:
        count_pages(path, timeout=10, filename="damaged.pdf", doc_id="d")
    assert excinfo.value.details["doc_id"] == "d"


def test_count_all_isolates_failures(make_pdf, tmp_path):
    good = make_pdf("good", pages=3)
    other = make_pdf("other", pages=2)
    bad = tmp_path / "bad.pdf"
    bad.write_bytes(b"%PDF-1.4\nbroken")
    docs = [_doc("good", good), _doc("bad", bad), _doc("other", other)]

    results = count_all(docs, timeout=10, max_workers=3)

    assert list(results) == ["good", "bad", "other"]
    assert results["good"].pages == 3
    assert results["other"].pages == 2
    assert not results["bad"].ok
    assert isinstance(results["bad"].error, UnreadableDocumentError)
    assert docs[0].page_count == 3
    assert docs[1].page_count is None


def test_count_all_with_no_documents():
    assert count_all([], timeout=10, max_workers=2) == {}


class TestQpdfCounting:
    @pytest.fixture(autouse=True)
    def _qpdf_installed(self, monkeypatch):
        monkeypatch.setattr(page_counter, "get_qpdf_command", lambda: "qpdf")

    def _fake_run(self, monkeypatch, result=None, error=None):
        calls = []

        def _run(cmd, timeout, cancel_event=None, label=None):
            calls.append(list(cmd))
            if error is not None:
                raise error
            return result

        monkeypatch.setattr(page_counter, "run_process", _run)
        return calls

    def test_uses_show_npages(self, monkeypatch):
        calls = self._fake_run(monkeypatch, ProcessResult(0, "12\n", "", 0.01))
        assert count_pages(Path("/work/in_x.pdf"), timeout=5) == 12
        assert calls == [["qpdf", "--show-npages", "/work/in_x.pdf"]]

    def test_warnings_exit_code_still_counts(self, monkeypatch):
        self._fake_run(monkeypatch, ProcessResult(3, "4\n", "WARNING: xref stream damaged", 0.01))
        assert count_pages(Path("in.pdf"), timeout=5) == 4

    def test_encrypted_document_is_unreadable(self, monkeypatch):
        self._fake_run(monkeypatch, ProcessResult(2, "", "/work/in_x.pdf: invalid password", 0.01))
        with pytest.raises(UnreadableDocumentError) as excinfo:
            count_pages(Path("/work/in_x.pdf"), timeout=5, filename="secret.pdf")
        assert "password-protected" in excinfo.value.message

    def test_unparsable_output_is_unreadable(self, monkeypatch):
        self._fake_run(monkeypatch, ProcessResult(0, "lots\n", "", 0.01))
        with pytest.raises(UnreadableDocumentError):
            count_pages(Path("in.pdf"), timeout=5)

    def test_zero_pages_is_unreadable(self, monkeypatch):
        self._fake_run(monkeypatch, ProcessResult(0, "0\n", "", 0.01))
        with pytest.raises(UnreadableDocumentError):
            count_pages(Path("in.pdf"), timeout=5)

    def test_timeout_becomes_count_timeout(self, monkeypatch):
        self._fake_run(monkeypatch, error=ProcessTimeout("qpdf-npages", 5))
        with pytest.raises(CountTimeoutError) as excinfo:
            count_pages(Path("in.pdf"), timeout=5, doc_id="a")
        assert excinfo.value.status_code == 504
        assert excinfo.value.details["doc_id"] == "a"


def test_qpdf_error_summary_hides_server_paths():
    stderr = "WARNING: something\n/srv/work/merge-x/in_abc.pdf: not a PDF file\n"
    assert summarize_qpdf_error(stderr) == "not a PDF file"
    assert summarize_qpdf_error("") == "the PDF structure is damaged"
    assert summarize_qpdf_error("file is encrypted") == "the PDF is password-protected"
