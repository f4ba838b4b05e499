from pathlib import Path
from typing import List

import pytest
from PyPDF2 import PdfReader, PdfWriter

from pdf_tools.core.settings import get_merge_runtime_settings

_SETTINGS_ENV = (
    "MAX_DOCUMENTS",
    "MAX_FILE_MB",
    "WORK_ROOT",
    "WORK_AREA_MAX_MB",
    "STALE_WORK_AREA_SECONDS",
    "COUNT_TIMEOUT_SEC",
    "EXTRACT_TIMEOUT_SEC",
    "RECOMPRESS_TIMEOUT_SEC",
    "LINEARIZE_TIMEOUT_SEC",
    "MERGE_TIMEOUT_SEC",
    "COUNT_WORKERS",
    "EXTRACT_WORKERS",
    "DEFAULT_QUALITY",
    "API_TOKEN",
    "MAX_LAYOUT_ENTRIES",
    "RATE_LIMIT_ENABLED",
    "RATE_LIMIT_PER_SECOND",
    "RATE_LIMIT_BURST",
    "GLOBAL_RATE_LIMIT_PER_SECOND",
    "GLOBAL_RATE_LIMIT_BURST",
    "TRUST_PROXY_HEADERS",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Fresh settings per test with the work root inside tmp_path."""
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WORK_ROOT", str(tmp_path / "work"))
    get_merge_runtime_settings.cache_clear()
    yield tmp_path / "work"
    get_merge_runtime_settings.cache_clear()


@pytest.fixture(autouse=True)
def force_pypdf(monkeypatch):
    """Count and assemble in-process so results never depend on a local qpdf."""
    monkeypatch.setattr("pdf_tools.engine.page_counter.get_qpdf_command", lambda: None)
    monkeypatch.setattr("pdf_tools.engine.assembler.get_qpdf_command", lambda: None)


def write_pdf(path: Path, pages: int, base_width: int) -> Path:
    """Blank pages whose widths are base_width, base_width + 1, ... so each page is identifiable."""
    writer = PdfWriter()
    for index in range(pages):
        writer.add_blank_page(width=base_width + index, height=200)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as handle:
        writer.write(handle)
    return path


def read_widths(path: Path) -> List[int]:
    with open(path, "rb") as handle:
        reader = PdfReader(handle, strict=False)
        return [int(float(page.mediabox.width)) for page in reader.pages]


@pytest.fixture
def make_pdf(tmp_path):
    def _make(name: str, pages: int, base_width: int = 100) -> Path:
        return write_pdf(tmp_path / "fixtures" / f"{name}.pdf", pages, base_width)

    return _make


@pytest.fixture
def page_widths():
    return read_widths
