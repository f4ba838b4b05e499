"""Flask API for page-layout PDF merges with recompression."""

import logging
import os
import sys
import uuid
from datetime import datetime
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

from flask import Response, jsonify, request
from flask_limiter.errors import RateLimitExceeded
from werkzeug.datastructures import FileStorage
from werkzeug.exceptions import HTTPException, NotFound, RequestEntityTooLarge

from pdf_tools.core.exceptions import (
    DocumentTooLargeError,
    InvalidRequestError,
    PDFMergeError,
    RateLimitedError,
)
from pdf_tools.core.settings import (
    MAX_QUALITY,
    MB,
    MIN_QUALITY,
    MergeRuntimeSettings,
    describe_settings,
    get_merge_runtime_settings,
)
from pdf_tools.core.utils import get_effective_cpu_count, parse_bool_loose
from pdf_tools.engine.layout import parse_layout
from pdf_tools.engine.page_counter import count_pages
from pdf_tools.engine.pipeline import MergeRequest, run_merge
from pdf_tools.engine.process import get_ghostscript_command, get_qpdf_command
from pdf_tools.engine.sources import SourceSet
from pdf_tools.engine.workarea import WorkAreaManager

# Config
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


# Constants
DOC_PART_PREFIX = "file_"
LEGACY_PART = "files"
NPAGES_PART = "file"
FORM_FIELDS = ("layout", "quality", "linearize")
OUTPUT_FILENAME = "merged.pdf"
QPDF_MISSING_LABEL = "missing (PyPDF2, no timeout)"
# Non-file form fields (the layout JSON) may be far larger than Werkzeug's default.
MAX_FORM_MEMORY_SIZE = 4 * MB


def _format_env_value(name: str, effective: Any, default_label: str = "default") -> str:
    raw = os.environ.get(name)
    if raw is None:
        return f"{effective} ({default_label})"
    return f"{effective} (env:{raw})"


def _truncate(value: Any, width: int) -> str:
    text = str(value)
    if len(text) <= width:
        return text
    return text[: max(0, width - 3)] + "..."


_BOX_LABEL_WIDTH = 30
_BOX_VALUE_WIDTH = 34
_BOX_INNER_WIDTH = _BOX_LABEL_WIDTH + _BOX_VALUE_WIDTH + 5


def _banner(title: str) -> List[str]:
    title_text = f"[ {title} ]"
    border = "+" + "=" * _BOX_INNER_WIDTH + "+"
    return [border, f"|{title_text:^{_BOX_INNER_WIDTH}}|", border]


def _box(title: str, rows: List[Tuple[str, str]]) -> List[str]:
    title_text = f" {title} "
    title_border = "+" + "=" * _BOX_INNER_WIDTH + "+"
    row_border = "+" + "-" * (_BOX_LABEL_WIDTH + 2) + "+" + "-" * (_BOX_VALUE_WIDTH + 2) + "+"
    lines = [title_border, f"|{title_text:^{_BOX_INNER_WIDTH}}|", title_border, row_border]
    for label, value in rows:
        safe_label = _truncate(label, _BOX_LABEL_WIDTH)
        safe_value = _truncate(value, _BOX_VALUE_WIDTH)
        lines.append(f"| {safe_label:<{_BOX_LABEL_WIDTH}} | {safe_value:<{_BOX_VALUE_WIDTH}} |")
    lines.append(row_border)
    return lines


def log_effective_config(settings: MergeRuntimeSettings) -> None:
    """Log the effective limits, timeouts and tools as a boxed startup snapshot."""
    rows_limits = [
        ("MAX_DOCUMENTS", _format_env_value("MAX_DOCUMENTS", settings.max_documents)),
        ("MAX_FILE_MB", _format_env_value("MAX_FILE_MB", settings.max_file_bytes // MB)),
        ("MAX_CONTENT_LENGTH", f"{settings.max_body_bytes // MB}MB (derived)"),
        ("WORK_ROOT", _format_env_value("WORK_ROOT", settings.work_root)),
        ("WORK_AREA_MAX_MB", _format_env_value("WORK_AREA_MAX_MB", settings.work_area_max_bytes // MB)),
        ("STALE_WORK_AREA_SECONDS", _format_env_value("STALE_WORK_AREA_SECONDS", settings.stale_work_area_seconds)),
        ("MAX_LAYOUT_ENTRIES", _format_env_value("MAX_LAYOUT_ENTRIES", settings.max_layout_entries)),
    ]
    rows_timeouts = [
        ("COUNT_TIMEOUT_SEC", _format_env_value("COUNT_TIMEOUT_SEC", settings.count_timeout_sec)),
        ("EXTRACT_TIMEOUT_SEC", _format_env_value("EXTRACT_TIMEOUT_SEC", settings.extract_timeout_sec)),
        ("RECOMPRESS_TIMEOUT_SEC", _format_env_value("RECOMPRESS_TIMEOUT_SEC", settings.recompress_timeout_sec)),
        ("LINEARIZE_TIMEOUT_SEC", _format_env_value("LINEARIZE_TIMEOUT_SEC", settings.linearize_timeout_sec)),
        ("MERGE_TIMEOUT_SEC", _format_env_value("MERGE_TIMEOUT_SEC", settings.merge_timeout_sec)),
    ]
    rows_concurrency = [
        ("CPU_EFFECTIVE", str(get_effective_cpu_count())),
        ("COUNT_WORKERS", _format_env_value("COUNT_WORKERS", settings.count_workers, "auto")),
        ("EXTRACT_WORKERS", _format_env_value("EXTRACT_WORKERS", settings.extract_workers)),
    ]
    rows_rate_limits = [
        ("RATE_LIMIT_ENABLED", _format_env_value("RATE_LIMIT_ENABLED", settings.rate_limit_enabled)),
        ("RATE_LIMIT_PER_SECOND", _format_env_value("RATE_LIMIT_PER_SECOND", settings.rate_limit_per_second)),
        ("RATE_LIMIT_BURST", _format_env_value("RATE_LIMIT_BURST", settings.rate_limit_burst)),
        ("GLOBAL_RATE_LIMIT_PER_SECOND", _format_env_value("GLOBAL_RATE_LIMIT_PER_SECOND", settings.global_rate_limit_per_second)),
        ("GLOBAL_RATE_LIMIT_BURST", _format_env_value("GLOBAL_RATE_LIMIT_BURST", settings.global_rate_limit_burst)),
        ("TRUST_PROXY_HEADERS", _format_env_value("TRUST_PROXY_HEADERS", settings.trust_proxy_headers)),
    ]
    rows_tools = [
        ("qpdf", get_qpdf_command() or QPDF_MISSING_LABEL),
        ("ghostscript", get_ghostscript_command() or "missing"),
        ("DEFAULT_QUALITY", _format_env_value("DEFAULT_QUALITY", settings.default_quality)),
        ("API_TOKEN", "set" if settings.api_token else "unset (open access)"),
    ]

    lines = _banner("CONFIG SNAPSHOT (startup)")
    lines += _box("Limits", rows_limits)
    lines += _box("Timeouts", rows_timeouts)
    lines += _box("Concurrency", rows_concurrency)
    lines += _box("Rate Limits", rows_rate_limits)
    lines += _box("Tools and Quality", rows_tools)
    logger.info("\n%s", "\n".join(lines))
    if get_qpdf_command() is None:
        logger.warning("qpdf not found: counting and extraction fall back to PyPDF2, which runs without a timeout")


def get_work_area_manager(settings: Optional[MergeRuntimeSettings] = None) -> WorkAreaManager:
    settings = settings or get_merge_runtime_settings()
    return WorkAreaManager(settings.work_root, settings.work_area_max_bytes)


def configure_app(app) -> None:
    """Apply Flask app config values required by this service layer."""
    app.config["MAX_FORM_MEMORY_SIZE"] = MAX_FORM_MEMORY_SIZE


def register_error_handlers(app) -> None:
    """Register HTTP, merge and framework error handlers."""
    app.register_error_handler(RequestEntityTooLarge, handle_large_file)
    app.register_error_handler(RateLimitExceeded, handle_rate_limited)
    app.register_error_handler(PDFMergeError, handle_merge_error)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_error)


def require_auth(f):
    """Decorator to require Bearer token authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_token = get_merge_runtime_settings().api_token
        if not api_token:
            return f(*args, **kwargs)  # No token configured = open access

        auth_header = request.headers.get('Authorization')

        if not auth_header:
            logger.warning(f"Missing Authorization header on {request.path}")
            return jsonify({"success": False, "error": "Missing Authorization header"}), 401

        if not auth_header.startswith('Bearer '):
            logger.warning(f"Invalid Authorization format on {request.path}: {auth_header[:30]}...")
            return jsonify({"success": False, "error": "Authorization must use Bearer token format"}), 401

        if auth_header[7:] != api_token:
            logger.warning(f"Invalid token on {request.path}")
            return jsonify({"success": False, "error": "Invalid token"}), 403

        return f(*args, **kwargs)
    return decorated


def build_health_snapshot() -> Dict[str, Any]:
    """Build a lightweight snapshot for the health endpoint."""
    settings = get_merge_runtime_settings()
    gs_cmd = get_ghostscript_command()
    qpdf_cmd = get_qpdf_command()
    return {
        "status": "healthy" if gs_cmd and qpdf_cmd else "degraded",
        "timestamp": datetime.utcnow().isoformat(timespec="seconds") + "Z",
        "ghostscript": {
            "available": gs_cmd is not None,
            "command": gs_cmd or "missing",
        },
        "qpdf": {
            "available": qpdf_cmd is not None,
            "command": qpdf_cmd or QPDF_MISSING_LABEL,
        },
        "cpu_effective": get_effective_cpu_count(),
        "limits": describe_settings(settings),
    }


def create_error_response(error: Exception, status_code: int = 500):
    """Create standardized error response.

    Returns both 'error' (for old clients) and 'error_type'/'error_message' (for new clients).
    """
    if isinstance(error, PDFMergeError):
        return jsonify(error.to_dict()), status_code

    message = error.description if isinstance(error, HTTPException) else str(error)
    return jsonify({
        "success": False,
        "error": message,
        "error_type": "UnknownError",
        "error_message": message,
    }), status_code


# Error handlers
def handle_large_file(e):
    limit = get_merge_runtime_settings().max_body_bytes
    error = DocumentTooLargeError(
        f"Upload too large (max {limit // MB}MB for the whole request)",
        details={"limit_bytes": limit},
    )
    logger.warning("413 %s %s: request body over %s bytes", request.method, request.path, limit)
    return create_error_response(error, error.status_code)


def handle_rate_limited(e):
    logger.warning("429 %s %s from %s: over %s", request.method, request.path, request.remote_addr, e.description)
    error = RateLimitedError(f"Too many requests: limit is {e.description}", details={"limit": e.description})
    return create_error_response(error, error.status_code)


def handle_merge_error(e: PDFMergeError):
    if e.status_code >= 500:
        cause = f" (caused by {e.original_error!r})" if e.original_error else ""
        logger.error("%s on %s %s: %s%s", e.error_type, request.method, request.path, e.message, cause)
    else:
        logger.warning("%s on %s %s: %s", e.error_type, request.method, request.path, e.message)
    return create_error_response(e, e.status_code)


def handle_http_exception(e):
    if isinstance(e, NotFound):
        logger.info("404 %s %s", request.method, request.path)
    else:
        logger.warning("HTTP %s on %s %s: %s", e.code, request.method, request.path, e.description)
    return create_error_response(e, e.code or 400)


def handle_error(e):
    logger.exception("Unhandled error")
    return create_error_response(e, 500)


def _parse_quality(raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        quality = int(raw.strip())
    except ValueError as exc:
        raise InvalidRequestError(f"quality must be an integer, got {raw!r}") from exc
    if not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise InvalidRequestError(
            f"quality must be between {MIN_QUALITY} and {MAX_QUALITY}, got {quality}",
            details={"quality": quality},
        )
    return quality


def _collect_uploads() -> Tuple[List[Tuple[str, FileStorage]], bool]:
    """Pair every uploaded document with its doc id.

    Returns:
        ``(uploads, legacy)`` where ``legacy`` is True for repeated ``files`` parts.
    """
    unexpected = [key for key in request.form.keys() if key not in FORM_FIELDS]
    unexpected += [
        key for key in request.files.keys()
        if key != LEGACY_PART and not key.startswith(DOC_PART_PREFIX)
    ]
    if unexpected:
        raise InvalidRequestError(
            f"Unexpected form field(s): {', '.join(sorted(set(unexpected)))}",
            details={"fields": sorted(set(unexpected))},
        )

    uploads: List[Tuple[str, FileStorage]] = []
    for key, storages in request.files.lists():
        if key == LEGACY_PART:
            continue
        doc_id = key[len(DOC_PART_PREFIX):]
        if len(storages) > 1:
            raise InvalidRequestError(f"Duplicate document id: {doc_id}", details={"doc_id": doc_id})
        uploads.append((doc_id, storages[0]))

    legacy = request.files.getlist(LEGACY_PART)
    if uploads and legacy:
        raise InvalidRequestError(f"Use either '{DOC_PART_PREFIX}<id>' parts or '{LEGACY_PART}' parts, not both")
    if legacy:
        return [(f"doc{index}", storage) for index, storage in enumerate(legacy, start=1)], True
    return uploads, False


# Routes
def healthz():
    return Response("ok", mimetype="text/plain")


def health():
    """Health check endpoint with tool availability and limits."""
    return jsonify(build_health_snapshot())


@require_auth
def merge():
    """
    Merge pages of up to MAX_DOCUMENTS PDFs in a caller-declared order.

    Accepts multipart/form-data:
    - file_<id>: one part per document, plus 'layout' as JSON
      [{"doc": "<id>", "page": <n>}, ...]
    - files: repeated parts, merged whole in upload order (no layout)
    - quality: 1..100 (default DEFAULT_QUALITY)
    - linearize: 1/true/on/yes for fast web view

    Returns the merged PDF as an attachment, or a JSON error.
    """
    settings = get_merge_runtime_settings()
    rid = uuid.uuid4().hex[:12]

    uploads, legacy = _collect_uploads()
    if not uploads:
        raise InvalidRequestError("No PDF files uploaded")

    layout_text = request.form.get("layout")
    if legacy and layout_text is not None:
        raise InvalidRequestError(f"A layout requires '{DOC_PART_PREFIX}<id>' parts")
    if not legacy and layout_text is None:
        raise InvalidRequestError("Missing 'layout' field")

    quality = _parse_quality(request.form.get("quality"), settings.default_quality)
    linearize = parse_bool_loose(request.form.get("linearize"))

    logger.info(
        "[%s] Merge request: %d document(s), %s, quality=%d, linearize=%s",
        rid,
        len(uploads),
        "whole-file mode" if legacy else "layout mode",
        quality,
        linearize,
    )

    with get_work_area_manager(settings).scoped() as work_area:
        sources = SourceSet(work_area, settings.max_documents, settings.max_file_bytes)
        sources.check_count(len(uploads))
        layout = None if legacy else parse_layout(layout_text, settings.max_layout_entries)
        for doc_id, storage in uploads:
            sources.add(doc_id, storage.filename, storage.stream, storage.mimetype)

        merge_request = MergeRequest(
            sources=sources,
            layout=layout,
            quality=quality,
            linearize=linearize,
            request_id=rid,
        )
        result = run_merge(merge_request, work_area, settings)

    response = Response(result.data, mimetype="application/pdf")
    response.headers["Content-Disposition"] = f'attachment; filename="{OUTPUT_FILENAME}"'
    return response


@require_auth
def npages():
    """Return the authoritative page count of one uploaded PDF as {"pages": N}."""
    settings = get_merge_runtime_settings()
    storage = request.files.get(NPAGES_PART)
    if storage is None:
        raise InvalidRequestError(f"Missing '{NPAGES_PART}' part")

    with get_work_area_manager(settings).scoped() as work_area:
        sources = SourceSet(work_area, 1, settings.max_file_bytes)
        doc = sources.add(NPAGES_PART, storage.filename, storage.stream, storage.mimetype)
        pages = count_pages(doc.path, settings.count_timeout_sec, filename=doc.filename, doc_id=doc.doc_id)

    logger.info("Counted %d page(s) in %s", pages, doc.filename)
    return jsonify({"pages": pages})
