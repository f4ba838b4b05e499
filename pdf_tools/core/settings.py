"""Centralized runtime settings with validation and effective-value reporting."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pdf_tools.core.utils import get_effective_cpu_count, parse_bool_loose

logger = logging.getLogger(__name__)

MB = 1024 * 1024

DEFAULT_MAX_DOCUMENTS = 10
DEFAULT_MAX_FILE_MB = 30
DEFAULT_QUALITY = 80
DEFAULT_MAX_LAYOUT_ENTRIES = 5000
DEFAULT_RATE_LIMIT_PER_SECOND = 2
DEFAULT_RATE_LIMIT_BURST = 10
DEFAULT_GLOBAL_RATE_LIMIT_PER_SECOND = 20
DEFAULT_GLOBAL_RATE_LIMIT_BURST = 50
MIN_QUALITY = 1
MAX_QUALITY = 100
# Multipart overhead allowed on top of the documents themselves.
BODY_OVERHEAD_BYTES = 5 * MB


@dataclass(frozen=True)
class MergeRuntimeSettings:
    max_documents: int
    max_file_bytes: int
    work_root: Path
    work_area_max_bytes: int
    stale_work_area_seconds: int
    count_timeout_sec: float
    extract_timeout_sec: float
    recompress_timeout_sec: float
    linearize_timeout_sec: float
    merge_timeout_sec: float
    count_workers: int
    extract_workers: int
    default_quality: int
    api_token: Optional[str]
    max_layout_entries: int = DEFAULT_MAX_LAYOUT_ENTRIES
    rate_limit_enabled: bool = True
    rate_limit_per_second: int = DEFAULT_RATE_LIMIT_PER_SECOND
    rate_limit_burst: int = DEFAULT_RATE_LIMIT_BURST
    global_rate_limit_per_second: int = DEFAULT_GLOBAL_RATE_LIMIT_PER_SECOND
    global_rate_limit_burst: int = DEFAULT_GLOBAL_RATE_LIMIT_BURST
    trust_proxy_headers: bool = False

    @property
    def max_body_bytes(self) -> int:
        return self.max_documents * self.max_file_bytes + BODY_OVERHEAD_BYTES


def _parse_positive_int(raw: Optional[str], *, name: str) -> Optional[int]:
    if raw is None:
        return None
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        logger.warning("[settings] Invalid %s=%s; using default", name, raw)
        return None
    if value <= 0:
        logger.warning("[settings] Non-positive %s=%s; using default", name, raw)
        return None
    return value


def _parse_positive_float(raw: Optional[str], *, name: str) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        logger.warning("[settings] Invalid %s=%s; using default", name, raw)
        return None
    if value <= 0:
        logger.warning("[settings] Non-positive %s=%s; using default", name, raw)
        return None
    return value


def _int_setting(name: str, default: int) -> int:
    value = _parse_positive_int(os.environ.get(name), name=name)
    return default if value is None else value


def _float_setting(name: str, default: float) -> float:
    value = _parse_positive_float(os.environ.get(name), name=name)
    return default if value is None else value


def _bool_setting(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return parse_bool_loose(raw)


def _resolve_work_root() -> Path:
    raw = (os.environ.get("WORK_ROOT") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path(tempfile.gettempdir()) / "pdf-tools"


def _auto_count_workers(max_documents: int) -> int:
    return max(1, min(max_documents, get_effective_cpu_count()))


@lru_cache(maxsize=1)
def get_merge_runtime_settings() -> MergeRuntimeSettings:
    """Read the process-wide settings once; later calls return the same object."""
    max_documents = _int_setting("MAX_DOCUMENTS", DEFAULT_MAX_DOCUMENTS)
    max_file_bytes = _int_setting("MAX_FILE_MB", DEFAULT_MAX_FILE_MB) * MB

    # Uploads plus extraction parts, assembled, recompressed and linearized copies.
    default_area_mb = (max_documents * max_file_bytes * 4) // MB
    work_area_max_bytes = _int_setting("WORK_AREA_MAX_MB", default_area_mb) * MB

    count_workers = min(
        max_documents,
        _int_setting("COUNT_WORKERS", _auto_count_workers(max_documents)),
    )

    default_quality = _int_setting("DEFAULT_QUALITY", DEFAULT_QUALITY)
    if not MIN_QUALITY <= default_quality <= MAX_QUALITY:
        logger.warning("[settings] DEFAULT_QUALITY=%s out of range; using %s", default_quality, DEFAULT_QUALITY)
        default_quality = DEFAULT_QUALITY

    api_token = (os.environ.get("API_TOKEN") or "").strip() or None

    return MergeRuntimeSettings(
        max_documents=max_documents,
        max_file_bytes=max_file_bytes,
        work_root=_resolve_work_root(),
        work_area_max_bytes=work_area_max_bytes,
        stale_work_area_seconds=_int_setting("STALE_WORK_AREA_SECONDS", 3600),
        count_timeout_sec=_float_setting("COUNT_TIMEOUT_SEC", 30.0),
        extract_timeout_sec=_float_setting("EXTRACT_TIMEOUT_SEC", 120.0),
        recompress_timeout_sec=_float_setting("RECOMPRESS_TIMEOUT_SEC", 600.0),
        linearize_timeout_sec=_float_setting("LINEARIZE_TIMEOUT_SEC", 120.0),
        merge_timeout_sec=_float_setting("MERGE_TIMEOUT_SEC", 900.0),
        count_workers=count_workers,
        extract_workers=_int_setting("EXTRACT_WORKERS", 4),
        default_quality=default_quality,
        api_token=api_token,
        max_layout_entries=_int_setting("MAX_LAYOUT_ENTRIES", DEFAULT_MAX_LAYOUT_ENTRIES),
        rate_limit_enabled=_bool_setting("RATE_LIMIT_ENABLED", True),
        rate_limit_per_second=_int_setting("RATE_LIMIT_PER_SECOND", DEFAULT_RATE_LIMIT_PER_SECOND),
        rate_limit_burst=_int_setting("RATE_LIMIT_BURST", DEFAULT_RATE_LIMIT_BURST),
        global_rate_limit_per_second=_int_setting("GLOBAL_RATE_LIMIT_PER_SECOND", DEFAULT_GLOBAL_RATE_LIMIT_PER_SECOND),
        global_rate_limit_burst=_int_setting("GLOBAL_RATE_LIMIT_BURST", DEFAULT_GLOBAL_RATE_LIMIT_BURST),
        trust_proxy_headers=_bool_setting("TRUST_PROXY_HEADERS", False),
    )


def describe_settings(settings: MergeRuntimeSettings) -> Dict[str, Any]:
    """Flat, JSON-friendly view of the effective settings (no secrets)."""
    return {
        "max_documents": settings.max_documents,
        "max_file_mb": settings.max_file_bytes // MB,
        "max_body_mb": settings.max_body_bytes // MB,
        "work_root": str(settings.work_root),
        "work_area_max_mb": settings.work_area_max_bytes // MB,
        "count_timeout_sec": settings.count_timeout_sec,
        "extract_timeout_sec": settings.extract_timeout_sec,
        "recompress_timeout_sec": settings.recompress_timeout_sec,
        "linearize_timeout_sec": settings.linearize_timeout_sec,
        "merge_timeout_sec": settings.merge_timeout_sec,
        "count_workers": settings.count_workers,
        "extract_workers": settings.extract_workers,
        "default_quality": settings.default_quality,
        "max_layout_entries": settings.max_layout_entries,
        "rate_limit_enabled": settings.rate_limit_enabled,
        "rate_limit_per_second": settings.rate_limit_per_second,
        "rate_limit_burst": settings.rate_limit_burst,
        "global_rate_limit_per_second": settings.global_rate_limit_per_second,
        "global_rate_limit_burst": settings.global_rate_limit_burst,
        "trust_proxy_headers": settings.trust_proxy_headers,
        "auth_enabled": settings.api_token is not None,
    }
