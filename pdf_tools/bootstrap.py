"""Runtime bootstrap: work root preparation and startup housekeeping."""

from __future__ import annotations

import threading

from pdf_tools.core.settings import get_merge_runtime_settings
from pdf_tools.services import merge_service

_bootstrap_lock = threading.Lock()
_bootstrap_started = False


def bootstrap_runtime() -> None:
    """Prepare the work root once per process.

    Creates the root, removes work areas a crashed process left behind and
    logs the effective configuration.
    """
    global _bootstrap_started
    with _bootstrap_lock:
        if _bootstrap_started:
            return

        settings = get_merge_runtime_settings()
        manager = merge_service.get_work_area_manager(settings)
        manager.ensure_root()
        manager.sweep_stale(settings.stale_work_area_seconds)
        merge_service.log_effective_config(settings)
        _bootstrap_started = True


def is_bootstrapped() -> bool:
    """Expose runtime bootstrap state for diagnostics/tests."""
    return _bootstrap_started
