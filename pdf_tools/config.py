"""Application configuration loading."""

from __future__ import annotations

from dataclasses import dataclass

from pdf_tools.core.settings import get_merge_runtime_settings


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration values consumed by the Flask app."""

    max_content_length: int


def load_runtime_config() -> RuntimeConfig:
    """Load runtime configuration from the environment-backed settings."""
    settings = get_merge_runtime_settings()
    return RuntimeConfig(max_content_length=settings.max_body_bytes)
