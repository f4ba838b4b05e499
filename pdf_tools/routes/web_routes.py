"""Health routes."""

from flask import Blueprint

from pdf_tools.services import merge_service

web_bp = Blueprint("web", __name__)


@web_bp.get("/healthz")
def healthz():
    return merge_service.healthz()


@web_bp.get("/health")
def health():
    return merge_service.health()
