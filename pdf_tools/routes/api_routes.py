"""API routes."""

from flask import Blueprint

from pdf_tools.services import merge_service

api_bp = Blueprint("api", __name__, url_prefix="/api")

api_bp.add_url_rule(
    "/merge",
    endpoint="merge",
    view_func=merge_service.merge,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/npages",
    endpoint="npages",
    view_func=merge_service.npages,
    methods=["POST"],
)
