"""Flask app factory."""

from __future__ import annotations

from flask import Flask

from pdf_tools import bootstrap
from pdf_tools.config import load_runtime_config
from pdf_tools.core.settings import get_merge_runtime_settings
from pdf_tools.routes.api_routes import api_bp
from pdf_tools.routes.web_routes import web_bp
from pdf_tools.services import merge_service, rate_limit


def create_app() -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    runtime_config = load_runtime_config()
    app.config["MAX_CONTENT_LENGTH"] = runtime_config.max_content_length
    merge_service.configure_app(app)

    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp)
    merge_service.register_error_handlers(app)
    app.extensions["rate_limiter"] = rate_limit.init_rate_limits(app, api_bp, get_merge_runtime_settings())

    bootstrap.bootstrap_runtime()
    return app
