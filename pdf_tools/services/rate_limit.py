"""Per-client request throttling, backed by Flask-Limiter.

Two layers, both keyed on the client address:

- every route shares an application-wide limit;
- routes on the API blueprint get a tighter limit of their own.

A limit is given as a sustained rate plus a burst, and maps onto a moving
window of ``burst`` requests per ``burst / rate`` seconds.
"""

import logging
import math
from typing import Optional

from flask import Blueprint, Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

from pdf_tools.core.settings import MergeRuntimeSettings

logger = logging.getLogger(__name__)

STORAGE_URI = "memory://"
STRATEGY = "moving-window"


def burst_limit(per_second: int, burst: int) -> str:
    """Limit string allowing ``burst`` requests at once and ``per_second`` sustained."""
    burst = max(burst, per_second)
    window = max(1, math.ceil(burst / per_second))
    return f"{burst} per {window} second"


def init_rate_limits(app: Flask, api_blueprint: Blueprint, settings: MergeRuntimeSettings) -> Optional[Limiter]:
    """Attach the limiter to ``app``; returns None when rate limiting is disabled."""
    if settings.trust_proxy_headers:
        # request.remote_addr becomes the last X-Forwarded-For hop.
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

    if not settings.rate_limit_enabled:
        logger.warning("Rate limiting disabled (RATE_LIMIT_ENABLED=false)")
        return None

    api_limit = burst_limit(settings.rate_limit_per_second, settings.rate_limit_burst)
    global_limit = burst_limit(settings.global_rate_limit_per_second, settings.global_rate_limit_burst)

    limiter = Limiter(
        get_remote_address,
        app=app,
        application_limits=[global_limit],
        storage_uri=STORAGE_URI,
        strategy=STRATEGY,
        headers_enabled=True,
    )
    limiter.limit(api_limit)(api_blueprint)
    logger.info(
        "Rate limits: %s per client on /%s, %s per client overall (proxy headers %s)",
        api_limit,
        api_blueprint.name,
        global_limit,
        "trusted" if settings.trust_proxy_headers else "ignored",
    )
    return limiter
