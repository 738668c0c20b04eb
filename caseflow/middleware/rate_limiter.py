"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter instance
is created in caseflow/__init__.py with no default limits; this module
applies granular limits per route category.

    - Inbound channel events:  INBOUND_RATE_LIMIT (default 600/minute)
    - Operator configuration:  60/minute
    - Health check:            exempt

Rate limiting is disabled in testing mode.
"""

import logging

logger = logging.getLogger(__name__)

OPERATOR_WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """Apply rate limits to API blueprints."""
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("inbound")
    if bp:
        limiter.limit(app.config.get("INBOUND_RATE_LIMIT", "600/minute"))(bp)

    for bp_name in ("journeys", "tenant_journeys"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(OPERATOR_WRITE_LIMIT, methods=["POST", "PUT", "PATCH", "DELETE"])(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — inbound: %s, operator writes: %s",
        app.config.get("INBOUND_RATE_LIMIT"), OPERATOR_WRITE_LIMIT,
    )
