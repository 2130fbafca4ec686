"""
HTTP rate limiting for the governance blueprints.

Applies per-blueprint request limits using Flask-Limiter. This is an
infrastructure limit keyed by client (principal header, else remote IP); the
per-principal mutation limit lives in ``services.escalation_guard``.

The Limiter instance is created in ``governance_engine/__init__.py`` with no
default limits.

Usage:
    from governance_engine.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

# Admin mutation surfaces
WRITE_LIMIT = "60/minute"
# Resolution endpoints are read-heavy (UI calls them on every page)
READ_LIMIT = "300/minute"

WRITE_BLUEPRINTS = ("governance_roles", "governance_templates", "governance_flags")
READ_BLUEPRINTS = ("governance_workflows", "governance_permissions")


def principal_or_address():
    """Limiter key: acting principal if known, else remote IP."""
    # Limiter checks run before the principal context hook populates g
    principal = (flask_request.headers.get("X-User-Email") or "").strip().lower()
    if principal:
        return f"principal:{principal}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=principal_or_address)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=principal_or_address)(bp)

    app.logger.info("Rate limiter configured: write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
