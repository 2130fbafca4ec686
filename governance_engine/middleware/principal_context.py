"""
Principal Context Middleware — who is acting on this request.

The acting principal's email arrives in the ``X-User-Email`` header (set by
the fronting identity proxy). It is stored on ``g.principal_email`` and is
what services receive as ``actor``.

Usage:
    @bp.route("/roles", methods=["POST"])
    @require_permission("admin:roles")
    def create_role():
        actor = g.principal_email
        ...
"""

import functools
import logging

from flask import g, request

from governance_engine.services.permission_resolver import resolve_permissions
from governance_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

PRINCIPAL_HEADER = "X-User-Email"


def init_principal_context(app):
    """Populate ``g.principal_email`` for every request."""

    @app.before_request
    def _load_principal():
        email = (request.headers.get(PRINCIPAL_HEADER) or "").strip().lower()
        g.principal_email = email or None


def require_principal(f):
    """Decorator: 401 unless the request names a principal."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not getattr(g, "principal_email", None):
            return api_error(E.UNAUTHORIZED, f"{PRINCIPAL_HEADER} header is required")
        return f(*args, **kwargs)
    return decorated


def require_permission(permission: str):
    """Decorator: 403 unless the principal's global permissions include ``permission``."""
    def decorator(f):
        @functools.wraps(f)
        @require_principal
        def decorated(*args, **kwargs):
            resolved = resolve_permissions(g.principal_email)
            if not resolved.has(permission):
                logger.warning(
                    "Principal %s lacks %s for %s", g.principal_email, permission, request.path,
                )
                return api_error(
                    E.FORBIDDEN, f"Permission '{permission}' required",
                    details={"permission": permission},
                )
            g.principal_permissions = resolved
            return f(*args, **kwargs)
        return decorated
    return decorator
