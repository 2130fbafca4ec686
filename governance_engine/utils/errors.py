"""Standardised API error responses.

Usage
-----
    from governance_engine.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Role not found")
    return api_error(E.VALIDATION_REQUIRED, "project_code is required")

``register_error_handlers(app)`` maps the engine's exception hierarchy onto
these responses so views can simply let service errors propagate.
"""

from __future__ import annotations

import logging

from flask import jsonify

from governance_engine.core.exceptions import (
    ConflictError,
    FeatureFlagViolationError,
    GovernanceError,
    InsufficientApprovalsError,
    NotFoundError,
    PermissionEscalationError,
    RateLimitError,
    TemplateContentValidationError,
    TemplateSyncLockError,
    TemplateSyncTransitionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400/422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401/403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Guard refusals
    PERMISSION_ESCALATION = PermissionEscalationError.code
    RATE_LIMITED = RateLimitError.code
    SYNC_TRANSITION = TemplateSyncTransitionError.code
    SYNC_LOCKED = TemplateSyncLockError.code
    TEMPLATE_CONTENT = TemplateContentValidationError.code
    INSUFFICIENT_APPROVALS = InsufficientApprovalsError.code
    FEATURE_DISABLED = FeatureFlagViolationError.code

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.PERMISSION_ESCALATION: 403,
    E.RATE_LIMITED: 429,
    E.SYNC_TRANSITION: 409,
    E.SYNC_LOCKED: 409,
    E.TEMPLATE_CONTENT: 400,
    E.INSUFFICIENT_APPROVALS: 409,
    E.FEATURE_DISABLED: 403,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (violations, retry_after, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Translate service exceptions into ``api_error`` responses."""

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, str(exc), details={
            "resource": exc.resource, "resource_id": exc.resource_id,
        })

    @app.errorhandler(ValidationError)
    def _invalid(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={
            "field": exc.field, "value": exc.value,
        })

    @app.errorhandler(GovernanceError)
    def _refused(exc):
        response, status = api_error(exc.code, str(exc), details=exc.to_dict())
        if isinstance(exc, RateLimitError):
            response.headers["Retry-After"] = str(int(exc.window_seconds))
        return response, status

    @app.errorhandler(404)
    def _route_not_found(e):
        return api_error(E.NOT_FOUND, "Not found")

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def _http_rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
