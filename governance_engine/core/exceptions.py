"""
Engine-wide exception hierarchy.

Services and guards raise these types; blueprints register one handler per
type and get consistent HTTP status codes everywhere.

Two families:
  - Configuration errors (NotFoundError, ValidationError, ConflictError):
    the caller referenced something that does not exist or sent data that
    breaks a business rule.
  - Guard errors (GovernanceError subclasses): an expected, handleable
    refusal to perform a privileged mutation. Each carries the structured
    payload the caller records in its audit entry.

Usage:
    from governance_engine.core.exceptions import NotFoundError, RateLimitError

    raise NotFoundError(resource="RoleConfiguration", resource_id=42)
    raise RateLimitError(operation="role.create", window_seconds=60, max_calls=10)
"""


class NotFoundError(Exception):
    """Raised when a referenced configuration entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "RoleConfiguration").
        resource_id: The id or key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


# ── Guard errors ─────────────────────────────────────────────────────────


class GovernanceError(Exception):
    """Base class for guard refusals. ``to_dict`` is the audit/API payload."""

    code = "GOVERNANCE_ERROR"

    def to_dict(self) -> dict:
        return {}


class PermissionEscalationError(GovernanceError):
    """A principal tried to grant permissions it does not itself hold."""

    code = "ERR_PERMISSION_ESCALATION"

    def __init__(self, principal: str, escalated: list[str]) -> None:
        self.principal = principal
        self.escalated = list(escalated)
        super().__init__(
            f"Permission escalation denied for {principal}: "
            f"cannot grant {', '.join(self.escalated)}"
        )

    def to_dict(self) -> dict:
        return {"principal": self.principal, "escalated": self.escalated}


class RateLimitError(GovernanceError):
    """Too many mutations for one (principal, operation) pair in the window."""

    code = "ERR_RATE_LIMITED"

    def __init__(self, operation: str, window_seconds: float, max_calls: int) -> None:
        self.operation = operation
        self.window_seconds = window_seconds
        self.max_calls = max_calls
        super().__init__(
            f"Rate limit exceeded for '{operation}': "
            f"max {max_calls} per {window_seconds:g}s, retry later"
        )

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "window_seconds": self.window_seconds,
            "max_calls": self.max_calls,
            "retry_after": self.window_seconds,
        }


class TemplateSyncTransitionError(GovernanceError):
    """Requested sync status change is not an edge of the transition table."""

    code = "ERR_SYNC_TRANSITION"

    def __init__(self, from_status, to_status) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid sync transition: {_status_value(from_status)} → {_status_value(to_status)}"
        )

    def to_dict(self) -> dict:
        return {"from": _status_value(self.from_status), "to": _status_value(self.to_status)}


class TemplateSyncLockError(GovernanceError):
    """A sync lock is already held for the template."""

    code = "ERR_SYNC_LOCKED"

    def __init__(self, template_id) -> None:
        self.template_id = str(template_id)
        super().__init__(f'Sync lock already held for template "{self.template_id}"')

    def to_dict(self) -> dict:
        return {"template_id": self.template_id}


class TemplateContentValidationError(GovernanceError):
    """Template content failed validation. Carries every violation found."""

    code = "ERR_TEMPLATE_CONTENT"

    def __init__(self, violations: list[str]) -> None:
        self.violations = list(violations)
        super().__init__(f"Template content validation failed: {'; '.join(self.violations)}")

    def to_dict(self) -> dict:
        return {"violations": self.violations}


class InsufficientApprovalsError(GovernanceError):
    """Fewer distinct approvers than the sync quorum requires."""

    code = "ERR_INSUFFICIENT_APPROVALS"

    def __init__(self, actual_count: int, required_count: int) -> None:
        self.actual_count = actual_count
        self.required_count = required_count
        super().__init__(f"Insufficient approvals: {actual_count} of {required_count} required")

    def to_dict(self) -> dict:
        return {"actual": self.actual_count, "required": self.required_count}


class FeatureFlagViolationError(GovernanceError):
    """An operation gated by a feature flag was attempted while it is off."""

    code = "ERR_FEATURE_DISABLED"

    def __init__(self, flag_name: str) -> None:
        self.flag_name = flag_name
        super().__init__(f"Feature '{flag_name}' is disabled")

    def to_dict(self) -> dict:
        return {"feature": self.flag_name}


def _status_value(status) -> str:
    return getattr(status, "value", status)
