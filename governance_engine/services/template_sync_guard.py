"""
Template Sync Guard

Protects publishing a template into the shared registry:

  Transition table (any other edge is rejected)
      Idle            → Syncing
      Syncing         → Success | Failed
      Success, Failed → Syncing | Idle

  Sync lock        one holder per template id until released
  Content check    allow-listed source domain, HTTPS repo, no script/markup
                   injection in Title/Description — every violation reported
  Approval quorum  at least N distinct (case-insensitive) approver emails

Expected call order for a sync: validate content → acquire lock →
Idle/Failed→Syncing → quorum → run → Syncing→Success/Failed → release lock
(always; see ``locked``).
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager

from flask import current_app

from governance_engine.core.exceptions import (
    InsufficientApprovalsError,
    TemplateContentValidationError,
    TemplateSyncLockError,
    TemplateSyncTransitionError,
)
from governance_engine.core.types import SyncApproval, SyncStatus
from governance_engine.services.guard_state import GuardState, get_guard_state

logger = logging.getLogger(__name__)

SYNC_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.IDLE: frozenset({SyncStatus.SYNCING}),
    SyncStatus.SYNCING: frozenset({SyncStatus.SUCCESS, SyncStatus.FAILED}),
    SyncStatus.SUCCESS: frozenset({SyncStatus.SYNCING, SyncStatus.IDLE}),
    SyncStatus.FAILED: frozenset({SyncStatus.SYNCING, SyncStatus.IDLE}),
}

SYNC_REQUIRED_APPROVALS = 2

TEMPLATE_SITE_PATTERN = r"^https://[\w-]+\.sharepoint\.com/"
HTTPS_PATTERN = re.compile(r"^https://", re.IGNORECASE)

SCRIPT_INJECTION_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"<script[\s>]", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
    re.compile(r"expression\s*\(", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"data:\s*text/html", re.IGNORECASE),
)


def assert_valid_transition(from_status, to_status) -> None:
    try:
        current = SyncStatus(from_status)
        target = SyncStatus(to_status)
    except ValueError:
        raise TemplateSyncTransitionError(from_status, to_status) from None
    if target not in SYNC_TRANSITIONS[current]:
        raise TemplateSyncTransitionError(current, target)


def _first_injection(text: str) -> re.Pattern | None:
    for pattern in SCRIPT_INJECTION_PATTERNS:
        if pattern.search(text):
            return pattern
    return None


def validate_content(fields: dict, *, site_pattern: str = TEMPLATE_SITE_PATTERN) -> list[str]:
    """All violations in the template's content fields; [] when clean.

    Absent/empty fields are not checked.
    """
    violations: list[str] = []

    site_url = fields.get("template_site_url")
    if site_url and not re.match(site_pattern, site_url):
        violations.append(
            f"TemplateSiteUrl must match the allowed source domain pattern {site_pattern}. "
            f'Got: "{site_url}"'
        )

    repo_url = fields.get("git_repo_url")
    if repo_url and not HTTPS_PATTERN.match(repo_url):
        violations.append(f'GitRepoUrl must use HTTPS. Got: "{repo_url}"')

    description = fields.get("description")
    if description:
        pattern = _first_injection(description)
        if pattern is not None:
            violations.append(
                "Description contains potentially dangerous content matching pattern: "
                f"{pattern.pattern}"
            )

    title = fields.get("title")
    if title:
        pattern = _first_injection(title)
        if pattern is not None:
            violations.append(
                f"Title contains potentially dangerous content matching pattern: {pattern.pattern}"
            )

    return violations


def distinct_approvers(approvals) -> set[str]:
    emails = set()
    for approval in approvals or []:
        if isinstance(approval, dict):
            approval = SyncApproval.from_dict(approval)
        email = (approval.approver_email or "").strip().lower()
        if email:
            emails.add(email)
    return emails


def assert_approved(approvals, required_count: int = SYNC_REQUIRED_APPROVALS) -> None:
    actual = len(distinct_approvers(approvals))
    if actual < required_count:
        raise InsufficientApprovalsError(actual, required_count)


class TemplateSyncGuard:
    """Lock table operations plus config-aware wrappers of the module checks."""

    def __init__(
        self,
        state: GuardState,
        *,
        site_pattern: str = TEMPLATE_SITE_PATTERN,
        required_approvals: int = SYNC_REQUIRED_APPROVALS,
    ):
        self.state = state
        self.site_pattern = site_pattern
        self.required_approvals = required_approvals

    @classmethod
    def from_app(cls) -> "TemplateSyncGuard":
        cfg = current_app.config
        return cls(
            get_guard_state(),
            site_pattern=cfg.get("GOVERNANCE_TEMPLATE_SITE_PATTERN", TEMPLATE_SITE_PATTERN),
            required_approvals=cfg.get("GOVERNANCE_SYNC_REQUIRED_APPROVALS", SYNC_REQUIRED_APPROVALS),
        )

    assert_valid_transition = staticmethod(assert_valid_transition)

    def validate_content(self, fields: dict) -> list[str]:
        return validate_content(fields, site_pattern=self.site_pattern)

    def assert_valid_content(self, fields: dict) -> None:
        violations = self.validate_content(fields)
        if violations:
            logger.warning(
                "Template content rejected: %s", violations,
                extra={"operation": "site_template.validate_content"},
            )
            raise TemplateContentValidationError(violations)

    def assert_approved(self, approvals, required_count: int | None = None) -> None:
        if required_count is None:
            required_count = self.required_approvals
        assert_approved(approvals, required_count)

    # ── Locks ────────────────────────────────────────────────────────────

    def acquire_lock(self, template_id) -> None:
        key = str(template_id)
        with self.state.mutex:
            if key in self.state.sync_locks:
                logger.warning(
                    "Sync lock for template %s already held", key,
                    extra={"operation": "site_template.sync"},
                )
                raise TemplateSyncLockError(key)
            self.state.sync_locks.add(key)

    def release_lock(self, template_id) -> None:
        with self.state.mutex:
            self.state.sync_locks.discard(str(template_id))

    def is_locked(self, template_id) -> bool:
        with self.state.mutex:
            return str(template_id) in self.state.sync_locks

    @contextmanager
    def locked(self, template_id):
        """Hold the sync lock for the block; released on every exit path."""
        self.acquire_lock(template_id)
        try:
            yield
        finally:
            self.release_lock(template_id)
