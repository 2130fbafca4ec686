"""
Escalation Guard

Two independent checks run before any role/permission mutation:

  detect_escalation / assert_not_self_escalation
      A principal may only grant permissions it already holds.

  check_rate_limit
      At most ``max_calls`` mutations per ``principal::operation`` key in a
      sliding ``window_seconds`` window. The check prunes, compares, then
      records — a rejected attempt is never recorded.

Usage:
    guard = EscalationGuard.from_app()
    guard.check_rate_limit(actor, "role.create")
    guard.assert_not_self_escalation(resolve_permissions(actor), requested)
"""

from __future__ import annotations

import logging

from flask import current_app

from governance_engine.core.exceptions import PermissionEscalationError, RateLimitError
from governance_engine.core.types import ResolvedPermissions
from governance_engine.services.guard_state import GuardState, get_guard_state

logger = logging.getLogger(__name__)

RATE_LIMIT_MAX_CALLS = 10
RATE_LIMIT_WINDOW_SECONDS = 60


def rate_limit_key(principal: str, operation: str) -> str:
    return f"{(principal or '').lower()}::{operation}"


class EscalationGuard:

    def __init__(
        self,
        state: GuardState,
        *,
        max_calls: int = RATE_LIMIT_MAX_CALLS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
    ):
        self.state = state
        self.max_calls = max_calls
        self.window_seconds = window_seconds

    @classmethod
    def from_app(cls) -> "EscalationGuard":
        cfg = current_app.config
        return cls(
            get_guard_state(),
            max_calls=cfg.get("GOVERNANCE_RATE_LIMIT_MAX_CALLS", RATE_LIMIT_MAX_CALLS),
            window_seconds=cfg.get("GOVERNANCE_RATE_LIMIT_WINDOW_SECONDS", RATE_LIMIT_WINDOW_SECONDS),
        )

    # ── Escalation ───────────────────────────────────────────────────────

    @staticmethod
    def detect_escalation(principal: ResolvedPermissions, requested) -> list[str]:
        """Requested permissions the principal does not hold, in request order, deduplicated."""
        escalated: list[str] = []
        for perm in requested or []:
            if perm not in principal.permissions and perm not in escalated:
                escalated.append(perm)
        return escalated

    def assert_not_self_escalation(self, principal: ResolvedPermissions, requested) -> None:
        escalated = self.detect_escalation(principal, requested)
        if escalated:
            logger.warning(
                "Escalation denied for %s: requested %s not held",
                principal.user_id, escalated,
                extra={"principal": principal.user_id, "operation": "escalation_check"},
            )
            raise PermissionEscalationError(principal.user_id, escalated)

    # ── Rate limiting ────────────────────────────────────────────────────

    def check_rate_limit(self, principal: str, operation: str) -> None:
        key = rate_limit_key(principal, operation)
        with self.state.mutex:
            now = self.state.clock()
            cutoff = now - self.window_seconds
            self.state.sweep_rate_windows(cutoff)
            window = [ts for ts in self.state.rate_windows.get(key, []) if ts > cutoff]
            if len(window) >= self.max_calls:
                self.state.rate_windows[key] = window
                logger.warning(
                    "Rate limit hit for %s (%d calls in %ss)", key, len(window), self.window_seconds,
                    extra={"principal": (principal or "").lower(), "operation": operation},
                )
                raise RateLimitError(operation, self.window_seconds, self.max_calls)
            window.append(now)
            self.state.rate_windows[key] = window

    def remaining(self, principal: str, operation: str) -> int:
        """Calls still allowed in the current window for this key."""
        key = rate_limit_key(principal, operation)
        with self.state.mutex:
            cutoff = self.state.clock() - self.window_seconds
            used = sum(1 for ts in self.state.rate_windows.get(key, []) if ts > cutoff)
        return max(self.max_calls - used, 0)
