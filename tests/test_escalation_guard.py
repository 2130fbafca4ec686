"""
Escalation guard tests

Covers:
  - detect_escalation ordering/dedup and the held-permission round trip
  - assert_not_self_escalation error payload
  - Sliding-window rate limiter with an injected clock
  - Key isolation per principal and per operation, expired-key sweeping
  - Structured principal/operation fields on rejection logs
"""

import logging
import threading

import pytest

from governance_engine.core.exceptions import PermissionEscalationError, RateLimitError
from governance_engine.core.types import PermissionSource, ResolvedPermissions
from governance_engine.services.escalation_guard import EscalationGuard, rate_limit_key
from governance_engine.services.guard_state import GuardState


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _principal(*perms, email="px@example.com"):
    return ResolvedPermissions(
        user_id=email, project_code=None, template_id=1, template_name="T",
        source=PermissionSource.SECURITY_GROUP_DEFAULT, permissions=frozenset(perms),
    )


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def guard(clock):
    return EscalationGuard(GuardState(clock=clock), max_calls=10, window_seconds=60)


# ═══════════════════════════════════════════════════════════════════════════════
# A — Escalation
# ═══════════════════════════════════════════════════════════════════════════════


class TestEscalation:

    def test_lead_delete_is_escalation(self, guard):
        principal = _principal("lead:read")
        with pytest.raises(PermissionEscalationError) as exc:
            guard.assert_not_self_escalation(principal, ["lead:read", "lead:delete"])
        assert exc.value.escalated == ["lead:delete"]
        assert exc.value.principal == "px@example.com"
        assert exc.value.to_dict() == {"principal": "px@example.com", "escalated": ["lead:delete"]}

    def test_held_permissions_never_escalate(self, guard):
        held = ["lead:read", "pmp:edit", "gonogo:submit"]
        principal = _principal(*held)
        assert EscalationGuard.detect_escalation(principal, held) == []
        guard.assert_not_self_escalation(principal, held)

    def test_subset_of_held_is_allowed(self, guard):
        guard.assert_not_self_escalation(_principal("a", "b", "c"), ["b"])

    def test_empty_request_is_allowed(self, guard):
        guard.assert_not_self_escalation(_principal(), [])

    def test_escalated_list_keeps_request_order_without_duplicates(self):
        principal = _principal("a")
        result = EscalationGuard.detect_escalation(principal, ["z", "a", "y", "z", "x", "y"])
        assert result == ["z", "y", "x"]


# ═══════════════════════════════════════════════════════════════════════════════
# B — Rate limiter
# ═══════════════════════════════════════════════════════════════════════════════


class TestRateLimit:

    def test_eleventh_call_in_window_is_rejected(self, guard):
        for _ in range(10):
            guard.check_rate_limit("px@example.com", "role.create")
        with pytest.raises(RateLimitError) as exc:
            guard.check_rate_limit("px@example.com", "role.create")
        payload = exc.value.to_dict()
        assert payload["max_calls"] == 10
        assert payload["retry_after"] == 60

    def test_window_slides(self, guard, clock):
        for _ in range(10):
            guard.check_rate_limit("px@example.com", "role.create")
        clock.advance(60.5)
        guard.check_rate_limit("px@example.com", "role.create")

    def test_partial_expiry_frees_partial_capacity(self, guard, clock):
        for _ in range(5):
            guard.check_rate_limit("px@example.com", "role.create")
        clock.advance(30)
        for _ in range(5):
            guard.check_rate_limit("px@example.com", "role.create")
        clock.advance(31)
        assert guard.remaining("px@example.com", "role.create") == 5

    def test_rejected_attempt_is_not_recorded(self, guard, clock):
        for _ in range(10):
            guard.check_rate_limit("px@example.com", "role.create")
        for _ in range(3):
            with pytest.raises(RateLimitError):
                guard.check_rate_limit("px@example.com", "role.create")
        clock.advance(61)
        assert guard.remaining("px@example.com", "role.create") == 10

    def test_keys_are_per_operation_and_principal(self, guard):
        for _ in range(10):
            guard.check_rate_limit("px@example.com", "role.create")
        guard.check_rate_limit("px@example.com", "role.update")
        guard.check_rate_limit("other@example.com", "role.create")

    def test_principal_key_is_case_insensitive(self, guard):
        assert rate_limit_key("PX@Example.com", "op") == rate_limit_key("px@example.com", "op")
        for _ in range(10):
            guard.check_rate_limit("PX@example.com", "role.create")
        with pytest.raises(RateLimitError):
            guard.check_rate_limit("px@example.com", "role.create")

    def test_concurrent_callers_never_exceed_ceiling(self, clock):
        guard = EscalationGuard(GuardState(clock=clock), max_calls=10, window_seconds=60)
        accepted = []
        lock = threading.Lock()

        def attempt():
            try:
                guard.check_rate_limit("px@example.com", "role.create")
            except RateLimitError:
                return
            with lock:
                accepted.append(1)

        threads = [threading.Thread(target=attempt) for _ in range(40)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(accepted) == 10

    def test_from_app_reads_config(self, app):
        app.config["GOVERNANCE_RATE_LIMIT_MAX_CALLS"] = 3
        try:
            assert EscalationGuard.from_app().max_calls == 3
        finally:
            app.config["GOVERNANCE_RATE_LIMIT_MAX_CALLS"] = 10

    def test_expired_keys_are_dropped(self, guard, clock):
        for n in range(50):
            guard.check_rate_limit(f"user{n}@example.com", "role.create")
        assert len(guard.state.rate_windows) == 50
        clock.advance(61)

        guard.check_rate_limit("px@example.com", "role.update")
        assert list(guard.state.rate_windows) == [rate_limit_key("px@example.com", "role.update")]

    def test_live_keys_survive_a_sweep(self, guard, clock):
        guard.check_rate_limit("old@example.com", "role.create")
        clock.advance(30)
        guard.check_rate_limit("new@example.com", "role.create")
        clock.advance(31)

        guard.check_rate_limit("px@example.com", "role.create")
        assert rate_limit_key("old@example.com", "role.create") not in guard.state.rate_windows
        assert rate_limit_key("new@example.com", "role.create") in guard.state.rate_windows
        assert guard.remaining("new@example.com", "role.create") == 9


# ═══════════════════════════════════════════════════════════════════════════════
# C — Rejection logging
# ═══════════════════════════════════════════════════════════════════════════════


class TestRejectionLogging:

    def test_escalation_denial_carries_principal_and_operation(self, guard, caplog):
        with caplog.at_level(logging.WARNING, logger="governance_engine.services.escalation_guard"):
            with pytest.raises(PermissionEscalationError):
                guard.assert_not_self_escalation(_principal("lead:read"), ["lead:delete"])
        record = caplog.records[-1]
        assert record.principal == "px@example.com"
        assert record.operation == "escalation_check"

    def test_rate_limit_hit_carries_principal_and_operation(self, caplog, clock):
        guard = EscalationGuard(GuardState(clock=clock), max_calls=1, window_seconds=60)
        guard.check_rate_limit("PX@example.com", "role.delete")
        with caplog.at_level(logging.WARNING, logger="governance_engine.services.escalation_guard"):
            with pytest.raises(RateLimitError):
                guard.check_rate_limit("PX@example.com", "role.delete")
        record = caplog.records[-1]
        assert record.principal == "px@example.com"
        assert record.operation == "role.delete"
