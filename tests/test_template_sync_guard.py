"""
Template sync guard tests

Covers:
  - The full sync transition table (every allowed and every rejected edge)
  - Lock acquire/release, idempotent release, context-managed release
  - Content validation: domain allow-list, HTTPS repo, injection patterns
  - Approval quorum with distinct, case-insensitive approvers
"""

import pytest

from governance_engine.core.exceptions import (
    InsufficientApprovalsError,
    TemplateContentValidationError,
    TemplateSyncLockError,
    TemplateSyncTransitionError,
)
from governance_engine.core.types import SyncApproval, SyncStatus
from governance_engine.services.guard_state import GuardState
from governance_engine.services.template_sync_guard import (
    SYNC_TRANSITIONS,
    TemplateSyncGuard,
    assert_approved,
    assert_valid_transition,
    validate_content,
)

ALLOWED = {
    (SyncStatus.IDLE, SyncStatus.SYNCING),
    (SyncStatus.SYNCING, SyncStatus.SUCCESS),
    (SyncStatus.SYNCING, SyncStatus.FAILED),
    (SyncStatus.SUCCESS, SyncStatus.SYNCING),
    (SyncStatus.SUCCESS, SyncStatus.IDLE),
    (SyncStatus.FAILED, SyncStatus.SYNCING),
    (SyncStatus.FAILED, SyncStatus.IDLE),
}

ALL_EDGES = [(a, b) for a in SyncStatus for b in SyncStatus]

CLEAN = {
    "title": "Commercial Project Site",
    "description": "Standard document libraries for commercial work",
    "template_site_url": "https://contoso.sharepoint.com/sites/tpl",
    "git_repo_url": "https://github.com/contoso/site-templates",
}


@pytest.fixture()
def guard():
    return TemplateSyncGuard(GuardState())


def _approval(email):
    return {"approver_email": email, "approved_at": "2026-01-05T10:00:00Z", "role": "Admin"}


# ═══════════════════════════════════════════════════════════════════════════════
# A — Transitions
# ═══════════════════════════════════════════════════════════════════════════════


class TestTransitions:

    def test_table_matches_allowed_edges(self):
        table_edges = {(a, b) for a, targets in SYNC_TRANSITIONS.items() for b in targets}
        assert table_edges == ALLOWED

    @pytest.mark.parametrize("from_status,to_status", sorted(ALLOWED))
    def test_allowed_edges_pass(self, from_status, to_status):
        assert_valid_transition(from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status", [e for e in ALL_EDGES if e not in ALLOWED],
    )
    def test_other_edges_raise(self, from_status, to_status):
        with pytest.raises(TemplateSyncTransitionError) as exc:
            assert_valid_transition(from_status, to_status)
        assert exc.value.to_dict() == {"from": from_status.value, "to": to_status.value}

    def test_string_statuses_accepted(self):
        assert_valid_transition("Idle", "Syncing")
        with pytest.raises(TemplateSyncTransitionError):
            assert_valid_transition("Idle", "Success")

    def test_unknown_status_is_rejected(self):
        with pytest.raises(TemplateSyncTransitionError):
            assert_valid_transition("Paused", "Syncing")


# ═══════════════════════════════════════════════════════════════════════════════
# B — Locks
# ═══════════════════════════════════════════════════════════════════════════════


class TestLocks:

    def test_second_acquire_fails(self, guard):
        guard.acquire_lock("tpl-1")
        with pytest.raises(TemplateSyncLockError) as exc:
            guard.acquire_lock("tpl-1")
        assert exc.value.template_id == "tpl-1"

    def test_release_then_reacquire(self, guard):
        guard.acquire_lock("tpl-1")
        guard.release_lock("tpl-1")
        guard.acquire_lock("tpl-1")
        assert guard.is_locked("tpl-1")

    def test_release_is_idempotent(self, guard):
        guard.release_lock("never-locked")
        guard.acquire_lock("tpl-1")
        guard.release_lock("tpl-1")
        guard.release_lock("tpl-1")
        assert not guard.is_locked("tpl-1")

    def test_locks_are_per_template(self, guard):
        guard.acquire_lock("tpl-1")
        guard.acquire_lock("tpl-2")
        assert guard.is_locked("tpl-1") and guard.is_locked("tpl-2")

    def test_int_and_str_ids_share_a_lock(self, guard):
        guard.acquire_lock(7)
        with pytest.raises(TemplateSyncLockError):
            guard.acquire_lock("7")

    def test_locked_context_releases_on_error(self, guard):
        with pytest.raises(RuntimeError):
            with guard.locked("tpl-1"):
                assert guard.is_locked("tpl-1")
                raise RuntimeError("executor blew up")
        assert not guard.is_locked("tpl-1")

    def test_guards_sharing_state_share_locks(self):
        state = GuardState()
        TemplateSyncGuard(state).acquire_lock("tpl-1")
        with pytest.raises(TemplateSyncLockError):
            TemplateSyncGuard(state).acquire_lock("tpl-1")


# ═══════════════════════════════════════════════════════════════════════════════
# C — Content validation
# ═══════════════════════════════════════════════════════════════════════════════


class TestContentValidation:

    def test_clean_template_has_no_violations(self):
        assert validate_content(CLEAN) == []

    def test_foreign_domain_is_rejected_with_pattern(self):
        violations = validate_content({**CLEAN, "template_site_url": "https://evil.com/x"})
        assert len(violations) == 1
        assert "sharepoint" in violations[0]
        assert "https://evil.com/x" in violations[0]

    def test_lookalike_domain_is_rejected(self):
        violations = validate_content({**CLEAN, "template_site_url": "https://contoso.sharepoint.com.evil.io/"})
        assert len(violations) == 1

    def test_plain_http_repo_is_rejected(self):
        violations = validate_content({**CLEAN, "git_repo_url": "http://github.com/contoso/x"})
        assert violations == ['GitRepoUrl must use HTTPS. Got: "http://github.com/contoso/x"']

    @pytest.mark.parametrize("payload", [
        "<script>alert(1)</script>",
        "<SCRIPT src=x>",
        "click javascript:void(0)",
        '<img onerror = "x">',
        "eval (atob('...'))",
        "width: expression(alert(1))",
        "VBScript:msgbox",
        "data: text/html;base64,xyz",
    ])
    def test_injection_in_description_is_rejected(self, payload):
        violations = validate_content({**CLEAN, "description": payload})
        assert len(violations) == 1
        assert violations[0].startswith(
            "Description contains potentially dangerous content matching pattern:",
        )

    def test_every_violation_is_reported(self):
        violations = validate_content({
            "title": "<script>x</script>",
            "description": "javascript:x",
            "template_site_url": "https://evil.com/x",
            "git_repo_url": "ftp://x",
        })
        assert len(violations) == 4
        assert [v.split(" ")[0] for v in violations] == ["TemplateSiteUrl", "GitRepoUrl", "Description", "Title"]

    def test_empty_fields_are_not_checked(self):
        assert validate_content({"title": "Only a title"}) == []

    def test_guard_raises_with_all_violations(self, guard):
        with pytest.raises(TemplateContentValidationError) as exc:
            guard.assert_valid_content({**CLEAN, "template_site_url": "https://evil.com/x",
                                        "title": "<script>"})
        assert len(exc.value.violations) == 2

    def test_custom_site_pattern(self):
        guard = TemplateSyncGuard(GuardState(), site_pattern=r"^https://intranet\.example\.org/")
        assert guard.validate_content({"template_site_url": "https://intranet.example.org/t"}) == []
        assert len(guard.validate_content(CLEAN)) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# D — Approval quorum
# ═══════════════════════════════════════════════════════════════════════════════


class TestApprovals:

    def test_two_distinct_approvers_pass(self, guard):
        guard.assert_approved([_approval("a@example.com"), _approval("b@example.com")])

    def test_one_approver_fails(self, guard):
        with pytest.raises(InsufficientApprovalsError) as exc:
            guard.assert_approved([_approval("a@example.com")])
        assert exc.value.actual_count == 1
        assert exc.value.required_count == 2

    def test_same_approver_twice_counts_once(self, guard):
        with pytest.raises(InsufficientApprovalsError) as exc:
            guard.assert_approved([_approval("a@example.com"), _approval("A@Example.com")])
        assert exc.value.actual_count == 1

    def test_empty_list_fails(self):
        with pytest.raises(InsufficientApprovalsError):
            assert_approved([])

    def test_custom_required_count(self, guard):
        approvals = [SyncApproval("a@example.com", "t"), SyncApproval("b@example.com", "t")]
        with pytest.raises(InsufficientApprovalsError):
            guard.assert_approved(approvals, required_count=3)
        guard.assert_approved(approvals[:1], required_count=1)

    def test_zero_required_is_honoured(self, guard):
        guard.assert_approved([], required_count=0)
