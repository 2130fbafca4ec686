"""
Site Template Service

CRUD over the shared template registry plus the guarded sync operation.

sync_template(template_id, approvals, actor):
    1. SiteTemplateManagement flag must be on      → FeatureFlagViolationError
    2. per-principal rate limit                    → RateLimitError
    3. content validation                          → TemplateContentValidationError
    4. sync lock                                   → TemplateSyncLockError
    5. current status → Syncing                    → TemplateSyncTransitionError
    6. approval quorum                             → InsufficientApprovalsError
    7. executor publishes the template (returns a PR URL)
    8. Syncing → Success | Failed, persisted with LastSynced
    9. lock released on every exit path

Refusals at steps 1-6 are audited as ``site_template.sync_denied`` and
re-raised. An executor failure is not an error for the caller: the template
comes back with ``sync_status == "Failed"``.
"""

import logging
from datetime import datetime, timezone

from governance_engine.core.exceptions import (
    GovernanceError,
    InsufficientApprovalsError,
    NotFoundError,
    ValidationError,
)
from governance_engine.core.types import SyncStatus
from governance_engine.models import db
from governance_engine.models.audit import write_audit
from governance_engine.models.site_template import SiteTemplate
from governance_engine.services.escalation_guard import EscalationGuard
from governance_engine.services.feature_flag_service import (
    SITE_TEMPLATE_MANAGEMENT,
    require_feature,
)
from governance_engine.services.template_sync_guard import TemplateSyncGuard, distinct_approvers

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "title", "description", "template_site_url", "git_repo_url", "project_type_id", "is_active",
)


def default_sync_executor(template: SiteTemplate) -> str:
    """Stand-in publisher: reports the pull request the sync would open."""
    repo = (template.git_repo_url or "").rstrip("/")
    return f"{repo}/pull/template-{template.id}-{int(datetime.now(timezone.utc).timestamp())}"


# ═══════════════════════════════════════════════════════════════
# CRUD
# ═══════════════════════════════════════════════════════════════

def list_site_templates(include_inactive=False):
    q = SiteTemplate.query
    if not include_inactive:
        q = q.filter(SiteTemplate.is_active.is_(True))
    return q.order_by(SiteTemplate.title).all()


def get_site_template(template_id):
    template = db.session.get(SiteTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="SiteTemplate", resource_id=template_id)
    return template


def create_site_template(data, *, actor, guard: TemplateSyncGuard | None = None):
    guard = guard or TemplateSyncGuard.from_app()
    fields = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    if not (fields.get("title") or "").strip():
        raise ValidationError("title is required", {"title": "required"})

    guard.assert_valid_content(fields)

    template = SiteTemplate(**fields)
    template.sync_status = SyncStatus.IDLE.value
    template.updated_by = actor
    db.session.add(template)
    db.session.flush()
    write_audit(
        entity_type="site_template",
        entity_id=template.id,
        action="site_template.created",
        actor=actor,
        after=template.to_dict(),
    )
    db.session.commit()
    logger.info("Site template '%s' (id=%d) created by %s", template.title, template.id, actor)
    return template


def update_site_template(template_id, data, *, actor, guard: TemplateSyncGuard | None = None):
    """Sync bookkeeping fields (status, LastSynced, PR url) are not editable here."""
    guard = guard or TemplateSyncGuard.from_app()
    template = get_site_template(template_id)
    changes = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("title cannot be empty", {"title": "required"})

    merged = {**template.content_fields(), **{k: v for k, v in changes.items() if k in template.content_fields()}}
    guard.assert_valid_content(merged)

    before = template.to_dict()
    for field, value in changes.items():
        setattr(template, field, value)
    template.updated_by = actor
    db.session.flush()
    write_audit(
        entity_type="site_template",
        entity_id=template.id,
        action="site_template.updated",
        actor=actor,
        before=before,
        after=template.to_dict(),
    )
    db.session.commit()
    return template


# ═══════════════════════════════════════════════════════════════
# Sync
# ═══════════════════════════════════════════════════════════════

def _deny(template, actor, exc):
    write_audit(
        entity_type="site_template",
        entity_id=template.id,
        action="site_template.sync_denied",
        actor=actor,
        details={"error": exc.code, **exc.to_dict()},
    )
    db.session.commit()


def _finish(template, status, *, actor, pr_url=None, error=None):
    before = template.to_dict()
    TemplateSyncGuard.assert_valid_transition(template.status, status)
    template.sync_status = status.value
    template.updated_by = actor
    if status is SyncStatus.SUCCESS:
        template.last_synced = datetime.now(timezone.utc)
        template.last_sync_pr_url = pr_url
    db.session.flush()
    write_audit(
        entity_type="site_template",
        entity_id=template.id,
        action="site_template.sync_succeeded" if status is SyncStatus.SUCCESS else "site_template.sync_failed",
        actor=actor,
        before=before,
        after=template.to_dict(),
        details={"error": error} if error else None,
    )
    db.session.commit()


def sync_template(
    template_id,
    approvals,
    *,
    actor,
    executor=None,
    guard: TemplateSyncGuard | None = None,
    escalation: EscalationGuard | None = None,
):
    """Publish a template to the shared registry; see module docstring for the sequence."""
    guard = guard or TemplateSyncGuard.from_app()
    escalation = escalation or EscalationGuard.from_app()
    executor = executor or default_sync_executor
    template = get_site_template(template_id)

    try:
        require_feature(SITE_TEMPLATE_MANAGEMENT)
        escalation.check_rate_limit(actor, "site_template.sync")
        guard.assert_valid_content(template.content_fields())
        guard.acquire_lock(template.id)
    except GovernanceError as exc:
        _deny(template, actor, exc)
        raise

    try:
        try:
            guard.assert_valid_transition(template.status, SyncStatus.SYNCING)
        except GovernanceError as exc:
            _deny(template, actor, exc)
            raise
        template.sync_status = SyncStatus.SYNCING.value
        db.session.commit()

        try:
            guard.assert_approved(approvals)
        except InsufficientApprovalsError as exc:
            _deny(template, actor, exc)
            _finish(template, SyncStatus.FAILED, actor=actor, error=str(exc))
            raise

        logger.info(
            "Syncing template %d for %s with approvers %s",
            template.id, actor, sorted(distinct_approvers(approvals)),
        )
        try:
            pr_url = executor(template)
        except Exception as exc:
            logger.exception("Template %d sync failed", template.id)
            _finish(template, SyncStatus.FAILED, actor=actor, error=str(exc))
        else:
            _finish(template, SyncStatus.SUCCESS, actor=actor, pr_url=pr_url)
    finally:
        guard.release_lock(template.id)

    return template
