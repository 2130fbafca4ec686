"""
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail written by the service layer
      after a guard passes (or records the guard's refusal).

The resolvers and guards never write here; their decisions and error
payloads are what callers put in ``diff``.
"""

import json
from datetime import UTC, datetime

from governance_engine.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "role_configuration",
    "permission_template",
    "security_group_mapping",
    "project_team_assignment",
    "workflow_step",
    "conditional_assignment",
    "workflow_step_override",
    "feature_flag",
    "site_template",
}

AUDIT_ACTIONS = {
    "role_configuration.created",
    "role_configuration.updated",
    "role_configuration.deleted",
    "role_configuration.escalation_denied",
    "permission_template.created",
    "permission_template.updated",
    "permission_template.deleted",
    "permission_template.escalation_denied",
    "permission_template.promoted",
    "security_group_mapping.created",
    "security_group_mapping.updated",
    "security_group_mapping.escalation_denied",
    "project_team_assignment.created",
    "project_team_assignment.updated",
    "project_team_assignment.removed",
    "project_team_assignment.escalation_denied",
    "workflow_step.updated",
    "conditional_assignment.created",
    "conditional_assignment.updated",
    "conditional_assignment.removed",
    "workflow_step_override.set",
    "workflow_step_override.removed",
    "feature_flag.toggled",
    "site_template.created",
    "site_template.updated",
    "site_template.sync_succeeded",
    "site_template.sync_failed",
    "site_template.sync_denied",
}


class AuditLog(db.Model):
    """
    One row per action. ``diff_json`` carries a ``{before, after}`` snapshot
    for mutations, or the guard error payload for denials.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(40), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(200), nullable=False, default="system")
    correlation_id = db.Column(db.String(64), index=True)
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "correlation_id": self.correlation_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    before: dict | None = None,
    after: dict | None = None,
    details: dict | None = None,
    correlation_id: str | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.

    ``correlation_id`` defaults to the current request id when called
    inside a request. Raises ValueError for an entity type or action
    outside the registry above, or an action filed under another entity.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")
    if action not in AUDIT_ACTIONS or not action.startswith(f"{entity_type}."):
        raise ValueError(f"Unknown audit action for {entity_type}: {action}")

    if correlation_id is None:
        from flask import g, has_request_context
        if has_request_context():
            correlation_id = getattr(g, "request_id", None)

    diff = {}
    if before is not None:
        diff["before"] = before
    if after is not None:
        diff["after"] = after
    if details:
        diff.update(details)

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        correlation_id=correlation_id,
        diff_json=json.dumps(diff, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
