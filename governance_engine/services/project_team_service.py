"""
Project Team Service

Per-project assignments the permission resolver layers over the security
group default: an optional template override and granular flag additions.

Removal is a soft delete (``is_active=False``) so the assignment history
stays readable. One active assignment per (user, project).
"""

import logging

from sqlalchemy import func

from governance_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from governance_engine.models import db
from governance_engine.models.audit import write_audit
from governance_engine.models.permission import PermissionTemplate, ProjectTeamAssignment
from governance_engine.services.escalation_guard import EscalationGuard
from governance_engine.services.permission_template_service import granted_by
from governance_engine.services.role_config_service import guard_grant
from governance_engine.services.tool_permissions import TOOLS_BY_KEY

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("assigned_role", "template_override_id", "granular_flag_overrides")


def list_project_team_assignments(project_code):
    return (
        ProjectTeamAssignment.query
        .filter_by(project_code=project_code, is_active=True)
        .order_by(ProjectTeamAssignment.id)
        .all()
    )


def list_all_project_team_assignments():
    return (
        ProjectTeamAssignment.query
        .filter_by(is_active=True)
        .order_by(ProjectTeamAssignment.project_code, ProjectTeamAssignment.id)
        .all()
    )


def list_assignments_for(email):
    return (
        ProjectTeamAssignment.query
        .filter(
            func.lower(ProjectTeamAssignment.user_email) == (email or "").strip().lower(),
            ProjectTeamAssignment.is_active.is_(True),
        )
        .order_by(ProjectTeamAssignment.project_code)
        .all()
    )


def get_project_team_assignment(assignment_id):
    assignment = db.session.get(ProjectTeamAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="ProjectTeamAssignment", resource_id=assignment_id)
    return assignment


# ── Validation ───────────────────────────────────────────────────────────


def _override_template(template_id):
    if template_id is None:
        return None
    template = db.session.get(PermissionTemplate, template_id)
    if template is None or not template.is_active:
        raise ValidationError(
            f"template_override_id {template_id} is not an active template",
            {"template_override_id": template_id},
        )
    return template


def clean_granular_overrides(value) -> list[dict]:
    """``[{tool_key, flags}]`` with every tool and flag known to the catalogue."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("granular_flag_overrides must be a list", {"granular_flag_overrides": "list required"})
    problems = {}
    cleaned = []
    for index, entry in enumerate(value):
        where = f"granular_flag_overrides[{index}]"
        definition = TOOLS_BY_KEY.get(entry.get("tool_key")) if isinstance(entry, dict) else None
        if definition is None:
            problems[where] = "known tool_key required"
            continue
        flags = entry.get("flags") or []
        if not isinstance(flags, list) or any(definition.flag(f) is None for f in flags):
            problems[where] = f"unknown flags for '{definition.tool_key}'"
            continue
        cleaned.append({"tool_key": definition.tool_key, "flags": list(flags)})
    if problems:
        raise ValidationError("Invalid granular_flag_overrides", problems)
    return cleaned


def _requested_permissions(template, overrides) -> list[str]:
    requested = set(granted_by(template.tool_access)) if template is not None else set()
    for override in overrides:
        definition = TOOLS_BY_KEY.get(override.get("tool_key")) if isinstance(override, dict) else None
        if definition is None:
            continue
        for flag_key in override.get("flags") or []:
            flag = definition.flag(flag_key)
            if flag is not None:
                requested.update(flag.permissions)
    return sorted(requested)


# ── Mutations ────────────────────────────────────────────────────────────


def create_project_team_assignment(data: dict, *, actor: str, guard: EscalationGuard | None = None):
    guard = guard or EscalationGuard.from_app()
    missing = [k for k in ("user_email", "project_code", "assigned_role") if not data.get(k)]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}", {k: "required" for k in missing})
    email = data["user_email"].strip().lower()
    template = _override_template(data.get("template_override_id"))
    overrides = clean_granular_overrides(data.get("granular_flag_overrides"))

    guard.check_rate_limit(actor, "project_team_assignment.create")
    guard_grant(
        guard, actor, _requested_permissions(template, overrides),
        entity_id="new", entity_type="project_team_assignment",
    )

    existing = (
        ProjectTeamAssignment.query
        .filter(
            func.lower(ProjectTeamAssignment.user_email) == email,
            ProjectTeamAssignment.project_code == data["project_code"],
            ProjectTeamAssignment.is_active.is_(True),
        )
        .first()
    )
    if existing is not None:
        raise ConflictError(
            resource="ProjectTeamAssignment", field="user_email",
            value=f"{email} on {data['project_code']}",
        )

    assignment = ProjectTeamAssignment(
        user_email=email,
        project_code=data["project_code"],
        assigned_role=data["assigned_role"],
        template_override_id=template.id if template else None,
        granular_flag_overrides=overrides or None,
        is_active=True,
        assigned_by=actor,
    )
    db.session.add(assignment)
    db.session.flush()
    write_audit(
        entity_type="project_team_assignment",
        entity_id=assignment.id,
        action="project_team_assignment.created",
        actor=actor,
        after=assignment.to_dict(),
    )
    db.session.commit()
    logger.info(
        "Assigned %s to %s as %s (id=%d) by %s",
        email, assignment.project_code, assignment.assigned_role, assignment.id, actor,
    )
    return assignment


def update_project_team_assignment(
    assignment_id, data: dict, *, actor: str, guard: EscalationGuard | None = None,
):
    """Role, template override and granular flags only; user and project are fixed."""
    guard = guard or EscalationGuard.from_app()
    assignment = get_project_team_assignment(assignment_id)
    if not assignment.is_active:
        raise ValidationError(f"Project team assignment {assignment_id} has been removed")

    changes = {k: data[k] for k in MUTABLE_FIELDS if k in data}
    if "assigned_role" in changes and not changes["assigned_role"]:
        raise ValidationError("assigned_role is required", {"assigned_role": "required"})
    if "template_override_id" in changes:
        template = _override_template(changes["template_override_id"])
    elif assignment.template_override_id:
        template = db.session.get(PermissionTemplate, assignment.template_override_id)
    else:
        template = None
    if "granular_flag_overrides" in changes:
        changes["granular_flag_overrides"] = clean_granular_overrides(changes["granular_flag_overrides"]) or None
    overrides = changes.get("granular_flag_overrides", assignment.granular_flag_overrides) or []

    guard.check_rate_limit(actor, "project_team_assignment.update")
    if "template_override_id" in changes or "granular_flag_overrides" in changes:
        guard_grant(
            guard, actor, _requested_permissions(template, overrides),
            entity_id=assignment.id, entity_type="project_team_assignment",
        )

    before = assignment.to_dict()
    for field, value in changes.items():
        setattr(assignment, field, value)
    db.session.flush()
    write_audit(
        entity_type="project_team_assignment",
        entity_id=assignment.id,
        action="project_team_assignment.updated",
        actor=actor,
        before=before,
        after=assignment.to_dict(),
    )
    db.session.commit()
    logger.info("Updated project team assignment %d by %s", assignment.id, actor)
    return assignment


def remove_project_team_assignment(assignment_id, *, actor: str, guard: EscalationGuard | None = None):
    guard = guard or EscalationGuard.from_app()
    assignment = get_project_team_assignment(assignment_id)

    guard.check_rate_limit(actor, "project_team_assignment.remove")
    before = assignment.to_dict()
    assignment.is_active = False
    db.session.flush()
    write_audit(
        entity_type="project_team_assignment",
        entity_id=assignment.id,
        action="project_team_assignment.removed",
        actor=actor,
        before=before,
        after=assignment.to_dict(),
    )
    db.session.commit()
    logger.info("Removed project team assignment %d by %s", assignment.id, actor)
    return assignment
