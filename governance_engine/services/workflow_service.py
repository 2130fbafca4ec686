"""
Workflow Service

Administration around the workflow step resolver: listing definitions,
pinning/unpinning per-project step assignees, editing steps and their
conditional assignment rules. Every mutation is rate limited and audited.
"""

import logging
from datetime import datetime, timezone

from governance_engine.core.exceptions import NotFoundError, ValidationError
from governance_engine.core.types import Assignee, ConditionField, StepAssignmentType, WorkflowKey
from governance_engine.models import db
from governance_engine.models.audit import write_audit
from governance_engine.models.workflow import (
    ConditionalAssignment,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowStepOverride,
)
from governance_engine.services.escalation_guard import EscalationGuard

logger = logging.getLogger(__name__)


def list_workflow_definitions(include_inactive=False):
    q = WorkflowDefinition.query
    if not include_inactive:
        q = q.filter(WorkflowDefinition.is_active.is_(True))
    return q.order_by(WorkflowDefinition.workflow_key).all()


def get_workflow_definition(workflow_key):
    definition = WorkflowDefinition.query.filter_by(workflow_key=str(workflow_key)).first()
    if definition is None:
        raise NotFoundError(resource="WorkflowDefinition", resource_id=str(workflow_key))
    return definition


def list_step_overrides(project_code, workflow_key=None):
    q = WorkflowStepOverride.query.filter_by(project_code=project_code)
    if workflow_key is not None:
        q = q.filter_by(workflow_key=str(workflow_key))
    return q.order_by(WorkflowStepOverride.id).all()


def set_step_override(
    *, project_code, workflow_key, step_id, assignee, reason=None, actor,
    guard: EscalationGuard | None = None,
):
    """Pin ``assignee`` on one step of one project. Replaces any existing pin."""
    guard = guard or EscalationGuard.from_app()
    try:
        workflow_key = WorkflowKey(workflow_key)
    except ValueError:
        raise ValidationError(f"Unknown workflow key '{workflow_key}'") from None
    if not project_code:
        raise ValidationError("project_code is required", {"project_code": "required"})

    step = (
        WorkflowStep.query
        .join(WorkflowDefinition)
        .filter(WorkflowStep.id == step_id, WorkflowDefinition.workflow_key == workflow_key.value)
        .first()
    )
    if step is None:
        raise NotFoundError(resource="WorkflowStep", resource_id=step_id)

    if not isinstance(assignee, Assignee):
        assignee = Assignee.from_dict(assignee or {})
    if assignee.is_placeholder:
        raise ValidationError("Override assignee needs a user id", {"assignee": "user_id required"})

    guard.check_rate_limit(actor, "workflow_step_override.set")

    override = WorkflowStepOverride.query.filter_by(project_code=project_code, step_id=step.id).first()
    before = override.to_dict() if override else None
    if override is None:
        override = WorkflowStepOverride(project_code=project_code, step_id=step.id)
        db.session.add(override)
    override.workflow_key = workflow_key.value
    override.override_assignee = assignee.to_dict()
    override.override_reason = reason
    override.overridden_by = actor
    db.session.flush()

    write_audit(
        entity_type="workflow_step_override",
        entity_id=override.id,
        action="workflow_step_override.set",
        actor=actor,
        before=before,
        after=override.to_dict(),
    )
    db.session.commit()
    logger.info(
        "Step override set: project=%s workflow=%s step=%d → %s (by %s)",
        project_code, workflow_key.value, step.id, assignee.email, actor,
    )
    return override


def remove_step_override(override_id, *, actor, guard: EscalationGuard | None = None):
    guard = guard or EscalationGuard.from_app()
    override = db.session.get(WorkflowStepOverride, override_id)
    if override is None:
        raise NotFoundError(resource="WorkflowStepOverride", resource_id=override_id)

    guard.check_rate_limit(actor, "workflow_step_override.remove")
    before = override.to_dict()
    db.session.delete(override)
    db.session.flush()
    write_audit(
        entity_type="workflow_step_override",
        entity_id=override_id,
        action="workflow_step_override.removed",
        actor=actor,
        before=before,
    )
    db.session.commit()
    logger.info("Step override %s removed by %s", override_id, actor)


# ═══════════════════════════════════════════════════════════════
# Step and conditional assignment editing
# ═══════════════════════════════════════════════════════════════

STEP_FIELDS = (
    "name", "assignment_type", "project_role", "default_assignee", "is_conditional",
    "is_skippable", "feature_flag_name", "action_label", "can_chair_meeting",
)


def _named_assignee(value, field="assignee"):
    assignee = value if isinstance(value, Assignee) else Assignee.from_dict(value if isinstance(value, dict) else {})
    if assignee is None or assignee.is_placeholder:
        raise ValidationError(f"{field} needs a user id or email", {field: "user_id or email required"})
    return assignee


def clean_conditions(value) -> list[dict]:
    """``[{field, value}]`` where every field is a lead condition field."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("conditions must be a list", {"conditions": "list required"})
    allowed = [f.value for f in ConditionField]
    cleaned = []
    for index, cond in enumerate(value):
        if not isinstance(cond, dict) or cond.get("field") not in allowed:
            raise ValidationError(
                f"conditions[{index}].field must be one of {', '.join(allowed)}",
                {f"conditions[{index}]": cond},
            )
        if not isinstance(cond.get("value"), str) or not cond["value"]:
            raise ValidationError(
                f"conditions[{index}].value must be a non-empty string",
                {f"conditions[{index}]": cond},
            )
        cleaned.append({"field": cond["field"], "value": cond["value"]})
    return cleaned


def _clean_priority(value):
    try:
        priority = int(value)
    except (TypeError, ValueError):
        raise ValidationError("priority must be an integer", {"priority": value}) from None
    if priority < 1:
        raise ValidationError("priority must be 1 or greater", {"priority": value})
    return priority


def _get_step(workflow_key, step_id):
    step = (
        WorkflowStep.query
        .join(WorkflowDefinition)
        .filter(WorkflowStep.id == step_id, WorkflowDefinition.workflow_key == str(workflow_key))
        .first()
    )
    if step is None:
        raise NotFoundError(resource="WorkflowStep", resource_id=step_id)
    return step


def _get_conditional_assignment(assignment_id):
    rule = db.session.get(ConditionalAssignment, assignment_id)
    if rule is None:
        raise NotFoundError(resource="ConditionalAssignment", resource_id=assignment_id)
    return rule


def _touch(workflow, actor):
    workflow.last_modified_by = actor
    workflow.last_modified_at = datetime.now(timezone.utc)


def update_workflow_step(workflow_key, step_id, data: dict, *, actor, guard: EscalationGuard | None = None):
    """Edit allow-listed step fields. ``step_order`` and ``workflow_id`` never change here."""
    guard = guard or EscalationGuard.from_app()
    step = _get_step(workflow_key, step_id)

    changes = {k: data[k] for k in STEP_FIELDS if k in data}
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("name is required", {"name": "required"})
    if "assignment_type" in changes:
        try:
            changes["assignment_type"] = StepAssignmentType(changes["assignment_type"]).value
        except ValueError:
            raise ValidationError(
                f"Unknown assignment_type '{changes['assignment_type']}'",
                {"allowed": [t.value for t in StepAssignmentType]},
            ) from None
    if changes.get("default_assignee"):
        changes["default_assignee"] = _named_assignee(changes["default_assignee"], "default_assignee").to_dict()

    assignment_type = changes.get("assignment_type", step.assignment_type)
    project_role = changes.get("project_role", step.project_role)
    if assignment_type == StepAssignmentType.PROJECT_ROLE.value and not project_role:
        raise ValidationError("ProjectRole steps need a project_role", {"project_role": "required"})

    guard.check_rate_limit(actor, "workflow_step.update")
    before = step.to_dict()
    for field, value in changes.items():
        setattr(step, field, value)
    _touch(step.workflow, actor)
    db.session.flush()
    write_audit(
        entity_type="workflow_step",
        entity_id=step.id,
        action="workflow_step.updated",
        actor=actor,
        before=before,
        after=step.to_dict(),
    )
    db.session.commit()
    logger.info("Updated workflow step %d (%s) by %s", step.id, workflow_key, actor)
    return step


def add_conditional_assignment(step_id, data: dict, *, actor, guard: EscalationGuard | None = None):
    """Append a rule to a NamedPerson step. Priority defaults to last."""
    guard = guard or EscalationGuard.from_app()
    step = db.session.get(WorkflowStep, step_id)
    if step is None:
        raise NotFoundError(resource="WorkflowStep", resource_id=step_id)
    if step.assignment_type != StepAssignmentType.NAMED_PERSON.value:
        raise ValidationError("Conditional assignments apply to NamedPerson steps only")
    conditions = clean_conditions(data.get("conditions"))
    assignee = _named_assignee(data.get("assignee"))
    priority = _clean_priority(data.get("priority") or len(step.conditional_assignees) + 1)

    guard.check_rate_limit(actor, "conditional_assignment.create")
    rule = ConditionalAssignment(
        step_id=step.id, conditions=conditions, assignee=assignee.to_dict(), priority=priority,
    )
    db.session.add(rule)
    _touch(step.workflow, actor)
    db.session.flush()
    write_audit(
        entity_type="conditional_assignment",
        entity_id=rule.id,
        action="conditional_assignment.created",
        actor=actor,
        after=rule.to_dict(),
    )
    db.session.commit()
    logger.info("Added conditional assignment %d on step %d by %s", rule.id, step.id, actor)
    return rule


def update_conditional_assignment(assignment_id, data: dict, *, actor, guard: EscalationGuard | None = None):
    guard = guard or EscalationGuard.from_app()
    rule = _get_conditional_assignment(assignment_id)

    changes = {}
    if "conditions" in data:
        changes["conditions"] = clean_conditions(data["conditions"])
    if "assignee" in data:
        changes["assignee"] = _named_assignee(data["assignee"]).to_dict()
    if data.get("priority") is not None:
        changes["priority"] = _clean_priority(data["priority"])

    guard.check_rate_limit(actor, "conditional_assignment.update")
    before = rule.to_dict()
    for field, value in changes.items():
        setattr(rule, field, value)
    _touch(rule.step.workflow, actor)
    db.session.flush()
    write_audit(
        entity_type="conditional_assignment",
        entity_id=rule.id,
        action="conditional_assignment.updated",
        actor=actor,
        before=before,
        after=rule.to_dict(),
    )
    db.session.commit()
    logger.info("Updated conditional assignment %d by %s", rule.id, actor)
    return rule


def remove_conditional_assignment(assignment_id, *, actor, guard: EscalationGuard | None = None):
    guard = guard or EscalationGuard.from_app()
    rule = _get_conditional_assignment(assignment_id)

    guard.check_rate_limit(actor, "conditional_assignment.remove")
    before = rule.to_dict()
    _touch(rule.step.workflow, actor)
    db.session.delete(rule)
    db.session.flush()
    write_audit(
        entity_type="conditional_assignment",
        entity_id=assignment_id,
        action="conditional_assignment.removed",
        actor=actor,
        before=before,
    )
    db.session.commit()
    logger.info("Conditional assignment %s removed by %s", assignment_id, actor)
