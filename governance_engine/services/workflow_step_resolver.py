"""
Workflow Step Resolver

Turns a workflow definition into the concrete chain of people who act on a
project, one entry per step, in ascending step order.

Per step, first rule that applies wins:
  0. Feature-flag gate   disabled + skippable  → emitted with skipped=True
                         disabled + required   → omitted from the chain
                         unknown flag name     → treated as enabled (fail-open)
  1. Override            WorkflowStepOverride for (project, step)
  2. ProjectRole         team member holding step.project_role, else a
                         "(No <role> assigned)" placeholder
  3. NamedPerson         first matching conditional rule by ascending
                         priority, else step.default_assignee

Nothing here raises for "nobody is assigned": every emitted step carries an
Assignee, possibly a placeholder. An unknown workflow key yields [].

Usage:
    from governance_engine.services.workflow_step_resolver import resolve_workflow_chain
    chain = resolve_workflow_chain("GO_NO_GO", "25-042-01")
"""

from __future__ import annotations

import logging

from flask import current_app, has_app_context

from governance_engine.core.types import (
    AssignmentSource,
    Assignee,
    ResolvedWorkflowStep,
    StepAssignmentType,
)
from governance_engine.models.feature_flag import FeatureFlag
from governance_engine.models.project import Lead, ProjectTeamMember
from governance_engine.models.workflow import (
    WorkflowDefinition,
    WorkflowStep,
    WorkflowStepOverride,
)
from governance_engine.services.feature_flag_service import FEATURE_FLAG_FAIL_OPEN

logger = logging.getLogger(__name__)

SKIPPED_DISPLAY_NAME = "(Skipped)"
UNASSIGNED_DISPLAY_NAME = "(Unassigned)"


def _fail_open() -> bool:
    if has_app_context():
        return current_app.config.get("GOVERNANCE_FEATURE_FLAG_FAIL_OPEN", FEATURE_FLAG_FAIL_OPEN)
    return FEATURE_FLAG_FAIL_OPEN


def _key_value(workflow_key) -> str:
    return getattr(workflow_key, "value", workflow_key)


def resolve_workflow_chain(workflow_key, project_code: str) -> list[ResolvedWorkflowStep]:
    """Resolve every step of ``workflow_key`` for ``project_code``."""
    key = _key_value(workflow_key)
    workflow = WorkflowDefinition.query.filter_by(workflow_key=key).first()
    if workflow is None:
        logger.debug("No workflow definition for key %s; empty chain", key)
        return []

    steps = sorted(workflow.steps, key=lambda s: s.step_order)

    overrides = {
        o.step_id: o
        for o in WorkflowStepOverride.query.filter_by(
            project_code=project_code, workflow_key=key,
        ).all()
    }
    members_by_role: dict[str, ProjectTeamMember] = {}
    for member in (
        ProjectTeamMember.query.filter_by(project_code=project_code)
        .order_by(ProjectTeamMember.id)
        .all()
    ):
        members_by_role.setdefault(member.role, member)
    lead = Lead.query.filter_by(project_code=project_code).first()
    flag_states = _load_flag_states(steps)
    fail_open = _fail_open()

    resolved: list[ResolvedWorkflowStep] = []
    for step in steps:
        if step.feature_flag_name:
            enabled = flag_states.get(step.feature_flag_name, fail_open)
            if not enabled:
                if step.is_skippable:
                    resolved.append(_skipped(step))
                continue

        override = overrides.get(step.id)
        if override is not None:
            resolved.append(_build(
                step,
                Assignee.from_dict(override.override_assignee) or Assignee.placeholder(),
                AssignmentSource.OVERRIDE,
                condition_met=True,
            ))
            continue

        if step.assignment_type == StepAssignmentType.PROJECT_ROLE.value:
            resolved.append(_resolve_project_role(step, members_by_role))
        else:
            resolved.append(_resolve_named_person(step, lead))

    logger.debug(
        "Resolved workflow %s for %s: %d of %d steps",
        key, project_code, len(resolved), len(steps),
    )
    return resolved


# ── Step branches ────────────────────────────────────────────────────────


def _resolve_project_role(
    step: WorkflowStep, members_by_role: dict[str, ProjectTeamMember],
) -> ResolvedWorkflowStep:
    member = members_by_role.get(step.project_role) if step.project_role else None
    if member is None:
        role_label = step.project_role or "role"
        return _build(
            step,
            Assignee.placeholder(f"(No {role_label} assigned)"),
            AssignmentSource.PROJECT_ROLE,
            condition_met=False,
        )
    return _build(
        step,
        Assignee(user_id=str(member.id), display_name=member.name, email=member.email),
        AssignmentSource.PROJECT_ROLE,
        condition_met=True,
    )


def _resolve_named_person(step: WorkflowStep, lead: Lead | None) -> ResolvedWorkflowStep:
    if step.is_conditional and lead is not None:
        match = first_matching_rule(step.conditional_assignees, lead)
        if match is not None:
            assignee = Assignee.from_dict(match.assignee) or Assignee.placeholder()
            return _build(step, assignee, AssignmentSource.CONDITION, condition_met=True)

    assignee = Assignee.from_dict(step.default_assignee) or Assignee.placeholder(UNASSIGNED_DISPLAY_NAME)
    return _build(step, assignee, AssignmentSource.DEFAULT, condition_met=not step.is_conditional)


def first_matching_rule(rules, lead: Lead):
    """First rule, by ascending priority, whose conditions all equal the lead's fields.

    ``sorted`` is stable, so rules sharing a priority keep stored order.
    A rule with no conditions matches any lead.
    """
    for rule in sorted(rules, key=lambda r: r.priority):
        if all(
            lead.field_value(cond.get("field", "")) == cond.get("value")
            for cond in (rule.conditions or [])
        ):
            return rule
    return None


# ── Helpers ──────────────────────────────────────────────────────────────


def _load_flag_states(steps: list[WorkflowStep]) -> dict[str, bool]:
    names = {s.feature_flag_name for s in steps if s.feature_flag_name}
    if not names:
        return {}
    rows = FeatureFlag.query.filter(FeatureFlag.feature_name.in_(names)).all()
    return {f.feature_name: bool(f.enabled) for f in rows}


def _skipped(step: WorkflowStep) -> ResolvedWorkflowStep:
    return ResolvedWorkflowStep(
        step_id=step.id,
        step_order=step.step_order,
        name=step.name,
        assignee=Assignee.placeholder(SKIPPED_DISPLAY_NAME),
        assignment_source=AssignmentSource.DEFAULT,
        is_conditional=False,
        condition_met=False,
        action_label=step.action_label or "",
        can_chair_meeting=False,
        skipped=True,
        skip_reason=f"Feature flag '{step.feature_flag_name}' is disabled",
    )


def _build(
    step: WorkflowStep,
    assignee: Assignee,
    source: AssignmentSource,
    *,
    condition_met: bool,
) -> ResolvedWorkflowStep:
    return ResolvedWorkflowStep(
        step_id=step.id,
        step_order=step.step_order,
        name=step.name,
        assignee=assignee,
        assignment_source=source,
        is_conditional=bool(step.is_conditional),
        condition_met=condition_met,
        action_label=step.action_label or "",
        can_chair_meeting=bool(step.can_chair_meeting),
    )
