"""
Seed Service — default governance configuration.

Idempotent: every seeder inserts only what is missing (matched by natural
key), so ``flask seed-governance`` is safe to run on every deploy.

Seeds:
    - 6 system roles (role_config_service)
    - 8 permission templates + one security group mapping per group
    - feature flags referenced by workflow steps and template sync
    - workflow definitions for the six workflow keys
"""

import logging

from governance_engine.core.types import AccessLevel, StepAssignmentType, WorkflowKey
from governance_engine.models import db
from governance_engine.models.feature_flag import FeatureFlag
from governance_engine.models.permission import PermissionTemplate, SecurityGroupMapping
from governance_engine.models.workflow import (
    ConditionalAssignment,
    WorkflowDefinition,
    WorkflowStep,
)
from governance_engine.services.feature_flag_service import SITE_TEMPLATE_MANAGEMENT
from governance_engine.services.permission_resolver import READ_ONLY_GROUP
from governance_engine.services.role_config_service import seed_default_role_configurations

logger = logging.getLogger(__name__)

RO, STD, ADM = AccessLevel.READ_ONLY.value, AccessLevel.STANDARD.value, AccessLevel.ADMIN.value


def _tools(*entries):
    """(tool_key, level[, granular_flags]) tuples → tool_access JSON."""
    access = []
    for entry in entries:
        tool_key, level = entry[0], entry[1]
        flags = entry[2] if len(entry) > 2 else ()
        access.append({"tool_key": tool_key, "level": level, "granular_flags": list(flags)})
    return access


# (name, security group, template kwargs)
DEFAULT_TEMPLATES = [
    (READ_ONLY_GROUP, READ_ONLY_GROUP, {
        "description": "Baseline visibility for everyone without a specific group",
        "is_default": True,
        "tool_access": _tools(("leads", RO), ("project_hub", RO), ("active_projects", RO)),
    }),
    ("Executive Leadership", "Executive Leadership", {
        "description": "Portfolio-wide oversight and final decisions",
        "is_global": True,
        "global_access": True,
        "tool_access": _tools(
            ("leads", ADM), ("gonogo", ADM), ("active_projects", ADM), ("project_hub", ADM),
            ("pmp", ADM), ("buyout_log", ADM), ("monthly_review", ADM), ("turnover", ADM),
        ),
    }),
    ("Project Executive", "Project Executives", {
        "description": "Approvals across an assigned project portfolio",
        "tool_access": _tools(
            ("project_hub", STD), ("pmp", ADM), ("buyout_log", STD, ("can_approve_commitments",)),
            ("monthly_review", STD, ("can_review_as_px",)), ("schedule", RO), ("turnover", STD),
        ),
    }),
    ("Project Manager", "Project Managers", {
        "description": "Day-to-day project delivery",
        "tool_access": _tools(
            ("project_hub", STD), ("pmp", STD), ("buyout_log", STD), ("schedule", STD),
            ("monthly_review", STD), ("contract_tracking", STD),
        ),
    }),
    ("Estimating", "Estimating", {
        "description": "Estimating and preconstruction",
        "tool_access": _tools(("estimating", STD), ("kickoff", STD), ("leads", RO), ("gonogo", RO)),
    }),
    ("Business Development", "Business Development", {
        "description": "Lead origination and Go/No-Go submission",
        "tool_access": _tools(("leads", STD), ("gonogo", STD)),
    }),
    ("Accounting", "Accounting", {
        "description": "Job numbers and contract administration",
        "tool_access": _tools(("job_number", ADM), ("contract_tracking", STD), ("buyout_log", RO)),
    }),
    ("SharePoint Admin", "SharePoint Admins", {
        "description": "Platform administration",
        "is_global": True,
        "global_access": True,
        "tool_access": _tools(
            ("admin_panel", ADM, ("can_manage_templates",)), ("workflow_definitions", ADM),
            ("leads", ADM), ("project_hub", RO),
        ),
    }),
]

DEFAULT_FEATURE_FLAGS = [
    (SITE_TEMPLATE_MANAGEMENT, "Site Template Management", "admin", False,
     "Allows syncing site templates into the shared registry"),
    ("GoNoGoCommitteeReview", "Go/No-Go Committee Review", "preconstruction", True,
     "Adds the committee review step to Go/No-Go"),
    ("PMPFinalApproval", "PMP Final Approval", "operations", True,
     "Requires a final executive approval on the PMP"),
    ("CommitmentCfoEscalation", "Commitment CFO Escalation", "operations", False,
     "Routes large commitments to the CFO"),
]


def _step(order, name, *, role=None, person=None, conditional=False, skippable=False,
          flag=None, action="", chair=False, rules=()):
    step = WorkflowStep(
        step_order=order,
        name=name,
        assignment_type=(StepAssignmentType.PROJECT_ROLE if role else StepAssignmentType.NAMED_PERSON).value,
        project_role=role,
        default_assignee=person,
        is_conditional=conditional,
        is_skippable=skippable,
        feature_flag_name=flag,
        action_label=action,
        can_chair_meeting=chair,
    )
    for priority, conditions, assignee in rules:
        step.conditional_assignees.append(ConditionalAssignment(
            priority=priority, conditions=conditions, assignee=assignee,
        ))
    return step


def _person(user_id, name, email):
    return {"user_id": user_id, "display_name": name, "email": email}


_DIRECTOR_COMMERCIAL = _person("dir-com", "Commercial Director", "commercial.director@example.com")
_DIRECTOR_DEFAULT = _person("dir-ops", "Operations Director", "operations.director@example.com")
_CFO = _person("cfo", "Chief Financial Officer", "cfo@example.com")
_PRESIDENT = _person("pres", "President", "president@example.com")


def _default_workflows():
    return {
        WorkflowKey.GO_NO_GO: ("Go/No-Go", [
            _step(1, "Originator Scoring", role="BD Manager", action="Score & Submit"),
            _step(2, "Director Review", person=_DIRECTOR_DEFAULT, conditional=True,
                  action="Review", chair=True, rules=[
                      (1, [{"field": "Division", "value": "Commercial"}], _DIRECTOR_COMMERCIAL),
                      (2, [], _DIRECTOR_DEFAULT),
                  ]),
            _step(3, "Committee Review", person=_PRESIDENT, skippable=True,
                  flag="GoNoGoCommitteeReview", action="Decide", chair=True),
        ]),
        WorkflowKey.PMP_APPROVAL: ("PMP Approval", [
            _step(1, "Project Manager Sign-off", role="Project Manager", action="Sign"),
            _step(2, "Project Executive Approval", role="Project Executive", action="Approve"),
            _step(3, "Final Approval", person=_PRESIDENT, flag="PMPFinalApproval", action="Final Approve"),
        ]),
        WorkflowKey.MONTHLY_REVIEW: ("Monthly Review", [
            _step(1, "PM Review", role="Project Manager", action="Submit Review"),
            _step(2, "PX Review", role="Project Executive", action="Review", chair=True),
        ]),
        WorkflowKey.COMMITMENT_APPROVAL: ("Commitment Approval", [
            _step(1, "PX Approval", role="Project Executive", action="Approve"),
            _step(2, "CFO Approval", person=_CFO, skippable=True,
                  flag="CommitmentCfoEscalation", action="Approve"),
        ]),
        WorkflowKey.TURNOVER_APPROVAL: ("Turnover Approval", [
            _step(1, "Estimator Handoff", role="Lead Estimator", action="Hand Off"),
            _step(2, "Operations Acceptance", role="Project Manager", action="Accept", chair=True),
        ]),
        WorkflowKey.CONTRACT_TRACKING: ("Contract Tracking", [
            _step(1, "Contract Review", role="Project Manager", action="Review"),
            _step(2, "Risk Review", person=_DIRECTOR_DEFAULT, conditional=True, action="Approve", rules=[
                (1, [{"field": "Sector", "value": "Government"}], _CFO),
            ]),
        ]),
    }


# ═══════════════════════════════════════════════════════════════
# Seeders
# ═══════════════════════════════════════════════════════════════

def seed_permission_templates():
    created = 0
    for name, group, spec in DEFAULT_TEMPLATES:
        template = PermissionTemplate.query.filter_by(name=name).first()
        if template is None:
            template = PermissionTemplate(name=name, created_by="system", last_modified_by="system", **spec)
            db.session.add(template)
            db.session.flush()
            created += 1
        if not SecurityGroupMapping.query.filter_by(security_group_name=group).first():
            db.session.add(SecurityGroupMapping(security_group_name=group, default_template_id=template.id))
    db.session.commit()
    return created


def seed_feature_flags():
    created = 0
    for name, display, category, enabled, description in DEFAULT_FEATURE_FLAGS:
        if FeatureFlag.query.filter_by(feature_name=name).first():
            continue
        db.session.add(FeatureFlag(
            feature_name=name, display_name=display, category=category,
            enabled=enabled, description=description, updated_by="system",
        ))
        created += 1
    db.session.commit()
    return created


def seed_workflow_definitions():
    created = 0
    for key, (name, steps) in _default_workflows().items():
        if WorkflowDefinition.query.filter_by(workflow_key=key.value).first():
            continue
        db.session.add(WorkflowDefinition(
            workflow_key=key.value, name=name, steps=steps, last_modified_by="system",
        ))
        created += 1
    db.session.commit()
    return created


def seed_governance_defaults():
    """Run every seeder; returns per-entity insert counts."""
    counts = {
        "active_roles": len(seed_default_role_configurations()),
        "permission_templates": seed_permission_templates(),
        "feature_flags": seed_feature_flags(),
        "workflow_definitions": seed_workflow_definitions(),
    }
    logger.info("Governance defaults seeded: %s", counts)
    return counts
