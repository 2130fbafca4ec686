"""
Workflow configuration models.

Models:
    - WorkflowDefinition: one per WorkflowKey, owns an ordered list of steps.
    - WorkflowStep: a single approval/assignment point.
    - ConditionalAssignment: priority-ordered rule mapping lead-field
      equality conditions to an assignee (NamedPerson steps only).
    - WorkflowStepOverride: per-(project, step) pinned assignee.

Assignees are stored as JSON objects ``{user_id, display_name, email}``.
Conditions are stored as a JSON list ``[{field, value}, ...]``.
"""

from datetime import datetime, timezone

from governance_engine.models import db


class WorkflowDefinition(db.Model):
    __tablename__ = "workflow_definitions"

    id = db.Column(db.Integer, primary_key=True)
    workflow_key = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)
    last_modified_by = db.Column(db.String(200))
    last_modified_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    steps = db.relationship(
        "WorkflowStep", back_populates="workflow",
        order_by="WorkflowStep.step_order", cascade="all, delete-orphan",
    )

    def to_dict(self, include_steps=True):
        d = {
            "id": self.id,
            "workflow_key": self.workflow_key,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "last_modified_by": self.last_modified_by,
            "last_modified_at": self.last_modified_at.isoformat() if self.last_modified_at else None,
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.steps]
        return d


class WorkflowStep(db.Model):
    __tablename__ = "workflow_steps"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "step_order", name="uq_workflow_step_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflow_definitions.id", ondelete="CASCADE"), nullable=False,
    )
    step_order = db.Column(db.Integer, nullable=False)  # 1-based
    name = db.Column(db.String(200), nullable=False)
    assignment_type = db.Column(db.String(20), nullable=False)  # ProjectRole | NamedPerson
    project_role = db.Column(db.String(100))  # when ProjectRole
    default_assignee = db.Column(db.JSON)  # when NamedPerson
    is_conditional = db.Column(db.Boolean, default=False)
    is_skippable = db.Column(db.Boolean, default=False)
    feature_flag_name = db.Column(db.String(100))
    action_label = db.Column(db.String(200), default="")
    can_chair_meeting = db.Column(db.Boolean, default=False)

    workflow = db.relationship("WorkflowDefinition", back_populates="steps")
    conditional_assignees = db.relationship(
        "ConditionalAssignment", back_populates="step", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "step_order": self.step_order,
            "name": self.name,
            "assignment_type": self.assignment_type,
            "project_role": self.project_role,
            "default_assignee": self.default_assignee,
            "is_conditional": self.is_conditional,
            "is_skippable": self.is_skippable,
            "feature_flag_name": self.feature_flag_name,
            "action_label": self.action_label,
            "can_chair_meeting": self.can_chair_meeting,
            "conditional_assignees": [c.to_dict() for c in self.conditional_assignees],
        }


class ConditionalAssignment(db.Model):
    __tablename__ = "conditional_assignments"

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(
        db.Integer, db.ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False,
    )
    conditions = db.Column(db.JSON, default=list)
    assignee = db.Column(db.JSON, nullable=False)
    priority = db.Column(db.Integer, nullable=False, default=1)  # lower evaluates first

    step = db.relationship("WorkflowStep", back_populates="conditional_assignees")

    def to_dict(self):
        return {
            "id": self.id,
            "step_id": self.step_id,
            "conditions": self.conditions or [],
            "assignee": self.assignee,
            "priority": self.priority,
        }


class WorkflowStepOverride(db.Model):
    __tablename__ = "workflow_step_overrides"
    __table_args__ = (
        db.UniqueConstraint("project_code", "step_id", name="uq_override_project_step"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_code = db.Column(db.String(30), nullable=False, index=True)
    workflow_key = db.Column(db.String(50), nullable=False)
    step_id = db.Column(
        db.Integer, db.ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False,
    )
    override_assignee = db.Column(db.JSON, nullable=False)
    override_reason = db.Column(db.Text)
    overridden_by = db.Column(db.String(200))
    overridden_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_code": self.project_code,
            "workflow_key": self.workflow_key,
            "step_id": self.step_id,
            "override_assignee": self.override_assignee,
            "override_reason": self.override_reason,
            "overridden_by": self.overridden_by,
            "overridden_at": self.overridden_at.isoformat() if self.overridden_at else None,
        }
