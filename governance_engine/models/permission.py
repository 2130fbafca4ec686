"""
Permission configuration models.

Models:
    - PermissionTemplate: named bundle of per-tool access levels and flags.
    - SecurityGroupMapping: external identity group → default template.
    - ProjectTeamAssignment: per-(user, project) role, optional template
      override and granular flag additions.

``tool_access`` is a JSON list of ``{tool_key, level, granular_flags}``.
``granular_flag_overrides`` is a JSON list of ``{tool_key, flags}``.
"""

from datetime import datetime, timezone

from governance_engine.models import db


class PermissionTemplate(db.Model):
    __tablename__ = "permission_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.Text)
    is_global = db.Column(db.Boolean, default=False)
    global_access = db.Column(db.Boolean, default=False)
    identity_type = db.Column(db.String(30), default="Internal")  # Internal | External
    tool_access = db.Column(db.JSON, default=list)
    is_default = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    version = db.Column(db.Integer, default=1, nullable=False)
    promoted_from_tier = db.Column(db.String(20))
    promoted_at = db.Column(db.DateTime)
    created_by = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    last_modified_by = db.Column(db.String(200))
    last_modified_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_global": self.is_global,
            "global_access": self.global_access,
            "identity_type": self.identity_type,
            "tool_access": self.tool_access or [],
            "is_default": self.is_default,
            "is_active": self.is_active,
            "version": self.version,
            "promoted_from_tier": self.promoted_from_tier,
            "promoted_at": self.promoted_at.isoformat() if self.promoted_at else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_modified_by": self.last_modified_by,
            "last_modified_at": self.last_modified_at.isoformat() if self.last_modified_at else None,
        }


class SecurityGroupMapping(db.Model):
    __tablename__ = "security_group_mappings"

    id = db.Column(db.Integer, primary_key=True)
    security_group_name = db.Column(db.String(200), unique=True, nullable=False)
    security_group_id = db.Column(db.String(100))  # external directory object id
    default_template_id = db.Column(
        db.Integer, db.ForeignKey("permission_templates.id", ondelete="SET NULL"),
    )
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "security_group_name": self.security_group_name,
            "security_group_id": self.security_group_id,
            "default_template_id": self.default_template_id,
            "is_active": self.is_active,
        }


class ProjectTeamAssignment(db.Model):
    __tablename__ = "project_team_assignments"
    __table_args__ = (
        db.Index("ix_team_assignments_email_project", "user_email", "project_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_email = db.Column(db.String(200), nullable=False)
    project_code = db.Column(db.String(30), nullable=False)
    assigned_role = db.Column(db.String(100), nullable=False)
    template_override_id = db.Column(
        db.Integer, db.ForeignKey("permission_templates.id", ondelete="SET NULL"),
    )
    granular_flag_overrides = db.Column(db.JSON)
    is_active = db.Column(db.Boolean, default=True)
    assigned_by = db.Column(db.String(200))
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "user_email": self.user_email,
            "project_code": self.project_code,
            "assigned_role": self.assigned_role,
            "template_override_id": self.template_override_id,
            "granular_flag_overrides": self.granular_flag_overrides or [],
            "is_active": self.is_active,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
        }
