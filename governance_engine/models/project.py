"""
Project-side records the resolvers read.

Models:
    - Principal: a known user and their current application role.
    - Lead: the lead/project record; Division/Region/Sector drive
      conditional workflow assignment.
    - ProjectTeamMember: who fills which project role on a project.
"""

from datetime import datetime, timezone

from governance_engine.core.types import ConditionField
from governance_engine.models import db

_CONDITION_COLUMNS = {
    ConditionField.DIVISION: "division",
    ConditionField.REGION: "region",
    ConditionField.SECTOR: "sector",
}


class Principal(db.Model):
    __tablename__ = "principals"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    display_name = db.Column(db.String(200))
    role_name = db.Column(db.String(100))  # current role, e.g. "Operations Team"
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role_name": self.role_name,
            "is_active": self.is_active,
        }


class Lead(db.Model):
    __tablename__ = "leads"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    project_code = db.Column(db.String(30), unique=True, index=True)  # NULL until won
    division = db.Column(db.String(100))
    region = db.Column(db.String(100))
    sector = db.Column(db.String(100))
    stage = db.Column(db.String(50), default="Lead")
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def field_value(self, field_name: str) -> str:
        """Value of a condition field ("Division", "Region", "Sector").

        Any other field name reads as '' so it can never match a rule value.
        """
        try:
            column = _CONDITION_COLUMNS[ConditionField(field_name)]
        except ValueError:
            return ""
        return getattr(self, column) or ""

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "project_code": self.project_code,
            "division": self.division,
            "region": self.region,
            "sector": self.sector,
            "stage": self.stage,
        }


class ProjectTeamMember(db.Model):
    __tablename__ = "project_team_members"
    __table_args__ = (
        db.Index("ix_team_members_project_role", "project_code", "role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_code = db.Column(db.String(30), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(100), nullable=False)  # e.g. "Project Manager"

    def to_dict(self):
        return {
            "id": self.id,
            "project_code": self.project_code,
            "name": self.name,
            "email": self.email,
            "role": self.role,
        }
