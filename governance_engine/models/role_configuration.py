"""
RoleConfiguration — administrator-defined application roles.

System roles (``is_system=True``) are seeded and cannot be soft-deleted;
the flag itself is never writable through the update path.
Soft-deleted roles stay readable by id but drop out of active listings.
"""

from datetime import datetime, timezone

from governance_engine.models import db


class RoleConfiguration(db.Model):
    __tablename__ = "role_configurations"

    id = db.Column(db.Integer, primary_key=True)
    role_name = db.Column(db.String(100), unique=True, nullable=False)
    display_name = db.Column(db.String(200))
    description = db.Column(db.Text)
    is_global = db.Column(db.Boolean, default=False)
    default_permissions = db.Column(db.JSON, default=list)
    is_system = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    sort_order = db.Column(db.Integer, default=0)
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
            "role_name": self.role_name,
            "display_name": self.display_name,
            "description": self.description,
            "is_global": self.is_global,
            "default_permissions": list(self.default_permissions or []),
            "is_system": self.is_system,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_modified_by": self.last_modified_by,
            "last_modified_at": self.last_modified_at.isoformat() if self.last_modified_at else None,
        }

    def __repr__(self):
        return f"<RoleConfiguration {self.id}: {self.role_name}>"
