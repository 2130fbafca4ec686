"""
Feature Flag Model.

Named on/off switches. Workflow steps may name a flag that gates their
existence; privileged operations (template sync) may require one.
"""

from datetime import datetime, timezone

from governance_engine.models import db


class FeatureFlag(db.Model):
    """Global feature flag definition."""
    __tablename__ = "feature_flags"

    id = db.Column(db.Integer, primary_key=True)
    feature_name = db.Column(db.String(100), unique=True, nullable=False)  # e.g. "SiteTemplateManagement"
    display_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    enabled = db.Column(db.Boolean, default=False, nullable=False)
    category = db.Column(db.String(50), default="general")
    updated_by = db.Column(db.String(200))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "feature_name": self.feature_name,
            "display_name": self.display_name,
            "description": self.description,
            "enabled": self.enabled,
            "category": self.category,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
