"""
SiteTemplate — an entry in the shared template registry.

``sync_status`` follows the sync state machine enforced by
``services.template_sync_guard``; it is only written by the sync service.
"""

from datetime import datetime, timezone

from governance_engine.core.types import SyncStatus
from governance_engine.models import db


class SiteTemplate(db.Model):
    __tablename__ = "site_templates"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    template_site_url = db.Column(db.String(500))
    git_repo_url = db.Column(db.String(500))
    project_type_id = db.Column(db.Integer)
    sync_status = db.Column(db.String(20), nullable=False, default=SyncStatus.IDLE.value)
    last_synced = db.Column(db.DateTime)
    last_sync_pr_url = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    updated_by = db.Column(db.String(200))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(self.sync_status or SyncStatus.IDLE.value)

    def content_fields(self) -> dict:
        """The fields content validation inspects."""
        return {
            "title": self.title,
            "description": self.description,
            "template_site_url": self.template_site_url,
            "git_repo_url": self.git_repo_url,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "template_site_url": self.template_site_url,
            "git_repo_url": self.git_repo_url,
            "project_type_id": self.project_type_id,
            "sync_status": self.sync_status,
            "last_synced": self.last_synced.isoformat() if self.last_synced else None,
            "last_sync_pr_url": self.last_sync_pr_url,
            "is_active": self.is_active,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
