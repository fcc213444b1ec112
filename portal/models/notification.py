"""
Department Workflow Portal
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking,
      one row per recipient per event
"""

import uuid
from datetime import datetime, timezone

from portal.models import db


def _uuid():
    return str(uuid.uuid4())


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "project_promoted", "project_promoted_ack",
    "status_live", "client_approved",
    "status_revision", "changes_requested", "changes_requested_ack",
    "escalation", "escalation_ack",
    "narrative_approved", "narrative_approved_ack",
    "narrative_rejected", "narrative_rejected_ack",
    "research_approved", "research_rejected",
    "status_changed",
}


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    recipient_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    body = db.Column(db.Text, default="")

    # Read tracking
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "project_id": self.project_id,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
