"""
Department Workflow Portal
User model.

Authentication lives outside this service; a User row is the identity a
caller resolves to.  Administrator status is not stored here: it is derived
from the ``ADMIN_EMAILS`` setting (see ``portal.services.permission_service``).
"""

import uuid
from datetime import datetime, timezone

from portal.models import db


def _uuid():
    return str(uuid.uuid4())


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(200), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    memberships = db.relationship(
        "ProjectMember", back_populates="user", cascade="all, delete-orphan", lazy="dynamic",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.email}>"
