"""
Permission Service — membership-based project access with an admin cache.

Rules:
  - administrators are users whose email appears in ``ADMIN_EMAILS``
    (comma separated, case-insensitive); they bypass membership checks
  - everyone else reaches a project only through a ProjectMember row,
    and mutations additionally require a specific role
"""

import logging
import threading
import time
from typing import Optional

from flask import current_app
from sqlalchemy import event

from portal.models import db
from portal.models.project import ProjectMember
from portal.models.user import User

logger = logging.getLogger(__name__)

# Cache entry: (cached_at, frozenset(admin emails) it was built for, [user ids])
_admin_cache: dict[str, tuple[float, frozenset[str], list[str]]] = {}
_cache_lock = threading.Lock()


def admin_emails() -> frozenset[str]:
    raw = current_app.config.get("ADMIN_EMAILS", "") or ""
    return frozenset(e.strip().lower() for e in raw.split(",") if e.strip())


def is_admin(user: Optional[User]) -> bool:
    if user is None or not user.email:
        return False
    return user.email.lower() in admin_emails()


def get_admin_ids() -> list[str]:
    """Ids of every administrator, cached for ``ADMIN_CACHE_TTL`` seconds."""
    emails = admin_emails()
    ttl = current_app.config.get("ADMIN_CACHE_TTL", 300)
    with _cache_lock:
        entry = _admin_cache.get("admins")
        if entry is not None:
            cached_at, cached_emails, ids = entry
            if cached_emails == emails and time.time() - cached_at <= ttl:
                return list(ids)

    if not emails:
        ids = []
    else:
        rows = (
            db.session.query(User.id)
            .filter(db.func.lower(User.email).in_(emails))
            .order_by(User.email)
            .all()
        )
        ids = [r[0] for r in rows]

    with _cache_lock:
        _admin_cache["admins"] = (time.time(), emails, ids)
    return list(ids)


def invalidate_admin_cache() -> None:
    with _cache_lock:
        _admin_cache.clear()


# A new or re-addressed user may match ADMIN_EMAILS
@event.listens_for(User, "after_insert")
@event.listens_for(User, "after_update")
def _user_changed(mapper, connection, target):
    invalidate_admin_cache()


def get_member_role(user_id: str, project_id: str) -> Optional[str]:
    row = (
        db.session.query(ProjectMember.role)
        .filter_by(project_id=project_id, user_id=user_id)
        .first()
    )
    return row[0] if row else None


def get_accessible_project_ids(user: User) -> Optional[list[str]]:
    """
    Return project ids the user may see.

    None means unscoped (administrator); an empty list means no access.
    """
    if is_admin(user):
        return None
    rows = db.session.query(ProjectMember.project_id).filter_by(user_id=user.id).all()
    return [r[0] for r in rows]
