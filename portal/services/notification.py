"""
Department Workflow Portal
Notification Dispatcher.

Best-effort fan-out of typed notification records.  Delivery failures
never raise from ``notify``: every recipient is written and committed on
its own, and a failure for one recipient is rolled back, logged and
skipped so the rest still receive theirs.  An unknown ``type`` tag is a
caller bug and raises ``ValueError`` before anything is written.  Callers commit their primary mutation before notifying.

Read state is owner-only: ``mark_read`` ignores ids that belong to other
recipients.
"""

import logging

from portal.models import db
from portal.models.notification import NOTIFICATION_TYPES, Notification

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


class NotificationDispatcher:
    """Stateless service class for notification operations."""

    # ── Fan-out ───────────────────────────────────────────────────────────

    @staticmethod
    def notify(recipients, project_id, type, title, body=""):
        """
        Create one notification per distinct recipient.

        Raises:
            ValueError: ``type`` is not one of ``NOTIFICATION_TYPES``.

        Returns:
            Number of notifications actually delivered.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type!r}")
        seen = set()
        ordered = []
        for r in recipients or []:
            if r and r not in seen:
                seen.add(r)
                ordered.append(r)

        delivered = 0
        for recipient_id in ordered:
            try:
                db.session.add(Notification(
                    recipient_id=recipient_id,
                    project_id=project_id,
                    type=type,
                    title=title,
                    body=body or "",
                ))
                db.session.commit()
                delivered += 1
            except Exception:
                db.session.rollback()
                logger.warning(
                    "Notification %s to %s failed, skipped",
                    type, recipient_id, exc_info=True,
                    extra={"project_id": project_id, "user_id": recipient_id},
                )
        if ordered and delivered < len(ordered):
            logger.info("Notification %s delivered to %d/%d recipients",
                        type, delivered, len(ordered))
        return delivered

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(user_id, unread_only=False, limit=DEFAULT_LIST_LIMIT, offset=0):
        """Retrieve a user's notifications, newest first.  Returns (items, total)."""
        q = Notification.query.filter_by(recipient_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id)
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(recipient_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(ids, user_id):
        """
        Mark the given notifications read, restricted to ``user_id``'s own.

        Returns:
            Number of notifications updated.
        """
        if not ids:
            return 0
        items = (
            Notification.query
            .filter(Notification.id.in_(list(ids)))
            .filter_by(recipient_id=user_id, is_read=False)
            .all()
        )
        for n in items:
            n.mark_read()
        db.session.commit()
        return len(items)

    @staticmethod
    def mark_all_read(user_id):
        items = Notification.query.filter_by(recipient_id=user_id, is_read=False).all()
        for n in items:
            n.mark_read()
        db.session.commit()
        return len(items)
