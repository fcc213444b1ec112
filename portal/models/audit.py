"""
Department Workflow Portal
Audit domain model.

Models:
    - AuditLog: append-only automation trail for workflow events
      (status changes, approvals, promotions).
"""

import json
from datetime import UTC, datetime

from portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "project.create",
    "project.status_change",
    "project.approve",
    "project.request_changes",
    "project.escalate",
    "project.narrative_approve",
    "project.narrative_reject",
    "project.research_approve",
    "project.research_reject",
    "project.promoted",
}


class AuditLog(db.Model):
    """
    Immutable audit trail, one row per action.

    ``diff_json`` carries the old→new snapshot for status changes and the
    promotion lineage for ``project.promoted``.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(36), nullable=True)
    department = db.Column(db.String(20), nullable=True)

    entity_type = db.Column(db.String(30), nullable=False, default="project")
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(255), nullable=False, default="system",
                      comment="Acting user email or 'system'")
    actor_user_id = db.Column(db.String(36), nullable=True)

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "department": self.department,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_id: str,
    action: str,
    entity_type: str = "project",
    actor: str = "system",
    actor_user_id: str | None = None,
    project_id: str | None = None,
    department: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.  ``action`` must be one of ``AUDIT_ACTIONS``.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")
    log = AuditLog(
        project_id=project_id,
        department=department,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
