"""
Department Workflow Portal
Project domain models.

Models:
    - Project:        one work item owned by a department (intelligence,
                      strategy or creative), carrying a department-scoped
                      type and status
    - ProjectMember:  collaborator on a project with a role

Invariants enforced at the store boundary (``before_insert`` /
``before_update`` mapper events):
    - ``department`` is a declared department
    - ``status`` belongs to the department's status set
    - ``type`` belongs to the department's type enum

Concurrency:
    ``version`` is the optimistic lock column.  Every UPDATE is issued as
    ``... WHERE id = ? AND version = ?``; a concurrent writer that already
    bumped the row makes the flush raise ``StaleDataError``.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event

from portal.core.exceptions import InvalidStateError, InvalidTypeError
from portal.models import db
from portal.services.transitions import validator


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

MEMBER_ROLES = ("owner", "editor", "viewer")

PROJECT_NAME_MAX = 200
NOTES_MAX = 2000


class Project(db.Model):
    """
    Department-scoped work item.

    Created by a human submission or by promotion from another department.
    Never deleted by the workflow engine; archival is a status.
    """

    __tablename__ = "projects"
    __table_args__ = (
        db.Index("ix_projects_dept_status", "department", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    owner_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    department = db.Column(db.String(20), nullable=False)
    type = db.Column(db.String(40), nullable=False)
    status = db.Column(db.String(40), nullable=False)

    company_name = db.Column(db.String(200), nullable=False)
    project_name = db.Column(db.String(PROJECT_NAME_MAX), nullable=False)
    target_audience = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    artifact_url = db.Column(db.String(1000), nullable=True, comment="Published build URL (https only)")
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_promoted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Set on projects created by promotion; lets the consistency sweep find
    # targets whose provenance ref was never written
    promoted_from_type = db.Column(db.String(30), nullable=True)
    promoted_from_id = db.Column(db.String(36), nullable=True, index=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    members = db.relationship(
        "ProjectMember", back_populates="project", cascade="all, delete-orphan", lazy="select",
    )

    def member_role(self, user_id):
        for m in self.members:
            if m.user_id == user_id:
                return m.role
        return None

    def to_dict(self, include_members=False):
        d = {
            "id": self.id,
            "owner_id": self.owner_id,
            "department": self.department,
            "type": self.type,
            "status": self.status,
            "company_name": self.company_name,
            "project_name": self.project_name,
            "target_audience": self.target_audience,
            "notes": self.notes,
            "artifact_url": self.artifact_url,
            "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None,
            "last_promoted_at": self.last_promoted_at.isoformat() if self.last_promoted_at else None,
            "promoted_from_type": self.promoted_from_type,
            "promoted_from_id": self.promoted_from_id,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_members:
            d["members"] = [m.to_dict() for m in self.members]
        return d

    def __repr__(self):
        return f"<Project {self.id} {self.department}/{self.status}>"


def check_project_invariants(project):
    """Raise if department, status or type fall outside the declared domain."""
    dept = validator.table.get(project.department)
    if project.status not in dept.statuses:
        raise InvalidStateError(
            f"'{project.status}' is not a {dept.name} status", dept.statuses,
        )
    if project.type not in dept.types:
        raise InvalidTypeError(
            f"'{project.type}' is not a {dept.name} project type", dept.types,
        )


@event.listens_for(Project, "before_insert")
@event.listens_for(Project, "before_update")
def _validate_project_row(mapper, connection, target):
    check_project_invariants(target)


class ProjectMember(db.Model):
    __tablename__ = "project_members"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    role = db.Column(db.String(20), nullable=False, default="viewer")
    joined_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        db.CheckConstraint(
            "role IN (" + ", ".join(f"'{r}'" for r in MEMBER_ROLES) + ")",
            name="ck_project_member_role",
        ),
        db.Index("ix_project_members_project", "project_id"),
        db.Index("ix_project_members_user", "user_id"),
    )

    project = db.relationship("Project", back_populates="members")
    user = db.relationship("User", back_populates="memberships")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }
