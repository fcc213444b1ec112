"""
Department Workflow Portal
Cross-department provenance model.

Models:
    - CrossDepartmentRef: immutable directed edge from a source entity
      (project or trend cluster) to the entity it was promoted into

Edges are written once by the promotion flow and never updated; together
they form an acyclic lineage graph over projects and trend clusters.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event

from portal.models import db


def _uuid():
    return str(uuid.uuid4())


# ── Constants ────────────────────────────────────────────────────────────────

REF_SOURCE_TYPES = {"project", "trend_cluster"}
REF_TARGET_TYPES = {"project"}
REF_RELATIONSHIPS = {"promoted_to"}


class CrossDepartmentRef(db.Model):
    __tablename__ = "cross_department_refs"
    __table_args__ = (
        db.Index("ix_xref_source", "source_type", "source_id", "relationship"),
        db.Index("ix_xref_target", "target_type", "target_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    source_department = db.Column(db.String(20), nullable=False)
    source_type = db.Column(db.String(30), nullable=False)
    source_id = db.Column(db.String(36), nullable=False)
    target_department = db.Column(db.String(20), nullable=False)
    target_type = db.Column(db.String(30), nullable=False)
    target_id = db.Column(db.String(36), nullable=False)
    relationship = db.Column(db.String(30), nullable=False, default="promoted_to")
    # ``metadata`` is reserved on declarative classes
    ref_metadata = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "source_department": self.source_department,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "target_department": self.target_department,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "relationship": self.relationship,
            "metadata": self.ref_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (f"<CrossDepartmentRef {self.source_type}:{self.source_id} "
                f"-{self.relationship}-> {self.target_type}:{self.target_id}>")


@event.listens_for(CrossDepartmentRef, "before_update")
def _refuse_ref_update(mapper, connection, target):
    raise RuntimeError(f"CrossDepartmentRef {target.id} is immutable")


@event.listens_for(CrossDepartmentRef, "before_insert")
def _validate_ref(mapper, connection, target):
    if target.source_type not in REF_SOURCE_TYPES:
        raise ValueError(f"Unknown ref source_type: {target.source_type!r}")
    if target.target_type not in REF_TARGET_TYPES:
        raise ValueError(f"Unknown ref target_type: {target.target_type!r}")
    if target.relationship not in REF_RELATIONSHIPS:
        raise ValueError(f"Unknown ref relationship: {target.relationship!r}")
