"""
Department Workflow Portal
Intelligence inputs produced by the external trend-ingestion pipeline.

Models:
    - TrendCluster:       a group of related signals with velocity metrics
    - IntelligenceBrief:  a written brief covering one or more clusters

Both tables are populated outside this service and only read here.
"""

import uuid
from datetime import datetime, timezone

from portal.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class TrendCluster(db.Model):
    __tablename__ = "trend_clusters"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(300), nullable=False)
    summary = db.Column(db.Text, default="")
    category = db.Column(db.String(100), nullable=True)
    lifecycle = db.Column(db.String(30), default="emerging")
    velocity_score = db.Column(db.Float, default=0.0)
    velocity_percentile = db.Column(db.Float, default=0.0, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "summary": self.summary,
            "category": self.category,
            "lifecycle": self.lifecycle,
            "velocity_score": self.velocity_score,
            "velocity_percentile": self.velocity_percentile,
            "is_active": self.is_active,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class IntelligenceBrief(db.Model):
    __tablename__ = "intelligence_briefs"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    brief_type = db.Column(db.String(40), default="trend_deep_dive")
    title = db.Column(db.String(300), nullable=False)
    cluster_ids = db.Column(db.JSON, default=list, comment="TrendCluster ids covered by this brief")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "brief_type": self.brief_type,
            "title": self.title,
            "cluster_ids": self.cluster_ids or [],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
