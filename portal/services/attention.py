"""
Department Workflow Portal
Attention Aggregator — the "what needs me now" queue.

Merges independent read-only sources into one ranked list:

    trend_needs_brief          hot trend clusters no recent brief covers
    research_not_promoted      finished strategy research with no handoff
    narrative_pending_review   creative narrative waiting on a decision
    research_pending_review    strategy research waiting on a decision
    pitchapp_pending_review    creative build waiting on client review

Each source runs independently; an exception or a timeout in one source
contributes zero items and never affects the others.  Sources run on a
thread pool when ``ATTENTION_MAX_WORKERS`` > 1, otherwise inline.

Exclusions are applied inside each source query (anti-join against
provenance refs, or against recent brief coverage), never as a filter on
the merged list.

Ordering: priority rank (high, medium, low), then most recent first, then
item id so equal (priority, timestamp) pairs are stable.
"""

from __future__ import annotations

import functools
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import and_, exists

from portal.models import db
from portal.models.cross_department import CrossDepartmentRef
from portal.models.intelligence import IntelligenceBrief, TrendCluster
from portal.models.project import Project
from portal.services.permission_service import get_accessible_project_ids, is_admin
from portal.services.transitions import CREATIVE, INTELLIGENCE, STRATEGY

logger = logging.getLogger(__name__)

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class AttentionItem:
    id: str
    department: str
    type: str
    title: str
    description: str
    entity_id: str
    entity_type: str
    priority: str
    action_url: str
    created_at: datetime | None

    def to_dict(self):
        return {
            "id": self.id,
            "department": self.department,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "priority": self.priority,
            "action_url": self.action_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class AttentionScope:
    """What the caller may see.  ``project_ids`` None means unscoped."""

    project_ids: tuple[str, ...] | None
    include_trends: bool

    @classmethod
    def for_user(cls, user, trends_visible_to_all=True):
        ids = get_accessible_project_ids(user)
        return cls(
            project_ids=None if ids is None else tuple(ids),
            include_trends=is_admin(user) or trends_visible_to_all,
        )


def _as_utc(ts):
    if ts is None:
        return _EPOCH
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _sort_key(item):
    return (
        PRIORITY_RANK.get(item.priority, len(PRIORITY_RANK)),
        -_as_utc(item.created_at).timestamp(),
        item.id,
    )


def rank_items(items):
    """Drop repeated ids (first wins) and sort into display order."""
    unique = {}
    for item in items:
        unique.setdefault(item.id, item)
    return sorted(unique.values(), key=_sort_key)


def _scoped(query, scope):
    if scope.project_ids is None:
        return query
    return query.filter(Project.id.in_(scope.project_ids))


# ── Sources ──────────────────────────────────────────────────────────────────

def trends_needing_brief(scope, settings):
    if not scope.include_trends:
        return []

    recent = (
        IntelligenceBrief.query
        .order_by(IntelligenceBrief.created_at.desc())
        .limit(settings["recent_briefs"])
        .all()
    )
    briefed = {str(cid) for brief in recent for cid in (brief.cluster_ids or [])}

    q = TrendCluster.query.filter(
        TrendCluster.is_active.is_(True),
        TrendCluster.velocity_percentile > settings["velocity_threshold"],
    )
    if briefed:
        q = q.filter(~TrendCluster.id.in_(briefed))
    clusters = (
        q.order_by(TrendCluster.velocity_percentile.desc(), TrendCluster.id)
        .limit(settings["limit"])
        .all()
    )

    items = []
    for c in clusters:
        pct = c.velocity_percentile or 0
        items.append(AttentionItem(
            id=f"trend-no-brief-{c.id}",
            department=INTELLIGENCE,
            type="trend_needs_brief",
            title=f'"{c.name}" trending with no brief',
            description=f"{c.category or 'Uncategorised'} cluster at the {pct:.0f}th velocity percentile",
            entity_id=c.id,
            entity_type="trend_cluster",
            priority="high" if pct > settings["high_velocity"] else "medium",
            action_url=f"/intelligence/trends/{c.id}",
            created_at=c.updated_at,
        ))
    return items


def research_not_promoted(scope, settings):
    if scope.project_ids is not None and not scope.project_ids:
        return []

    promoted = exists().where(and_(
        CrossDepartmentRef.source_type == "project",
        CrossDepartmentRef.source_id == Project.id,
        CrossDepartmentRef.relationship == "promoted_to",
    ))
    q = Project.query.filter(
        Project.department == STRATEGY,
        Project.status == "research_complete",
        ~promoted,
    )
    projects = (
        _scoped(q, scope)
        .order_by(Project.updated_at.desc(), Project.id)
        .limit(settings["limit"])
        .all()
    )
    return [
        AttentionItem(
            id=f"research-not-promoted-{p.id}",
            department=STRATEGY,
            type="research_not_promoted",
            title=f"{p.company_name}: research complete, not yet promoted",
            description=f'"{p.project_name}" is ready to hand off to creative',
            entity_id=p.id,
            entity_type="project",
            priority="medium",
            action_url=f"/strategy/{p.id}",
            created_at=p.updated_at,
        )
        for p in projects
    ]


@dataclass(frozen=True)
class ReviewRule:
    department: str
    status: str
    item_type: str
    slug: str
    title: str
    url: str


REVIEW_RULES = (
    ReviewRule(CREATIVE, "narrative_review", "narrative_pending_review",
               "narrative-review", "narrative ready for review", "/creative/{id}/narrative"),
    ReviewRule(STRATEGY, "research_review", "research_pending_review",
               "research-review", "research ready for review", "/strategy/{id}/research"),
    ReviewRule(CREATIVE, "review", "pitchapp_pending_review",
               "pitchapp-review", "pitchapp ready for review", "/creative/{id}"),
)


def pending_reviews(rule, scope, settings):
    if scope.project_ids is not None and not scope.project_ids:
        return []

    q = Project.query.filter(Project.department == rule.department, Project.status == rule.status)
    projects = (
        _scoped(q, scope)
        .order_by(Project.updated_at.desc(), Project.id)
        .limit(settings["limit"])
        .all()
    )
    return [
        AttentionItem(
            id=f"{rule.slug}-{p.id}",
            department=rule.department,
            type=rule.item_type,
            title=f"{p.company_name}: {rule.title}",
            description=f'"{p.project_name}" is waiting on a decision',
            entity_id=p.id,
            entity_type="project",
            priority="high",
            action_url=rule.url.format(id=p.id),
            created_at=p.updated_at,
        )
        for p in projects
    ]


DEFAULT_SOURCES = (
    ("trend_needs_brief", trends_needing_brief),
    ("research_not_promoted", research_not_promoted),
) + tuple(
    (rule.item_type, functools.partial(pending_reviews, rule)) for rule in REVIEW_RULES
)


# ── Aggregator ───────────────────────────────────────────────────────────────

class AttentionAggregator:
    def __init__(self, sources=DEFAULT_SOURCES, *, max_workers=None, timeout=None):
        self.sources = tuple(sources)
        self.max_workers = max_workers
        self.timeout = timeout

    def _settings(self):
        cfg = current_app.config
        return {
            "velocity_threshold": cfg.get("ATTENTION_VELOCITY_THRESHOLD", 70),
            "high_velocity": cfg.get("ATTENTION_HIGH_VELOCITY", 90),
            "limit": cfg.get("ATTENTION_SOURCE_LIMIT", 20),
            "recent_briefs": cfg.get("ATTENTION_RECENT_BRIEFS", 50),
        }

    def get_attention_items(self, user):
        cfg = current_app.config
        scope = AttentionScope.for_user(user, cfg.get("ATTENTION_TRENDS_VISIBLE_TO_ALL", True))
        settings = self._settings()
        workers = self.max_workers if self.max_workers is not None else cfg.get("ATTENTION_MAX_WORKERS", 4)
        timeout = self.timeout if self.timeout is not None else cfg.get("ATTENTION_SOURCE_TIMEOUT", 5)

        if workers <= 1 or len(self.sources) <= 1:
            collected = self._collect_inline(scope, settings)
        else:
            collected = self._collect_parallel(scope, settings, workers, timeout)
        return rank_items(collected)

    def _collect_inline(self, scope, settings):
        items = []
        for name, source in self.sources:
            try:
                items.extend(source(scope, settings))
            except Exception:
                logger.warning("Attention source '%s' failed, skipped", name, exc_info=True)
                db.session.rollback()
        return items

    def _collect_parallel(self, scope, settings, workers, timeout):
        app = current_app._get_current_object()
        executor = ThreadPoolExecutor(max_workers=min(workers, len(self.sources)),
                                      thread_name_prefix="attention")
        try:
            futures = {
                executor.submit(_run_source, app, source, scope, settings): name
                for name, source in self.sources
            }
            done, pending = wait(futures, timeout=timeout)
            items = []
            for future in done:
                try:
                    items.extend(future.result())
                except Exception:
                    logger.warning("Attention source '%s' failed, skipped",
                                   futures[future], exc_info=True)
            for future in pending:
                future.cancel()
                logger.warning("Attention source '%s' timed out after %ss, skipped",
                               futures[future], timeout)
            return items
        finally:
            executor.shutdown(wait=False, cancel_futures=True)


def _run_source(app, source, scope, settings):
    with app.app_context():
        return source(scope, settings)
