"""
Department Workflow Portal
Project Service — creation, status changes, lookups and reporting.

Usage:
    from portal.services import project_service

    project = project_service.create_project(data, actor)
    project = project_service.change_status(project.id, "narrative_review", actor)
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, exists, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from portal.core.exceptions import (
    ConflictError,
    InvalidTypeError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from portal.models import db
from portal.models.audit import write_audit
from portal.models.cross_department import CrossDepartmentRef
from portal.models.intelligence import TrendCluster
from portal.models.project import NOTES_MAX, PROJECT_NAME_MAX, Project, ProjectMember
from portal.services.notification import NotificationDispatcher
from portal.services.permission_service import get_accessible_project_ids, is_admin
from portal.services.transitions import validator

logger = logging.getLogger(__name__)

SEARCH_MIN_LENGTH = 2
SEARCH_MAX_LENGTH = 200
SEARCH_RESULTS_PER_TYPE = 10


def _text(data, key, max_len, required=False):
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{key} is required", details={key: "required"})
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", details={key: "expected string"})
    return value.strip()[:max_len]


def commit_or_raise(what):
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError(f"{what} was modified concurrently; reload and retry") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error: %s", what)
        raise PersistenceError(f"Could not save {what}") from exc


def audit_best_effort(**kwargs):
    try:
        write_audit(**kwargs)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning("Audit write failed for %s (main flow unaffected)",
                       kwargs.get("action"), exc_info=True)


# ── Create / read ────────────────────────────────────────────────────────────

def create_project(data, actor):
    """Human submission: new project at its department's initial status."""
    department = data.get("department")
    if not department:
        raise ValidationError("department is required", details={"department": "required"})
    allowed_types = validator.types(department)  # unknown department -> InvalidStateError

    project_type = data.get("type") or validator.default_type(department)
    if project_type not in allowed_types:
        raise InvalidTypeError(f"'{project_type}' is not a {department} project type", allowed_types)

    company_name = _text(data, "company_name", 200, required=True)
    project = Project(
        owner_id=actor.id,
        department=department,
        type=project_type,
        status=validator.initial_status(department),
        company_name=company_name,
        project_name=_text(data, "project_name", PROJECT_NAME_MAX) or company_name,
        target_audience=_text(data, "target_audience", 500),
        notes=_text(data, "notes", NOTES_MAX),
    )
    db.session.add(project)
    db.session.flush()
    db.session.add(ProjectMember(project_id=project.id, user_id=actor.id, role="owner"))
    commit_or_raise("project")

    audit_best_effort(
        entity_id=project.id, action="project.create", actor=actor.email,
        actor_user_id=actor.id, project_id=project.id, department=department,
        diff={"status": project.status, "type": project.type},
    )
    return project


def get_project(project_id):
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def list_projects(user, department=None, status=None):
    q = Project.query
    ids = get_accessible_project_ids(user)
    if ids is not None:
        q = q.filter(Project.id.in_(ids))
    if department:
        q = q.filter(Project.department == department)
    if status:
        q = q.filter(Project.status == status)
    return q.order_by(Project.updated_at.desc(), Project.id)


# ── Status change ────────────────────────────────────────────────────────────

def change_status(project_id, new_status, actor, artifact_url=None, expected_version=None):
    """
    Move a project along its department's lifecycle (admin action).

    Raises:
        ValidationError: status missing or artifact_url not https.
        WorkflowRuleError subclasses: transition not allowed.
        ConflictError: ``expected_version`` is stale or a concurrent write won.
        PersistenceError: the store rejected the update.
    """
    if not new_status:
        raise ValidationError("status is required", details={"status": "required"})
    if not isinstance(new_status, str):
        raise ValidationError("status must be a string", details={"status": "expected string"})
    if artifact_url is not None:
        if not isinstance(artifact_url, str) or not artifact_url.startswith("https://"):
            raise ValidationError("artifact_url must start with https://",
                                  details={"artifact_url": "must be an https URL"})

    project = get_project(project_id)
    if expected_version is not None and expected_version != project.version:
        raise ConflictError(
            f"Project {project_id} is at version {project.version}, not {expected_version}",
            current_status=project.status,
        )

    validator.validate(project.department, project.status, new_status).raise_if_invalid()

    old_status = project.status
    project.status = new_status
    if artifact_url is not None:
        project.artifact_url = artifact_url
    commit_or_raise(f"project {project_id}")

    logger.info("Project %s: %s → %s by %s", project.id, old_status, new_status, actor.id,
                extra={"project_id": project.id, "department": project.department})

    audit_best_effort(
        entity_id=project.id, action="project.status_change", actor=actor.email,
        actor_user_id=actor.id, project_id=project.id, department=project.department,
        diff={"status": {"old": old_status, "new": new_status}},
    )
    recipients = [m.user_id for m in project.members if m.user_id != actor.id]
    NotificationDispatcher.notify(
        recipients, project.id, "status_changed",
        f"status changed to {new_status.replace('_', ' ')}",
        f'{project.company_name} "{project.project_name}" moved from '
        f"{old_status} to {new_status}.",
    )
    return project


# ── Provenance ───────────────────────────────────────────────────────────────

def list_references(project_id):
    outgoing = (
        CrossDepartmentRef.query
        .filter_by(source_type="project", source_id=project_id)
        .order_by(CrossDepartmentRef.created_at)
        .all()
    )
    incoming = (
        CrossDepartmentRef.query
        .filter_by(target_type="project", target_id=project_id)
        .order_by(CrossDepartmentRef.created_at)
        .all()
    )
    return {
        "outgoing": [r.to_dict() for r in outgoing],
        "incoming": [r.to_dict() for r in incoming],
    }


def find_unreferenced_promotions():
    """Projects created by promotion whose provenance ref is missing."""
    has_ref = exists().where(and_(
        CrossDepartmentRef.target_type == "project",
        CrossDepartmentRef.target_id == Project.id,
        CrossDepartmentRef.relationship == "promoted_to",
    ))
    return (
        Project.query
        .filter(Project.promoted_from_id.isnot(None), ~has_ref)
        .order_by(Project.created_at)
        .all()
    )


def repair_promotion_ref(project):
    """Write the missing ``promoted_to`` ref for a dangling promotion target."""
    if project.promoted_from_type == "project":
        source = db.session.get(Project, project.promoted_from_id)
        source_department = source.department if source else None
    else:
        source_department = "intelligence"
    if source_department is None:
        logger.warning("Cannot repair %s: source %s no longer exists",
                       project.id, project.promoted_from_id)
        return None
    ref = CrossDepartmentRef(
        source_department=source_department,
        source_type=project.promoted_from_type,
        source_id=project.promoted_from_id,
        target_department=project.department,
        target_type="project",
        target_id=project.id,
        relationship="promoted_to",
        ref_metadata={"repaired": True},
    )
    db.session.add(ref)
    db.session.commit()
    return ref


# ── Search ───────────────────────────────────────────────────────────────────

def _like_pattern(q):
    escaped = q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def search(q, user, trends_visible_to_all=True):
    """Case-insensitive substring match over projects and active trend clusters."""
    q = (q or "").strip()[:SEARCH_MAX_LENGTH]
    if len(q) < SEARCH_MIN_LENGTH:
        raise ValidationError(f"q must be at least {SEARCH_MIN_LENGTH} characters",
                              details={"q": "too short"})
    pattern = _like_pattern(q)

    pq = Project.query.filter(or_(
        Project.company_name.ilike(pattern, escape="\\"),
        Project.project_name.ilike(pattern, escape="\\"),
    ))
    ids = get_accessible_project_ids(user)
    if ids is not None:
        pq = pq.filter(Project.id.in_(ids))
    projects = pq.order_by(Project.updated_at.desc(), Project.id).limit(SEARCH_RESULTS_PER_TYPE).all()

    trends = []
    if is_admin(user) or trends_visible_to_all:
        trends = (
            TrendCluster.query
            .filter(TrendCluster.is_active.is_(True))
            .filter(or_(
                TrendCluster.name.ilike(pattern, escape="\\"),
                TrendCluster.summary.ilike(pattern, escape="\\"),
                TrendCluster.category.ilike(pattern, escape="\\"),
            ))
            .order_by(TrendCluster.velocity_percentile.desc(), TrendCluster.id)
            .limit(SEARCH_RESULTS_PER_TYPE)
            .all()
        )

    return {
        "query": q,
        "projects": [p.to_dict() for p in projects],
        "trends": [t.to_dict() for t in trends],
    }


# ── Reporting ────────────────────────────────────────────────────────────────

def departments_overview(now=None):
    """Per-department totals, status breakdown, weekly intake and active count."""
    now = now or datetime.now(timezone.utc)
    week_ago = now - timedelta(days=7)

    overview = {
        name: {"total": 0, "by_status": {}, "created_7d": 0, "active": 0}
        for name in validator.table.departments
    }

    rows = (
        db.session.query(Project.department, Project.status, db.func.count(Project.id))
        .group_by(Project.department, Project.status)
        .all()
    )
    for department, status, count in rows:
        entry = overview.get(department)
        if entry is None:
            continue
        entry["total"] += count
        entry["by_status"][status] = count
        if status not in validator.terminal_statuses(department):
            entry["active"] += count

    recent = (
        db.session.query(Project.department, db.func.count(Project.id))
        .filter(Project.created_at >= week_ago)
        .group_by(Project.department)
        .all()
    )
    for department, count in recent:
        if department in overview:
            overview[department]["created_7d"] = count

    return {
        "departments": overview,
        "total": sum(e["total"] for e in overview.values()),
    }
