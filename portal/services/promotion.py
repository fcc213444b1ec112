"""
Department Workflow Portal
Promotion Coordinator — cross-department handoff.

Promotes a project (or an intelligence trend cluster) into a downstream
department:

    intelligence ──▶ strategy ──▶ creative
         └───────────────────────────▲

Validation runs completely before anything is written:
    1. caller already authorized (owner/editor on the source, checked by
       the blueprint)
    2. source exists; its department determines the allowed targets
    3. target department is reachable (creative is terminal)
    4. explicit type belongs to the target department, else the default type
    5. target status is the target department's initial status

The writes then run as a saga (see ``helpers/saga.py``):

    create_target     fatal        new Project + source claim, committed first
    copy_members      best-effort  collaborators with identical roles
    write_provenance  best-effort  one ``promoted_to`` CrossDepartmentRef
    audit             best-effort  one ``project.promoted`` audit row
    notify            best-effort  admins + confirmation to the actor

A best-effort failure leaves earlier steps in place and is reported as a
degraded success (``PromotionResult.failed_steps``).

Claiming the source stamps ``last_promoted_at``, which bumps the source's
version column.  Two promotions racing from the same read cannot both
commit: the loser's flush raises ``StaleDataError``, surfaced as
``ConflictError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from portal.core.exceptions import (
    ConflictError,
    InvalidPromotionPathError,
    InvalidTypeError,
    NotFoundError,
    PersistenceError,
    TerminalDepartmentError,
    ValidationError,
)
from portal.models import db
from portal.models.audit import write_audit
from portal.models.cross_department import CrossDepartmentRef
from portal.models.intelligence import TrendCluster
from portal.models.project import NOTES_MAX, PROJECT_NAME_MAX, Project, ProjectMember
from portal.services.helpers.saga import SagaStep, run_saga
from portal.services.notification import NotificationDispatcher
from portal.services.permission_service import get_admin_ids
from portal.services.transitions import INTELLIGENCE, validator as default_validator

logger = logging.getLogger(__name__)

SOURCE_PROJECT = "project"
SOURCE_TREND = "trend"

RELATIONSHIP = "promoted_to"


class PartialDeliveryError(Exception):
    """Some notification recipients could not be reached."""


@dataclass
class PromotionSource:
    """Normalised view of whatever is being promoted."""

    kind: str                   # "project" | "trend_cluster"
    id: str
    department: str
    status: str
    company_name: str
    project_name: str
    target_audience: str | None
    notes: str | None
    owner_id: str | None
    members: list[tuple[str, str]] = field(default_factory=list)
    entity: object = None


@dataclass
class PromotionResult:
    project: Project
    source: PromotionSource
    ref: CrossDepartmentRef | None
    failed_steps: list[str]

    @property
    def degraded(self) -> bool:
        return bool(self.failed_steps)

    def to_dict(self):
        return {
            "project": self.project.to_dict(),
            "source_id": self.source.id,
            "source_type": self.source.kind,
            "source_department": self.source.department,
            "relationship": RELATIONSHIP,
            "reference": self.ref.to_dict() if self.ref else None,
            "degraded": self.degraded,
            "failed_steps": list(self.failed_steps),
        }


def _clean_override(overrides, key, max_len):
    value = overrides.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", details={key: "expected string"})
    value = value.strip()[:max_len]
    return value or None


class PromotionCoordinator:
    def __init__(self, validator=default_validator):
        self.validator = validator

    # ── Validation (no writes) ───────────────────────────────────────────

    def load_source(self, source_id, source_type=SOURCE_PROJECT, actor=None) -> PromotionSource:
        if source_type == SOURCE_PROJECT:
            project = db.session.get(Project, source_id)
            if project is None:
                raise NotFoundError(resource="Project", resource_id=source_id)
            return PromotionSource(
                kind="project",
                id=project.id,
                department=project.department,
                status=project.status,
                company_name=project.company_name,
                project_name=project.project_name,
                target_audience=project.target_audience,
                notes=project.notes,
                owner_id=project.owner_id,
                members=[(m.user_id, m.role) for m in project.members],
                entity=project,
            )
        if source_type == SOURCE_TREND:
            cluster = db.session.get(TrendCluster, source_id)
            if cluster is None:
                raise NotFoundError(resource="TrendCluster", resource_id=source_id)
            owner_id = actor.id if actor is not None else None
            return PromotionSource(
                kind="trend_cluster",
                id=cluster.id,
                department=INTELLIGENCE,
                status=cluster.lifecycle or "active",
                company_name=cluster.category or "Unknown",
                project_name=(cluster.name or "")[:PROJECT_NAME_MAX],
                target_audience=None,
                notes=(cluster.summary or "")[:NOTES_MAX] or None,
                owner_id=owner_id,
                members=[(owner_id, "owner")] if owner_id else [],
                entity=cluster,
            )
        raise ValidationError(
            f"source_type must be one of: {SOURCE_PROJECT}, {SOURCE_TREND}",
            details={"source_type": source_type},
        )

    def check_path(self, source_department, target_department):
        targets = self.validator.promotion_targets(source_department)
        if not targets:
            raise TerminalDepartmentError(f"{source_department} projects cannot be promoted")
        if not isinstance(target_department, str) or target_department not in targets:
            raise InvalidPromotionPathError(
                f"{source_department} projects can only be promoted to "
                f"{' or '.join(sorted(targets))}",
                targets,
            )

    def resolve_type(self, target_department, project_type=None):
        allowed = self.validator.types(target_department)
        if project_type is None or project_type == "":
            return self.validator.default_type(target_department)
        if project_type not in allowed:
            raise InvalidTypeError(
                f"'{project_type}' is not a {target_department} project type", allowed,
            )
        return project_type

    # ── Promote ──────────────────────────────────────────────────────────

    def promote(self, source_id, target_department, actor, *,
                source_type=SOURCE_PROJECT, project_type=None, overrides=None) -> PromotionResult:
        overrides = overrides or {}
        source = self.load_source(source_id, source_type, actor)
        self.check_path(source.department, target_department)
        resolved_type = self.resolve_type(target_department, project_type)
        initial_status = self.validator.initial_status(target_department)
        project_name = _clean_override(overrides, "project_name", PROJECT_NAME_MAX) or source.project_name
        notes = _clean_override(overrides, "notes", NOTES_MAX) or source.notes

        ctx = {
            "source": source,
            "actor": actor,
            "target_department": target_department,
            "fields": {
                "owner_id": source.owner_id,
                "department": target_department,
                "type": resolved_type,
                "status": initial_status,
                "company_name": source.company_name,
                "project_name": project_name,
                "target_audience": source.target_audience,
                "notes": notes,
                "promoted_from_type": source.kind,
                "promoted_from_id": source.id,
            },
        }
        steps = [
            SagaStep("create_target", self._create_target, fatal=True),
            SagaStep("copy_members", self._copy_members),
            SagaStep("write_provenance", self._write_provenance),
            SagaStep("audit", self._audit),
            SagaStep("notify", self._notify),
        ]

        try:
            outcome = run_saga(steps, ctx, label=f"promotion {source.kind}:{source.id}")
        except StaleDataError as exc:
            raise ConflictError(
                f"Project {source.id} was modified concurrently; reload and retry",
                current_status=source.status,
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create {target_department} project") from exc

        project = ctx["project"]
        logger.info(
            "Promoted %s %s (%s) to %s project %s",
            source.kind, source.id, source.department, target_department, project.id,
            extra={"project_id": project.id, "department": target_department},
        )
        return PromotionResult(
            project=project,
            source=source,
            ref=ctx.get("ref"),
            failed_steps=outcome.failed,
        )

    # ── Saga steps ───────────────────────────────────────────────────────

    def _create_target(self, ctx):
        project = Project(**ctx["fields"])
        db.session.add(project)
        source = ctx["source"]
        if source.kind == "project":
            source.entity.last_promoted_at = datetime.now(timezone.utc)
        db.session.flush()
        ctx["project"] = project
        return project.id

    def _copy_members(self, ctx):
        project = ctx["project"]
        copied = 0
        seen = set()
        for user_id, role in ctx["source"].members:
            if user_id in seen:
                continue
            seen.add(user_id)
            db.session.add(ProjectMember(project_id=project.id, user_id=user_id, role=role))
            copied += 1
        db.session.flush()
        return copied

    def _write_provenance(self, ctx):
        source = ctx["source"]
        actor = ctx["actor"]
        ref = CrossDepartmentRef(
            source_department=source.department,
            source_type=source.kind,
            source_id=source.id,
            target_department=ctx["target_department"],
            target_type="project",
            target_id=ctx["project"].id,
            relationship=RELATIONSHIP,
            ref_metadata={
                "promoted_by": actor.id if actor is not None else None,
                "source_status": source.status,
            },
        )
        db.session.add(ref)
        db.session.flush()
        ctx["ref"] = ref
        return ref.id

    def _audit(self, ctx):
        source = ctx["source"]
        project = ctx["project"]
        actor = ctx["actor"]
        log = write_audit(
            entity_id=project.id,
            action="project.promoted",
            actor=actor.email if actor is not None else "system",
            actor_user_id=actor.id if actor is not None else None,
            project_id=project.id,
            department=ctx["target_department"],
            diff={
                "source_type": source.kind,
                "source_id": source.id,
                "source_department": source.department,
                "source_status": source.status,
                "target_department": ctx["target_department"],
                "type": project.type,
            },
        )
        return log.id

    def _notify(self, ctx):
        source = ctx["source"]
        project = ctx["project"]
        actor = ctx["actor"]
        target = ctx["target_department"]

        admins = get_admin_ids()
        sent = NotificationDispatcher.notify(
            admins, project.id, "project_promoted",
            f"project promoted to {target}",
            f'{project.company_name} "{project.project_name}" promoted from '
            f"{source.department} to {target}.",
        )
        expected = len(set(admins))
        if actor is not None:
            sent += NotificationDispatcher.notify(
                [actor.id], project.id, "project_promoted_ack",
                "promotion complete",
                f'"{project.project_name}" is now a {target} {project.type} project.',
            )
            expected += 1
        if sent < expected:
            raise PartialDeliveryError(f"{sent}/{expected} promotion notifications delivered")
        return sent
