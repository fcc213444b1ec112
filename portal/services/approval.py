"""
Department Workflow Portal
Approval Service — client decisions on items waiting in review.

Creative review (status ``review``):

    approve          review → live       members: status_live,      admins: client_approved
    request_changes  review → revision   members: status_revision,  admins: changes_requested,
                                         actor: changes_requested_ack
    escalate         status unchanged    admins: escalation,        actor: escalation_ack
                     (sets escalated_at)

Creative narrative review (status ``narrative_review``):

    approve          narrative_review → brand_collection   members + admins: narrative_approved,
                                                           actor: narrative_approved_ack
    reject           status unchanged (notes required)     members + admins: narrative_rejected,
                                                           actor: narrative_rejected_ack
    escalate         status unchanged                      admins: escalation, actor: escalation_ack

Strategy research review (status ``research_review``):

    approve          research_review → research_complete   research_approved
    reject           research_review → researching         research_rejected (notes required)

Any action outside its review status raises ConflictError (409) and writes
nothing.  Once the status change is committed, audit and notifications are
best-effort.
"""

import logging
from datetime import datetime, timezone

from portal.core.exceptions import ConflictError, ValidationError
from portal.models.project import NOTES_MAX
from portal.services import project_service
from portal.services.notification import NotificationDispatcher
from portal.services.permission_service import get_admin_ids
from portal.services.transitions import CREATIVE, STRATEGY, validator

logger = logging.getLogger(__name__)

APPROVAL_ACTIONS = ("approve", "request_changes", "escalate")
RESEARCH_ACTIONS = ("approve", "reject")
NARRATIVE_ACTIONS = ("approve", "reject", "escalate")

MESSAGE_MAX = 2000


def _clean_message(message, field="message"):
    if message is None:
        return None
    if not isinstance(message, str):
        raise ValidationError(f"{field} must be a string", details={field: "expected string"})
    return message.strip()[:MESSAGE_MAX] or None


def _other_members(project, actor):
    return [m.user_id for m in project.members if m.user_id != actor.id]


def _move(project, new_status, actor, action, extra=None):
    old_status = project.status
    validator.validate(project.department, old_status, new_status).raise_if_invalid()
    project.status = new_status
    project_service.commit_or_raise(f"project {project.id}")
    diff = {"status": {"old": old_status, "new": new_status}}
    diff.update(extra or {})
    project_service.audit_best_effort(
        entity_id=project.id, action=action, actor=actor.email, actor_user_id=actor.id,
        project_id=project.id, department=project.department, diff=diff,
    )
    return old_status


def apply_approval(project_id, action, actor, message=None):
    """Apply a client decision to a creative project in review."""
    if action not in APPROVAL_ACTIONS:
        raise ValidationError(f"action must be one of: {', '.join(APPROVAL_ACTIONS)}",
                              details={"action": action})
    message = _clean_message(message)

    project = project_service.get_project(project_id)
    if project.department != CREATIVE or project.status != "review":
        raise ConflictError(
            f"Project is not awaiting review (status={project.status})",
            current_status=project.status,
        )

    label = f'{project.company_name} "{project.project_name}"'
    admins = get_admin_ids()
    notified = 0

    if action == "approve":
        _move(project, "live", actor, "project.approve")
        body = f"{label} is now live."
        if project.artifact_url:
            body += f" {project.artifact_url}"
        notified += NotificationDispatcher.notify(
            [actor.id] + _other_members(project, actor), project.id,
            "status_live", "your pitchapp is live", body,
        )
        notified += NotificationDispatcher.notify(
            admins, project.id, "client_approved", "client approved, now live",
            f"{label} was approved by {actor.email} and is now live.",
        )

    elif action == "request_changes":
        _move(project, "revision", actor, "project.request_changes",
              extra={"message": message} if message else None)
        notified += NotificationDispatcher.notify(
            _other_members(project, actor), project.id, "status_revision",
            "changes requested", f"{label} moved to revision.",
        )
        admin_body = f"{actor.email} requested changes on {label}."
        if message:
            admin_body += f"\n\n{message}"
        notified += NotificationDispatcher.notify(
            admins, project.id, "changes_requested", "changes requested", admin_body,
        )
        notified += NotificationDispatcher.notify(
            [actor.id], project.id, "changes_requested_ack", "we got your feedback",
            f"Your requested changes on {label} are with the team.",
        )

    else:
        notified += _escalate(project, actor, message, label, "client escalation")

    logger.info("Approval %s on %s by %s", action, project.id, actor.id,
                extra={"project_id": project.id, "department": project.department})
    return {"project": project.to_dict(), "action": action, "notified": notified}


def _escalate(project, actor, message, label, title):
    """Flag the project for human attention; status is unchanged."""
    project.escalated_at = datetime.now(timezone.utc)
    project_service.commit_or_raise(f"project {project.id}")
    project_service.audit_best_effort(
        entity_id=project.id, action="project.escalate", actor=actor.email,
        actor_user_id=actor.id, project_id=project.id, department=project.department,
        diff={"message": message} if message else {},
    )
    admin_body = f"{actor.email} escalated {label}."
    if message:
        admin_body += f"\n\n{message}"
    notified = NotificationDispatcher.notify(
        get_admin_ids(), project.id, "escalation", title, admin_body,
    )
    notified += NotificationDispatcher.notify(
        [actor.id], project.id, "escalation_ack", "escalation received",
        f"The team has been alerted about {label}.",
    )
    return notified


def review_research(project_id, action, actor, notes=None):
    """Approve or send back strategy research waiting in ``research_review``."""
    if action not in RESEARCH_ACTIONS:
        raise ValidationError(f"action must be one of: {', '.join(RESEARCH_ACTIONS)}",
                              details={"action": action})
    notes = _clean_message(notes, field="notes")
    if notes is not None:
        notes = notes[:NOTES_MAX]
    if action == "reject" and not notes:
        raise ValidationError("notes are required when rejecting research",
                              details={"notes": "required"})

    project = project_service.get_project(project_id)
    if project.department != STRATEGY or project.status != "research_review":
        raise ConflictError(
            f"Research is not awaiting review (status={project.status})",
            current_status=project.status,
        )

    label = f'{project.company_name} "{project.project_name}"'
    recipients = get_admin_ids() + _other_members(project, actor)

    if action == "approve":
        _move(project, "research_complete", actor, "project.research_approve")
        notified = NotificationDispatcher.notify(
            recipients, project.id, "research_approved", "research approved",
            f"Research for {label} was approved by {actor.email}.",
        )
    else:
        _move(project, "researching", actor, "project.research_reject", extra={"notes": notes})
        notified = NotificationDispatcher.notify(
            recipients, project.id, "research_rejected", "research sent back",
            f"{actor.email} sent research for {label} back for revision.\n\n{notes}",
        )

    return {"project": project.to_dict(), "action": action, "notified": notified}


def review_narrative(project_id, action, actor, notes=None):
    """Approve, send back or escalate a creative narrative in ``narrative_review``."""
    if action not in NARRATIVE_ACTIONS:
        raise ValidationError(f"action must be one of: {', '.join(NARRATIVE_ACTIONS)}",
                              details={"action": action})
    notes = _clean_message(notes, field="notes")
    if action == "reject" and not notes:
        raise ValidationError("notes are required when rejecting a narrative",
                              details={"notes": "required"})

    project = project_service.get_project(project_id)
    if project.department != CREATIVE or project.status != "narrative_review":
        raise ConflictError(
            f"Narrative is not awaiting review (status={project.status})",
            current_status=project.status,
        )

    label = f'{project.company_name} "{project.project_name}"'
    members = _other_members(project, actor)

    if action == "approve":
        _move(project, "brand_collection", actor, "project.narrative_approve")
        notified = NotificationDispatcher.notify(
            members + get_admin_ids(), project.id, "narrative_approved", "narrative approved",
            f"The narrative for {label} was approved; brand assets are being collected.",
        )
        notified += NotificationDispatcher.notify(
            [actor.id], project.id, "narrative_approved_ack", "narrative approved",
            "Your story arc has been approved. Add your brand assets to shape the build.",
        )
    elif action == "reject":
        # The narrative is reworked in place; the project stays in narrative_review
        project_service.audit_best_effort(
            entity_id=project.id, action="project.narrative_reject", actor=actor.email,
            actor_user_id=actor.id, project_id=project.id, department=project.department,
            diff={"notes": notes},
        )
        notified = NotificationDispatcher.notify(
            members + get_admin_ids(), project.id, "narrative_rejected",
            "narrative revision requested",
            f"{actor.email} requested narrative changes on {label}.\n\n{notes}",
        )
        notified += NotificationDispatcher.notify(
            [actor.id], project.id, "narrative_rejected_ack", "feedback received",
            "Noted. The team will rework the narrative.",
        )
    else:
        notified = _escalate(project, actor, notes, label, "narrative review needs attention")

    return {"project": project.to_dict(), "action": action, "notified": notified}
