"""
Department Workflow Portal
Promotion Blueprint — cross-department handoff.

Routes:
  POST   /projects/<id>/promote   – promote a project (owner / editor)
  POST   /promote                 – unified: { source_type: project | trend, source_id, ... }

Both return 201 with the new project, the source reference and a
``degraded`` flag listing best-effort steps that failed.
"""

import logging

from flask import Blueprint, current_app, jsonify

from portal.auth import current_user, login_required
from portal.blueprints import json_body
from portal.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from portal.middleware.project_access import require_project_role
from portal.services.permission_service import get_member_role, is_admin
from portal.services.promotion import SOURCE_PROJECT, SOURCE_TREND, PromotionCoordinator

logger = logging.getLogger(__name__)

promote_bp = Blueprint("promote_bp", __name__, url_prefix="/api/v1")

PROMOTE_ROLES = ("owner", "editor")

coordinator = PromotionCoordinator()


def _require_str(data, key, required=False):
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise ValidationError(f"{key} is required", details={key: "required"})
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", details={key: "expected string"})
    return value


def _run_promotion(source_id, source_type, data):
    target = _require_str(data, "target_department", required=True)
    result = coordinator.promote(
        source_id,
        target,
        current_user(),
        source_type=source_type,
        project_type=_require_str(data, "type"),
        overrides={k: data[k] for k in ("project_name", "notes") if k in data},
    )
    return jsonify(result.to_dict()), 201


@promote_bp.route("/projects/<project_id>/promote", methods=["POST"])
@require_project_role(*PROMOTE_ROLES)
def promote_project(project_id):
    """Body: { target_department, type?, project_name?, notes? }"""
    return _run_promotion(project_id, SOURCE_PROJECT, json_body())


@promote_bp.route("/promote", methods=["POST"])
@login_required
def promote():
    """Body: { source_type?, source_id, target_department, type?, project_name?, notes? }"""
    data = json_body()
    source_type = _require_str(data, "source_type") or SOURCE_PROJECT
    source_id = _require_str(data, "source_id", required=True)

    user = current_user()
    if source_type == SOURCE_PROJECT and not is_admin(user):
        role = get_member_role(user.id, source_id)
        if role is None:
            raise NotFoundError(resource="Project", resource_id=source_id)
        if role not in PROMOTE_ROLES:
            raise ForbiddenError("Requires project role: owner or editor")
    elif source_type == SOURCE_TREND and not (
        is_admin(user) or current_app.config.get("ATTENTION_TRENDS_VISIBLE_TO_ALL", True)
    ):
        raise ForbiddenError("Trend promotion is restricted to administrators")

    return _run_promotion(source_id, source_type, data)
