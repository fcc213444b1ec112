"""
Department Workflow Portal
Project Blueprint.

Routes:
  POST   /projects                                – submit a new project
  GET    /projects                                – list visible projects
  GET    /projects/<id>                           – project detail + next statuses
  PATCH  /projects/<id>/status                    – change status (admin)
  POST   /projects/<id>/approve                   – client decision on a build in review (owner)
  POST   /projects/<id>/narrative/review          – approve / reject / escalate a creative narrative (owner)
  POST   /projects/<id>/research/review           – approve / reject strategy research (owner)
  GET    /projects/<id>/references                – provenance edges in and out
"""

from flask import Blueprint, jsonify, request

from portal.auth import current_user, login_required
from portal.blueprints import json_body, paginate_query
from portal.core.exceptions import ValidationError
from portal.middleware.project_access import require_admin, require_project_role
from portal.services import approval, project_service
from portal.services.transitions import validator

project_bp = Blueprint("project_bp", __name__, url_prefix="/api/v1")


@project_bp.route("/projects", methods=["POST"])
@login_required
def create_project():
    """Body: { department, company_name, project_name?, type?, target_audience?, notes? }"""
    project = project_service.create_project(json_body(), current_user())
    return jsonify(project.to_dict(include_members=True)), 201


@project_bp.route("/projects", methods=["GET"])
@login_required
def list_projects():
    q = project_service.list_projects(
        current_user(),
        department=request.args.get("department"),
        status=request.args.get("status"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [p.to_dict() for p in items], "total": total})


@project_bp.route("/projects/<project_id>", methods=["GET"])
@require_project_role()
def get_project(project_id):
    project = project_service.get_project(project_id)
    d = project.to_dict(include_members=True)
    d["valid_next_statuses"] = sorted(validator.valid_transitions(project.department, project.status))
    return jsonify(d)


@project_bp.route("/projects/<project_id>/status", methods=["PATCH"])
@require_admin
def change_status(project_id):
    """Body: { status, artifact_url?, expected_version? }"""
    data = json_body()
    expected_version = data.get("expected_version")
    if expected_version is not None and (
        not isinstance(expected_version, int) or isinstance(expected_version, bool)
    ):
        raise ValidationError("expected_version must be an integer",
                              details={"expected_version": "expected integer"})
    project = project_service.change_status(
        project_id,
        data.get("status"),
        current_user(),
        artifact_url=data.get("artifact_url"),
        expected_version=expected_version,
    )
    return jsonify(project.to_dict())


@project_bp.route("/projects/<project_id>/approve", methods=["POST"])
@require_project_role("owner")
def approve(project_id):
    """Body: { action: approve | request_changes | escalate, message? }"""
    data = json_body()
    result = approval.apply_approval(project_id, data.get("action"), current_user(),
                                     message=data.get("message"))
    return jsonify(result)


@project_bp.route("/projects/<project_id>/narrative/review", methods=["POST"])
@require_project_role("owner")
def review_narrative(project_id):
    """Body: { action: approve | reject | escalate, notes? }"""
    data = json_body()
    result = approval.review_narrative(project_id, data.get("action"), current_user(),
                                       notes=data.get("notes"))
    return jsonify(result)


@project_bp.route("/projects/<project_id>/research/review", methods=["POST"])
@require_project_role("owner")
def review_research(project_id):
    """Body: { action: approve | reject, notes? }"""
    data = json_body()
    result = approval.review_research(project_id, data.get("action"), current_user(),
                                      notes=data.get("notes"))
    return jsonify(result)


@project_bp.route("/projects/<project_id>/references", methods=["GET"])
@require_project_role()
def references(project_id):
    project_service.get_project(project_id)
    return jsonify(project_service.list_references(project_id))
