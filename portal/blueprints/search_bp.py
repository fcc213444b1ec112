"""
Department Workflow Portal
Search & Reporting Blueprint.

Routes:
  GET    /search?q=                – projects (scoped) and active trend clusters
  GET    /departments/overview     – per-department counts (admin)
"""

from flask import Blueprint, current_app, jsonify, request

from portal.auth import current_user, login_required
from portal.middleware.project_access import require_admin
from portal.services import project_service

search_bp = Blueprint("search_bp", __name__, url_prefix="/api/v1")


@search_bp.route("/search", methods=["GET"])
@login_required
def search():
    result = project_service.search(
        request.args.get("q", ""),
        current_user(),
        trends_visible_to_all=current_app.config.get("ATTENTION_TRENDS_VISIBLE_TO_ALL", True),
    )
    return jsonify(result)


@search_bp.route("/departments/overview", methods=["GET"])
@require_admin
def departments_overview():
    return jsonify(project_service.departments_overview())
