"""
Department Workflow Portal
Notification Blueprint.

Routes:
  GET    /notifications                – caller's notifications, newest first
  GET    /notifications/unread-count   – { count }
  PATCH  /notifications                – { ids: [...] } or { all: true }, marks caller's own read
"""

from flask import Blueprint, jsonify, request

from portal.auth import current_user, login_required
from portal.blueprints import json_body
from portal.core.exceptions import ValidationError
from portal.services.notification import DEFAULT_LIST_LIMIT, NotificationDispatcher

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
@login_required
def list_notifications():
    try:
        limit = min(int(request.args.get("limit", DEFAULT_LIST_LIMIT)), DEFAULT_LIST_LIMIT)
        offset = max(int(request.args.get("offset", 0)), 0)
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers") from None
    unread_only = request.args.get("unread_only", "false").lower() == "true"

    user = current_user()
    items, total = NotificationDispatcher.list_for_recipient(
        user.id, unread_only=unread_only, limit=max(limit, 0), offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationDispatcher.unread_count(user.id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@login_required
def unread_count():
    return jsonify({"count": NotificationDispatcher.unread_count(current_user().id)})


@notification_bp.route("/notifications", methods=["PATCH"])
@login_required
def mark_read():
    data = json_body()
    user = current_user()
    if data.get("all") is True:
        return jsonify({"updated": NotificationDispatcher.mark_all_read(user.id)})

    ids = data.get("ids")
    if not isinstance(ids, list) or not ids or not all(isinstance(i, str) for i in ids):
        raise ValidationError("ids must be a non-empty list of notification ids",
                              details={"ids": "required"})
    return jsonify({"updated": NotificationDispatcher.mark_read(ids, user.id)})
