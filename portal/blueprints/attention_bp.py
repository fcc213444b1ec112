"""
Department Workflow Portal
Attention Blueprint.

Routes:
  GET    /attention   – ranked action items for the caller: { items, total }
"""

from flask import Blueprint, jsonify

from portal.auth import current_user, login_required
from portal.services.attention import AttentionAggregator

attention_bp = Blueprint("attention_bp", __name__, url_prefix="/api/v1")

aggregator = AttentionAggregator()


@attention_bp.route("/attention", methods=["GET"])
@login_required
def attention():
    items = aggregator.get_attention_items(current_user())
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})
