"""
routes/balances.py — Balance route handlers.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (url_prefix=/api/v1):
  GET /groups/:id/balances   → 200  per-member balances of one group
  GET /balances/global       → 200  caller's net position with every friend
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from splitshare.app.extensions import db
from splitshare.app.middleware.auth_middleware import require_user
from splitshare.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/groups/<int:group_id>/balances", methods=["GET"])
@require_user
def get_group_balances(group_id: int):
    """
    GET /groups/:id/balances

    A group that no longer exists yields an empty list rather than a 404,
    so a client polling a group that was just deleted sees an empty view.
    """
    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/balances/global", methods=["GET"])
@require_user
def get_global_balances():
    """Positive amount = the friend owes the caller; negative = the caller owes."""
    result = balance_service.get_global_balances(
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
