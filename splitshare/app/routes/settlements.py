"""
routes/settlements.py — Settle-up route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (url_prefix=/api/v1):
  GET    /groups/:id/settlements  → 200  balances + local and global payment plans
  POST   /settlements/global      → 201  record a payment to a friend
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from splitshare.app.extensions import db
from splitshare.app.middleware.auth_middleware import require_user
from splitshare.app.schemas.settlement_schema import SettleGlobalDebtSchema
from splitshare.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


@settlements_bp.route("/groups/<int:group_id>/settlements", methods=["GET"])
@require_user
def get_settlement_view(group_id: int):
    result = settlement_service.get_group_settlement_view(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@settlements_bp.route("/settlements/global", methods=["POST"])
@require_user
def settle_global_debt():
    """
    POST /settlements/global — The caller pays `amount` to `friend_id`.

    Recorded as an expense in the earliest group both share; the response
    names that group.
    """
    data = SettleGlobalDebtSchema().load(request.get_json(force=True, silent=True) or {})
    group_name = settlement_service.settle_global_debt(
        caller_id=g.user_id,
        friend_id=data["friend_id"],
        amount=data["amount"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "group_name": group_name,
            "friend_id": data["friend_id"],
            "amount": data["amount"],
        },
        "warnings": [],
    }), 201
