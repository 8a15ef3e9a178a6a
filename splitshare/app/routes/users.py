"""
routes/users.py — User registration and directory route handlers.

Endpoints (url_prefix=/api/v1/users):
  POST   /users/me   → 200  upsert the caller from their token claims
  GET    /users/me   → 200  the caller's stored profile
  GET    /users      → 200  every registered user
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from splitshare.app.extensions import db
from splitshare.app.middleware.auth_middleware import require_auth, require_user
from splitshare.app.services import user_service

users_bp = Blueprint("users", __name__)


@users_bp.route("/me", methods=["POST"])
@require_auth
def store_me():
    """
    POST /users/me — Idempotent. Only needs a valid token, not an existing
    user row, since this is how the row gets created.
    """
    user = user_service.store_user(g.identity, db.session)
    db.session.commit()
    return jsonify({"data": user_service.serialize_user(user), "warnings": []}), 200


@users_bp.route("/me", methods=["GET"])
@require_auth
def get_me():
    user = user_service.resolve_caller(g.token_identifier, db.session)
    return jsonify({"data": user_service.serialize_user(user), "warnings": []}), 200


@users_bp.route("/", methods=["GET"])
@require_user
def list_users():
    result = user_service.list_users(db.session)
    return jsonify({"data": result, "warnings": []}), 200
