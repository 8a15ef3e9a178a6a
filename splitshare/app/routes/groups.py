"""
routes/groups.py — Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (url_prefix=/api/v1/groups):
  POST   /groups                 → 201  create group
  GET    /groups                 → 200  list caller's groups
  GET    /groups/:id             → 200  get group + admin + members
  DELETE /groups/:id             → 200  delete a settled group (creator only)
  GET    /groups/:id/members     → 200  member list
  POST   /groups/:id/members     → 201  add member by handle or email
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from splitshare.app.extensions import db
from splitshare.app.middleware.auth_middleware import require_user
from splitshare.app.schemas.group_schema import AddMemberSchema, CreateGroupSchema
from splitshare.app.services import group_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
@require_user
def create_group():
    """POST /groups — Create a new group. Caller becomes admin and first member."""
    data = CreateGroupSchema().load(request.get_json(force=True, silent=True) or {})
    result = group_service.create_group(
        name=data["name"],
        creator_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_user
def list_groups():
    """GET /groups — List all groups the authenticated user belongs to."""
    result = group_service.list_groups(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_user
def get_group(group_id: int):
    result = group_service.get_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["DELETE"])
@require_user
def delete_group(group_id: int):
    """DELETE /groups/:id — Only the admin, and only once every balance is settled."""
    group_service.delete_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"deleted": True, "group_id": group_id},
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/members", methods=["GET"])
@require_user
def list_members(group_id: int):
    result = group_service.get_group_members(
        group_id=group_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
@require_user
def add_member(group_id: int):
    """POST /groups/:id/members — Add a registered user by handle or email."""
    data = AddMemberSchema().load(request.get_json(force=True, silent=True) or {})
    result = group_service.add_member(
        group_id=group_id,
        caller_id=g.user_id,
        handle_or_email=data["handle_or_email"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201
