"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1/groups: every expense path is group-scoped.
Expenses are immutable, so there are no per-expense update/delete routes.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints:
  POST   /groups/:id/expenses   → 201  record expense
  GET    /groups/:id/expenses   → 200  history, newest first
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from splitshare.app.extensions import db
from splitshare.app.middleware.auth_middleware import require_user
from splitshare.app.models.expense import Expense
from splitshare.app.schemas.expense_schema import CreateExpenseSchema
from splitshare.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


def _serialize_created(expense: Expense) -> dict:
    """Expense plus its splits. Amounts become strings via the JSON provider."""
    result = expense_service.serialize_expense(expense, expense.payer.name if expense.payer else None)
    result["splits"] = [
        {"user_id": s.user_id, "amount": s.amount}
        for s in expense.splits
    ]
    return result


@expenses_bp.route("/<int:group_id>/expenses", methods=["POST"])
@require_user
def record_expense(group_id: int):
    """POST /groups/:id/expenses — Record an EQUAL, EXACT or PERCENT expense."""
    data = CreateExpenseSchema().load(request.get_json(force=True, silent=True) or {})
    expense = expense_service.record_expense(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_created(expense), "warnings": []}), 201


@expenses_bp.route("/<int:group_id>/expenses", methods=["GET"])
@require_user
def list_expenses(group_id: int):
    result = expense_service.get_expense_history(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
