"""
services/expense_service.py — Expense business logic.

Rules enforced here:
  INVALID_AMOUNT (422)          — amount must be > 0
  GROUP_NOT_FOUND (404)         — the group must exist
  FORBIDDEN (403)               — caller must be a current member
  PAYER_NOT_MEMBER (422)        — an explicit paid_by must be a current member
  MISSING_SPLIT_DATA (422)      — EXACT / PERCENT need split_data
  INVALID_SPLIT_VALUE (422)     — EXACT values ≥ 0, PERCENT values in [0, 100]
  SPLIT_SUM_MISMATCH (422)      — EXACT: |Σ values − amount| ≤ 0.01
  PERCENT_SUM_MISMATCH (422)    — PERCENT: |Σ values − 100| ≤ 0.1
  SPLIT_USER_NOT_MEMBER (422)   — every participant must be a current member
  DUPLICATE_SPLIT_USER (400)    — a participant may appear once

Split computation:
  EQUAL    every current member (payer included) owes amount / n, truncated
           to cents; the leftover cent(s) go to the payer's share.
  EXACT    each value is the participant's share; an accepted gap of up to
           a cent is absorbed by the largest share so Σ shares == amount.
  PERCENT  amount × value / 100, rounded half-up to cents; the rounding
           residue is absorbed by the largest share so Σ shares == amount.

Atomicity:
  Everything is validated before anything is added to the session. The
  expense and its splits are then added together and flushed once; the
  route commits. Expenses are never updated afterwards.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility; services only flush.
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP

from sqlalchemy import select
from sqlalchemy.orm import Session

from splitshare.app.errors import AppError, ErrorCode, NotFoundError, ValidationError
from splitshare.app.models.expense import Expense, SplitType
from splitshare.app.models.split import Split
from splitshare.app.models.user import User
from splitshare.app.services import balance_service, group_service

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

EXACT_SUM_TOLERANCE = Decimal("0.01")
PERCENT_SUM_TOLERANCE = Decimal("0.1")


# ── Split computation ──────────────────────────────────────────────────────

def _compute_equal_splits(
        amount: Decimal,
        participant_ids: list[int],
        payer_id: int,
) -> list[dict]:
    """
    Divides amount evenly among all participants using ROUND_DOWN.
    The remainder (under n cents) is added to the payer's split.
    Guarantees: sum(result amounts) == amount.

    Args:
        amount:          The full expense amount. Must be Decimal.
        participant_ids: All current group members, in join order.
        payer_id:        The user_id of the person who paid. Receives the remainder.

    Returns:
        List of {"user_id": int, "amount": Decimal} dicts.
    """
    n = len(participant_ids)
    base = (amount / Decimal(n)).quantize(CENT, rounding=ROUND_DOWN)
    remainder = amount - (base * n)

    splits = [{"user_id": uid, "amount": base} for uid in participant_ids]

    if remainder > Decimal("0"):
        # The payer is always a member; fall back to the first participant anyway.
        payer_split = next(
            (s for s in splits if s["user_id"] == payer_id),
            splits[0],
        )
        payer_split["amount"] += remainder

    computed_sum = sum((s["amount"] for s in splits), Decimal("0"))
    if computed_sum != amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split computation produced sum {computed_sum} for amount {amount}.",
            500,
        )

    return splits


def _compute_exact_splits(amount: Decimal, split_data: list[dict], payer_id: int) -> list[dict]:
    """
    Each value is an absolute share. Σ values must be within 0.01 of amount.

    The accepted gap (amount − Σ values) lands on the largest share, first one
    wins on ties, so Σ shares == amount. When every share is zero the gap goes
    to the payer instead.
    """
    for entry in split_data:
        if entry["value"] < 0:
            raise ValidationError(
                ErrorCode.INVALID_SPLIT_VALUE,
                f"Split value for user {entry['user_id']} must not be negative.",
                field="split_data",
            )

    total = sum((entry["value"] for entry in split_data), Decimal("0"))
    if abs(total - amount) > EXACT_SUM_TOLERANCE:
        raise ValidationError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            "Splits don't match total",
            field="split_data",
        )

    splits = [{"user_id": entry["user_id"], "amount": entry["value"]} for entry in split_data]

    residue = amount - total
    if residue != 0:
        largest = max(splits, key=lambda s: s["amount"])
        if largest["amount"] == 0:
            largest = next((s for s in splits if s["user_id"] == payer_id), None)
            if largest is None:
                largest = {"user_id": payer_id, "amount": Decimal("0")}
                splits.append(largest)
        largest["amount"] += residue

    return splits


def _compute_percent_splits(amount: Decimal, split_data: list[dict]) -> list[dict]:
    """
    Each value is a percentage of amount. Σ values must be within 0.1 of 100.

    Shares are rounded half-up to cents and the residue (amount − Σ shares)
    lands on the largest share, first one wins on ties.
    """
    for entry in split_data:
        if entry["value"] < 0 or entry["value"] > HUNDRED:
            raise ValidationError(
                ErrorCode.INVALID_SPLIT_VALUE,
                f"Percentage for user {entry['user_id']} must be between 0 and 100.",
                field="split_data",
            )

    total = sum((entry["value"] for entry in split_data), Decimal("0"))
    if abs(total - HUNDRED) > PERCENT_SUM_TOLERANCE:
        raise ValidationError(
            ErrorCode.PERCENT_SUM_MISMATCH,
            "Percentages must equal 100",
            field="split_data",
        )

    splits = [
        {
            "user_id": entry["user_id"],
            "amount": (amount * entry["value"] / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP),
        }
        for entry in split_data
    ]

    residue = amount - sum((s["amount"] for s in splits), Decimal("0"))
    if residue != 0:
        largest = max(splits, key=lambda s: s["amount"])
        largest["amount"] += residue

    return splits


def compute_splits(
        split_type: SplitType,
        amount: Decimal,
        member_ids: list[int],
        payer_id: int,
        split_data: list[dict] | None,
) -> list[dict]:
    """
    Turns an expense request into per-participant obligations.

    Pure function: membership is passed in, nothing is read or written.

    Returns:
        List of {"user_id": int, "amount": Decimal} dicts.
    """
    if split_type == SplitType.EQUAL:
        # split_data is ignored: an equal split always covers every member.
        return _compute_equal_splits(amount, member_ids, payer_id)

    if not split_data:
        raise ValidationError(
            ErrorCode.MISSING_SPLIT_DATA,
            "Missing split data",
            field="split_data",
        )

    user_ids = [entry["user_id"] for entry in split_data]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError(
            ErrorCode.DUPLICATE_SPLIT_USER,
            "The same user_id appears more than once in split_data.",
            400,
            field="split_data",
        )

    member_set = set(member_ids)
    for uid in user_ids:
        if uid not in member_set:
            raise ValidationError(
                ErrorCode.SPLIT_USER_NOT_MEMBER,
                f"User {uid} is not a member of this group.",
                field="split_data",
            )

    if split_type == SplitType.EXACT:
        return _compute_exact_splits(amount, split_data, payer_id)
    return _compute_percent_splits(amount, split_data)


# ── Public service functions ───────────────────────────────────────────────

def record_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Records a new expense and its splits for a group.

    Args:
        group_id:  The group this expense belongs to.
        caller_id: The authenticated user recording the expense (from flask.g).
        data:      Validated dict from CreateExpenseSchema:
                   amount, description, split_type, split_data?, paid_by?

    Returns:
        The newly created Expense ORM object (splits attached, id assigned).
    """
    amount: Decimal = data["amount"]
    if amount <= 0:
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT,
            "Amount must be greater than zero.",
            field="amount",
        )

    if balance_service.get_group(group_id, session) is None:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )

    member_ids = balance_service.get_member_ids(group_id, session)
    group_service.require_member(group_id, caller_id, member_ids)

    payer_id = data.get("paid_by") or caller_id
    if payer_id not in member_ids:
        raise ValidationError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {payer_id} is not a member of group {group_id}.",
            field="paid_by",
        )

    split_type = SplitType(data["split_type"])
    splits = compute_splits(split_type, amount, member_ids, payer_id, data.get("split_data"))

    # Nothing touches the session until every check above has passed.
    expense = Expense(
        group_id=group_id,
        payer_id=payer_id,
        amount=amount,
        description=data["description"].strip(),
        split_type=split_type,
    )
    expense.splits = [Split(user_id=s["user_id"], amount=s["amount"]) for s in splits]
    session.add(expense)
    session.flush()

    logger.info(
        "Recorded expense %s in group %s: %s %s paid by user %s across %d split(s)",
        expense.id, group_id, split_type.value, amount, payer_id, len(splits),
    )
    return expense


def get_expense_history(group_id: int, caller_id: int, session: Session) -> list[dict]:
    """
    Expenses of a group, newest first.

    Missing group → []. Existing group → caller must be a member.
    """
    if balance_service.get_group(group_id, session) is None:
        return []

    member_ids = balance_service.get_member_ids(group_id, session)
    group_service.require_member(group_id, caller_id, member_ids)

    stmt = (
        select(Expense, User.name)
        .outerjoin(User, User.id == Expense.payer_id)
        .where(Expense.group_id == group_id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    )
    return [
        serialize_expense(expense, payer_name)
        for expense, payer_name in session.execute(stmt).all()
    ]


def serialize_expense(expense: Expense, payer_name: str | None = None) -> dict:
    """Plain-dict view of an expense. payer_name falls back to "Unknown"."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "description": expense.description,
        "amount": expense.amount,
        "payer_id": expense.payer_id,
        "payer_name": payer_name or "Unknown",
        "split_type": SplitType(expense.split_type).value,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
    }
