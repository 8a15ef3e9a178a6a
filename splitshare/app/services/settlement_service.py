"""
services/settlement_service.py — Settle-up views and global debt settlement.

Two operations built on balance_service:

  get_group_settlement_view()
      Group balances plus two payment plans: one from the group's own
      ledger ("local") and one from the members' activity across every
      group ("global"). Each local transfer is annotated with the amount
      the global plan has for the same pair.

  settle_global_debt()
      Records a payment from the caller to a friend as an EXACT expense in
      a group they share, which moves their global balance toward zero.
      There is no separate settlement table: a settlement IS an expense.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility; services only flush.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from splitshare.app.errors import ErrorCode, NotFoundError, ValidationError
from splitshare.app.models.expense import SplitType
from splitshare.app.models.group import Group
from splitshare.app.models.membership import Membership
from splitshare.app.models.user import User
from splitshare.app.services import balance_service, expense_service, group_service

logger = logging.getLogger(__name__)


def _empty_view(group_id: int) -> dict:
    return {
        "group_id": group_id,
        "balances": [],
        "local_settlements": [],
        "global_settlements": [],
        "balance_sum": balance_service.ZERO,
    }


def _with_names(plan: list[dict], names: dict[int, str]) -> list[dict]:
    return [
        {
            **transfer,
            "from_name": names.get(transfer["from_user_id"], "Unknown"),
            "to_name": names.get(transfer["to_user_id"], "Unknown"),
        }
        for transfer in plan
    ]


def find_common_group(user_a: int, user_b: int, session: Session) -> Group | None:
    """Earliest-created group (created_at, then id) both users belong to."""
    other = aliased(Membership)
    stmt = (
        select(Group)
        .join(Membership, Membership.group_id == Group.id)
        .join(other, other.group_id == Group.id)
        .where(Membership.user_id == user_a, other.user_id == user_b)
        .order_by(Group.created_at.asc(), Group.id.asc())
        .limit(1)
    )
    return session.execute(stmt).scalars().first()


def get_group_settlement_view(group_id: int, caller_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/settlements.

    Missing group → empty balances and empty plans.
    Existing group → caller must be a member (FORBIDDEN, 403).

    Returns:
        {
          "group_id": int,
          "balances": [{"user_id", "name", "balance"}],   # local, join order
          "local_settlements":  [{"from_user_id", "to_user_id", "amount",
                                  "from_name", "to_name", "global_amount"}],
          "global_settlements": [{"from_user_id", "to_user_id", "amount",
                                  "from_name", "to_name"}],
          "balance_sum": Decimal,                          # of local balances
        }
    """
    if balance_service.get_group(group_id, session) is None:
        return _empty_view(group_id)

    members = balance_service.get_members(group_id, session)
    group_service.require_member(group_id, caller_id, [m.id for m in members])
    names = {m.id: m.name for m in members}

    local_balances = balance_service.get_group_balances(group_id, session)
    global_balances = balance_service.get_group_filtered_global_balances(group_id, session)

    local_plan = balance_service.plan_settlements(local_balances)
    global_plan = balance_service.plan_settlements(global_balances)

    local_settlements = _with_names(local_plan, names)
    for transfer in local_settlements:
        transfer["global_amount"] = balance_service.lookup_pair_amount(
            global_plan, transfer["from_user_id"], transfer["to_user_id"],
        )

    return {
        "group_id": group_id,
        "balances": [
            {"user_id": uid, "name": names.get(uid, "Unknown"), "balance": balance}
            for uid, balance in local_balances.items()
        ],
        "local_settlements": local_settlements,
        "global_settlements": _with_names(global_plan, names),
        "balance_sum": sum(local_balances.values(), balance_service.ZERO),
    }


def settle_global_debt(
        caller_id: int,
        friend_id: int,
        amount: Decimal,
        session: Session,
) -> str:
    """
    Records that the caller paid `amount` to `friend_id`.

    The payment becomes an EXACT expense in the earliest-created group both
    belong to, paid by the caller, with the whole amount owed by the friend.

    Raises:
      ValidationError(INVALID_AMOUNT, 422)  — amount ≤ 0
      ValidationError(SELF_SETTLEMENT, 422) — friend is the caller
      NotFoundError(USER_NOT_FOUND)         — friend does not exist
      NotFoundError(NO_COMMON_GROUP)        — no shared group

    Returns: the name of the group the payment was recorded in.
    """
    if amount <= 0:
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT,
            "Amount must be greater than zero.",
            field="amount",
        )

    if friend_id == caller_id:
        raise ValidationError(
            ErrorCode.SELF_SETTLEMENT,
            "A settlement cannot be made to yourself.",
            field="friend_id",
        )

    friend = session.get(User, friend_id)
    if friend is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {friend_id} does not exist.",
            field="friend_id",
        )

    group = find_common_group(caller_id, friend_id, session)
    if group is None:
        raise NotFoundError(ErrorCode.NO_COMMON_GROUP, "No common group")

    expense_service.record_expense(
        group.id,
        caller_id,
        {
            "amount": amount,
            "description": f"Settlement to {friend.name}",
            "split_type": SplitType.EXACT,
            "split_data": [{"user_id": friend_id, "value": amount}],
            "paid_by": caller_id,
        },
        session,
    )

    logger.info(
        "User %s settled %s with user %s in group %s",
        caller_id, amount, friend_id, group.id,
    )
    return group.name
