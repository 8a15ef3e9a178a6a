"""
services/balance_service.py — Balance computation and settlement planning.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
The formulas must not be reimplemented elsewhere in the codebase.

Three views of the same ledger:
  - group view            get_group_balances()
  - global per-friend     get_global_balances()
  - group-filtered global get_group_filtered_global_balances()

and one pure planner, plan_settlements(), that turns any balance map into
a short list of transfers.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives ids (int) and session (SQLAlchemy Session) as arguments.
  - Returns plain Python dicts and lists.
  - Balances are recomputed from expenses and splits on every call;
    nothing is cached.

Sign convention: positive = the user is owed money, negative = owes money.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from splitshare.app.errors import AuthError, ErrorCode
from splitshare.app.models.expense import Expense
from splitshare.app.models.group import Group
from splitshare.app.models.membership import Membership
from splitshare.app.models.split import Split
from splitshare.app.models.user import User

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# Amounts at or below one cent are treated as settled.
SETTLED_TOLERANCE = Decimal("0.01")


# ── Data access helpers ────────────────────────────────────────────────────
# The only sanctioned ways to read ledger rows for balance purposes.
# Unit tests patch these to run without a database.

def get_group(group_id: int, session: Session) -> Group | None:
    return session.get(Group, group_id)


def get_member_ids(group_id: int, session: Session) -> list[int]:
    """User ids of the current members of a group, in join order."""
    stmt = (
        select(Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at, Membership.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_members(group_id: int, session: Session) -> list[User]:
    """Full User objects for the current members of a group, in join order."""
    stmt = (
        select(User)
        .join(Membership, User.id == Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at, Membership.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_group_expenses(group_id: int, session: Session) -> list[Expense]:
    stmt = select(Expense).where(Expense.group_id == group_id)
    return list(session.execute(stmt).scalars().all())


def get_group_splits(group_id: int, session: Session) -> list[Split]:
    """Splits of every expense in the group (Split → Expense join)."""
    stmt = (
        select(Split)
        .join(Expense, Split.expense_id == Expense.id)
        .where(Expense.group_id == group_id)
    )
    return list(session.execute(stmt).scalars().all())


def get_amounts_owed_to(caller_id: int, session: Session) -> list[tuple[int, Decimal]]:
    """
    (participant_id, split_amount) for every split of another user on an
    expense the caller paid, across all groups.
    """
    stmt = (
        select(Split.user_id, Split.amount)
        .join(Expense, Split.expense_id == Expense.id)
        .where(Expense.payer_id == caller_id, Split.user_id != caller_id)
    )
    return [(row[0], row[1]) for row in session.execute(stmt).all()]


def get_amounts_owed_by(caller_id: int, session: Session) -> list[tuple[int, Decimal]]:
    """
    (payer_id, split_amount) for every split of the caller on an expense
    someone else paid, across all groups.
    """
    stmt = (
        select(Expense.payer_id, Split.amount)
        .join(Split, Split.expense_id == Expense.id)
        .where(Split.user_id == caller_id, Expense.payer_id != caller_id)
    )
    return [(row[0], row[1]) for row in session.execute(stmt).all()]


def get_expenses_paid_by(user_ids: list[int], session: Session) -> list[Expense]:
    """Every expense in the system whose payer is one of `user_ids`."""
    if not user_ids:
        return []
    stmt = select(Expense).where(Expense.payer_id.in_(user_ids))
    return list(session.execute(stmt).scalars().all())


def get_splits_on_expenses_paid_by(user_ids: list[int], session: Session) -> list[Split]:
    """Splits owed by one of `user_ids` on expenses also paid by one of `user_ids`."""
    if not user_ids:
        return []
    stmt = (
        select(Split)
        .join(Expense, Split.expense_id == Expense.id)
        .where(Expense.payer_id.in_(user_ids), Split.user_id.in_(user_ids))
    )
    return list(session.execute(stmt).scalars().all())


def get_users_by_id(user_ids: list[int], session: Session) -> dict[int, User]:
    if not user_ids:
        return {}
    stmt = select(User).where(User.id.in_(user_ids))
    return {user.id: user for user in session.execute(stmt).scalars().all()}


# ── Ledger views ───────────────────────────────────────────────────────────

def compute_balances(group_id: int, session: Session) -> dict[int, Decimal]:
    """
    Canonical balance computation for an existing group.

    Returns {user_id: net_balance} for every current member, in join order.

    Algorithm:
      1. Every member starts at 0.00.
      2. Credit each payer for the full expense amount they fronted.
      3. Debit each participant for their split amount.

    Payers or participants who are not current members are ignored.
    When every expense satisfies sum(splits) == amount the result sums to 0.
    """
    balances: dict[int, Decimal] = {
        member_id: ZERO for member_id in get_member_ids(group_id, session)
    }

    for expense in get_group_expenses(group_id, session):
        if expense.payer_id in balances:
            balances[expense.payer_id] += expense.amount

    for split in get_group_splits(group_id, session):
        if split.user_id in balances:
            balances[split.user_id] -= split.amount

    return balances


def get_group_balances(group_id: int, session: Session) -> dict[int, Decimal]:
    """
    Group-scoped balances. A missing (e.g. just deleted) group yields {}
    instead of an error so that readers racing a delete see an empty view.
    """
    if get_group(group_id, session) is None:
        return {}
    return compute_balances(group_id, session)


def get_global_balances(caller_id: int, session: Session) -> list[dict]:
    """
    Net position between the caller and every other user, across all
    groups (group boundaries, including deleted ones, are ignored).

    Returns [{"friend_id", "friend_name", "amount"}] ordered by friend id.
    Positive amount = the friend owes the caller; negative = the caller
    owes the friend. Pairs whose |net| is under one cent are omitted.
    """
    net: dict[int, Decimal] = {}

    for participant_id, amount in get_amounts_owed_to(caller_id, session):
        net[participant_id] = net.get(participant_id, ZERO) + amount

    for payer_id, amount in get_amounts_owed_by(caller_id, session):
        net[payer_id] = net.get(payer_id, ZERO) - amount

    open_ids = sorted(uid for uid, value in net.items() if abs(value) >= SETTLED_TOLERANCE)
    users = get_users_by_id(open_ids, session)

    return [
        {
            "friend_id": uid,
            "friend_name": users[uid].name if uid in users else "Unknown",
            "amount": net[uid].quantize(ZERO),
        }
        for uid in open_ids
    ]


def get_group_filtered_global_balances(group_id: int, session: Session) -> dict[int, Decimal]:
    """
    Network-wide balances restricted to the members of one group.

    Considers every expense in the system (any group) whose payer is a
    current member of this group:
      - the payer is credited the FULL expense amount;
      - only splits owed by current members are debited.

    The credit side is not filtered to members while the debit side is, so
    an expense shared with outsiders leaves a positive residue and the map
    need not sum to zero. This mirrors how the group settlement view has
    always behaved and is kept on purpose.

    Missing group → {}.
    """
    if get_group(group_id, session) is None:
        return {}

    member_ids = get_member_ids(group_id, session)
    balances: dict[int, Decimal] = {member_id: ZERO for member_id in member_ids}

    for expense in get_expenses_paid_by(member_ids, session):
        balances[expense.payer_id] += expense.amount

    for split in get_splits_on_expenses_paid_by(member_ids, session):
        balances[split.user_id] -= split.amount

    return balances


def get_balance_response(group_id: int, caller_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Missing group → empty balance list. Existing group → caller must be a
    member (FORBIDDEN, 403).
    """
    if get_group(group_id, session) is None:
        return {"group_id": group_id, "balances": [], "balance_sum": ZERO}

    members = get_members(group_id, session)
    if caller_id not in {m.id for m in members}:
        raise AuthError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )

    names = {m.id: m.name for m in members}
    balances = compute_balances(group_id, session)

    return {
        "group_id": group_id,
        "balances": [
            {"user_id": uid, "name": names.get(uid, "Unknown"), "balance": balance}
            for uid, balance in balances.items()
        ],
        "balance_sum": sum(balances.values(), ZERO),
    }


# ── Settlement planner ─────────────────────────────────────────────────────

def plan_settlements(balances: dict[int, Decimal]) -> list[dict]:
    """
    Greedy debtor/creditor sweep producing a short list of transfers.

    Args:
        balances: {user_id: net_balance}. Expected to sum to ~0; any
                  residue is left unreported.

    Algorithm:
      1. Debtors: balance < -0.01 (owing the magnitude).
         Creditors: balance > 0.01.
         Both ordered by ascending user id, so equal input always yields
         the same plan.
      2. Match the current debtor with the current creditor for
         min(debt, credit); emit the transfer if it is over one cent.
      3. Advance whichever side (or both) is within one cent of zero.
      4. Stop when either side runs out.

    For N users with non-zero balances this emits at most N-1 transfers.

    Returns:
        [{"from_user_id": int, "to_user_id": int, "amount": Decimal}]
    """
    debtors = sorted(
        [[uid, -amount] for uid, amount in balances.items() if amount < -SETTLED_TOLERANCE],
        key=lambda entry: entry[0],
    )
    creditors = sorted(
        [[uid, amount] for uid, amount in balances.items() if amount > SETTLED_TOLERANCE],
        key=lambda entry: entry[0],
    )

    transfers: list[dict] = []
    i = j = 0

    while i < len(debtors) and j < len(creditors):
        debtor_id, debt = debtors[i]
        creditor_id, credit = creditors[j]

        amount = min(debt, credit)
        if amount > SETTLED_TOLERANCE:
            transfers.append({
                "from_user_id": debtor_id,
                "to_user_id": creditor_id,
                "amount": amount.quantize(ZERO),
            })

        debtors[i][1] = debt - amount
        creditors[j][1] = credit - amount

        if debtors[i][1] <= SETTLED_TOLERANCE:
            i += 1
        if creditors[j][1] <= SETTLED_TOLERANCE:
            j += 1

    logger.debug("Planned %d transfer(s) for %d balance(s)", len(transfers), len(balances))
    return transfers


def lookup_pair_amount(plan: list[dict], from_user_id: int, to_user_id: int) -> Decimal:
    """Amount of the (from → to) transfer in `plan`, or 0.00 when there is none."""
    total = ZERO
    for transfer in plan:
        if transfer["from_user_id"] == from_user_id and transfer["to_user_id"] == to_user_id:
            total += transfer["amount"]
    return total
