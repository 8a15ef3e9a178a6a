"""
tests/unit/test_compute_balances.py — Unit tests for the balance views in
                                      balance_service.

What this file proves:
  - Payer is credited the full amount; each participant is debited their split
  - Group balances sum to zero and include every member, even at zero
  - Payers or participants who are no longer members are ignored
  - The group-filtered global view credits outside-shared expenses in full
  - The global per-friend view nets both directions and drops settled pairs

Unit test constraints:
  - No database. All DB-querying helpers are patched via unittest.mock.
  - No Flask application context.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from splitshare.app.errors import AppError, ErrorCode
from splitshare.app.services.balance_service import (
    compute_balances,
    get_balance_response,
    get_global_balances,
    get_group_balances,
    get_group_filtered_global_balances,
)


# ── Mock factory helpers ───────────────────────────────────────────────────

def _expense(payer: int, amount: str) -> MagicMock:
    e = MagicMock()
    e.payer_id = payer
    e.amount = Decimal(amount)
    return e


def _split(user_id: int, amount: str) -> MagicMock:
    s = MagicMock()
    s.user_id = user_id
    s.amount = Decimal(amount)
    return s


# ── Patch targets ──────────────────────────────────────────────────────────

_PATCH_BASE = "splitshare.app.services.balance_service"
_PATCH_GROUP       = f"{_PATCH_BASE}.get_group"
_PATCH_MEMBER_IDS  = f"{_PATCH_BASE}.get_member_ids"
_PATCH_MEMBERS     = f"{_PATCH_BASE}.get_members"
_PATCH_EXPENSES    = f"{_PATCH_BASE}.get_group_expenses"
_PATCH_SPLITS      = f"{_PATCH_BASE}.get_group_splits"
_PATCH_PAID_BY     = f"{_PATCH_BASE}.get_expenses_paid_by"
_PATCH_PAID_SPLITS = f"{_PATCH_BASE}.get_splits_on_expenses_paid_by"
_PATCH_OWED_TO     = f"{_PATCH_BASE}.get_amounts_owed_to"
_PATCH_OWED_BY     = f"{_PATCH_BASE}.get_amounts_owed_by"
_PATCH_USERS       = f"{_PATCH_BASE}.get_users_by_id"


# ═══════════════════════════════════════════════════════════════════════════
# compute_balances
# ═══════════════════════════════════════════════════════════════════════════

@patch(_PATCH_MEMBER_IDS)
@patch(_PATCH_SPLITS)
@patch(_PATCH_EXPENSES)
def test_payer_credited_split_participants_debited(mock_expenses, mock_splits, mock_member_ids):
    """Alice pays 100, split 60 Alice / 40 Bob → Alice +40, Bob -40."""
    mock_expenses.return_value   = [_expense(payer=1, amount="100.00")]
    mock_splits.return_value     = [_split(1, "60.00"), _split(2, "40.00")]
    mock_member_ids.return_value = [1, 2]

    result = compute_balances(group_id=1, session=MagicMock())

    assert result == {1: Decimal("40.00"), 2: Decimal("-40.00")}
    assert sum(result.values()) == Decimal("0.00")


@patch(_PATCH_MEMBER_IDS)
@patch(_PATCH_SPLITS)
@patch(_PATCH_EXPENSES)
def test_balance_sum_zero_multiple_expenses(mock_expenses, mock_splits, mock_member_ids):
    mock_expenses.return_value = [
        _expense(payer=1, amount="90.00"),
        _expense(payer=2, amount="60.00"),
    ]
    mock_splits.return_value = [
        _split(1, "30.00"), _split(2, "30.00"), _split(3, "30.00"),
        _split(2, "30.00"), _split(3, "30.00"),
    ]
    mock_member_ids.return_value = [1, 2, 3]

    result = compute_balances(group_id=1, session=MagicMock())

    assert result == {1: Decimal("60.00"), 2: Decimal("0.00"), 3: Decimal("-60.00")}
    assert sum(result.values()) == Decimal("0.00")


@patch(_PATCH_MEMBER_IDS)
@patch(_PATCH_SPLITS)
@patch(_PATCH_EXPENSES)
def test_every_member_appears_even_at_zero(mock_expenses, mock_splits, mock_member_ids):
    mock_expenses.return_value   = []
    mock_splits.return_value     = []
    mock_member_ids.return_value = [4, 2, 9]

    result = compute_balances(group_id=1, session=MagicMock())

    assert list(result) == [4, 2, 9]
    assert all(v == Decimal("0.00") for v in result.values())


@patch(_PATCH_MEMBER_IDS)
@patch(_PATCH_SPLITS)
@patch(_PATCH_EXPENSES)
def test_non_members_are_ignored(mock_expenses, mock_splits, mock_member_ids):
    """User 3 paid and owes in the ledger but is not a current member."""
    mock_expenses.return_value = [
        _expense(payer=1, amount="30.00"),
        _expense(payer=3, amount="10.00"),
    ]
    mock_splits.return_value = [
        _split(1, "15.00"), _split(2, "15.00"),
        _split(3, "5.00"), _split(2, "5.00"),
    ]
    mock_member_ids.return_value = [1, 2]

    result = compute_balances(group_id=1, session=MagicMock())

    assert 3 not in result
    assert result == {1: Decimal("15.00"), 2: Decimal("-20.00")}


@patch(_PATCH_GROUP, return_value=None)
def test_group_balances_of_missing_group_are_empty(_mock_group):
    assert get_group_balances(group_id=404, session=MagicMock()) == {}


# ═══════════════════════════════════════════════════════════════════════════
# get_group_filtered_global_balances
# ═══════════════════════════════════════════════════════════════════════════

@patch(_PATCH_PAID_SPLITS)
@patch(_PATCH_PAID_BY)
@patch(_PATCH_MEMBER_IDS)
@patch(_PATCH_GROUP)
def test_filtered_global_credits_full_amount_and_debits_members_only(
    mock_group, mock_member_ids, mock_paid_by, mock_paid_splits
):
    """
    Bob (2) paid 40 elsewhere, shared with outsider Dave; only Bob's own
    20 is debited, so the map sums to +20 instead of zero.
    """
    mock_group.return_value = SimpleNamespace(id=1)
    mock_member_ids.return_value = [1, 2]
    mock_paid_by.return_value = [
        _expense(payer=1, amount="20.00"),
        _expense(payer=2, amount="40.00"),
    ]
    mock_paid_splits.return_value = [
        _split(1, "10.00"), _split(2, "10.00"),
        _split(2, "20.00"),
    ]

    result = get_group_filtered_global_balances(group_id=1, session=MagicMock())

    assert result == {1: Decimal("10.00"), 2: Decimal("10.00")}
    assert sum(result.values()) != Decimal("0.00")


@patch(_PATCH_GROUP, return_value=None)
def test_filtered_global_of_missing_group_is_empty(_mock_group):
    assert get_group_filtered_global_balances(group_id=404, session=MagicMock()) == {}


# ═══════════════════════════════════════════════════════════════════════════
# get_global_balances
# ═══════════════════════════════════════════════════════════════════════════

@patch(_PATCH_USERS)
@patch(_PATCH_OWED_BY)
@patch(_PATCH_OWED_TO)
def test_global_balances_net_both_directions(mock_owed_to, mock_owed_by, mock_users):
    mock_owed_to.return_value = [(2, Decimal("30.00")), (3, Decimal("12.50"))]
    mock_owed_by.return_value = [(2, Decimal("15.00")), (4, Decimal("7.25"))]
    mock_users.return_value = {
        2: SimpleNamespace(id=2, name="Bob"),
        3: SimpleNamespace(id=3, name="Carol"),
        4: SimpleNamespace(id=4, name="Dave"),
    }

    result = get_global_balances(caller_id=1, session=MagicMock())

    assert result == [
        {"friend_id": 2, "friend_name": "Bob", "amount": Decimal("15.00")},
        {"friend_id": 3, "friend_name": "Carol", "amount": Decimal("12.50")},
        {"friend_id": 4, "friend_name": "Dave", "amount": Decimal("-7.25")},
    ]


@patch(_PATCH_USERS)
@patch(_PATCH_OWED_BY)
@patch(_PATCH_OWED_TO)
def test_global_balances_drop_pairs_under_one_cent(mock_owed_to, mock_owed_by, mock_users):
    mock_owed_to.return_value = [(2, Decimal("10.00")), (3, Decimal("5.00"))]
    mock_owed_by.return_value = [(2, Decimal("10.00")), (3, Decimal("4.99"))]
    mock_users.return_value = {3: SimpleNamespace(id=3, name="Carol")}

    result = get_global_balances(caller_id=1, session=MagicMock())

    assert result == [{"friend_id": 3, "friend_name": "Carol", "amount": Decimal("0.01")}]
    assert mock_users.call_args[0][0] == [3]


@patch(_PATCH_USERS, return_value={})
@patch(_PATCH_OWED_BY, return_value=[])
@patch(_PATCH_OWED_TO, return_value=[(5, Decimal("3.00"))])
def test_global_balances_unknown_friend_name(_owed_to, _owed_by, _users):
    result = get_global_balances(caller_id=1, session=MagicMock())

    assert result[0]["friend_name"] == "Unknown"


# ═══════════════════════════════════════════════════════════════════════════
# get_balance_response
# ═══════════════════════════════════════════════════════════════════════════

@patch(_PATCH_SPLITS)
@patch(_PATCH_EXPENSES)
@patch(_PATCH_MEMBER_IDS)
@patch(_PATCH_MEMBERS)
@patch(_PATCH_GROUP)
def test_balance_response_lists_members_with_names(
    mock_group, mock_members, mock_member_ids, mock_expenses, mock_splits
):
    mock_group.return_value = SimpleNamespace(id=1)
    mock_members.return_value = [SimpleNamespace(id=1, name="Alice"), SimpleNamespace(id=2, name="Bob")]
    mock_member_ids.return_value = [1, 2]
    mock_expenses.return_value = [_expense(payer=2, amount="10.00")]
    mock_splits.return_value = [_split(1, "5.00"), _split(2, "5.00")]

    result = get_balance_response(group_id=1, caller_id=1, session=MagicMock())

    assert result == {
        "group_id": 1,
        "balances": [
            {"user_id": 1, "name": "Alice", "balance": Decimal("-5.00")},
            {"user_id": 2, "name": "Bob", "balance": Decimal("5.00")},
        ],
        "balance_sum": Decimal("0.00"),
    }


@patch(_PATCH_MEMBERS)
@patch(_PATCH_GROUP)
def test_balance_response_forbidden_for_non_member(mock_group, mock_members):
    mock_group.return_value = SimpleNamespace(id=1)
    mock_members.return_value = [SimpleNamespace(id=1, name="Alice")]

    with pytest.raises(AppError) as exc_info:
        get_balance_response(group_id=1, caller_id=99, session=MagicMock())

    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


@patch(_PATCH_GROUP, return_value=None)
def test_balance_response_of_missing_group_is_empty(_mock_group):
    result = get_balance_response(group_id=404, caller_id=1, session=MagicMock())

    assert result["balances"] == []
