"""
Unit tests for settlement_service: the group settle-up view and the
pre-checks of settle_global_debt.

balance_service lookups are patched; the planner itself runs for real.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from splitshare.app.errors import AppError, ErrorCode
from splitshare.app.models.expense import SplitType
from splitshare.app.services import settlement_service


_PATCH_BASE = "splitshare.app.services.balance_service"
_PATCH_GROUP    = f"{_PATCH_BASE}.get_group"
_PATCH_MEMBERS  = f"{_PATCH_BASE}.get_members"
_PATCH_LOCAL    = f"{_PATCH_BASE}.get_group_balances"
_PATCH_FILTERED = f"{_PATCH_BASE}.get_group_filtered_global_balances"


def _members(*pairs) -> list[SimpleNamespace]:
    return [SimpleNamespace(id=uid, name=name) for uid, name in pairs]


# ── get_group_settlement_view ──────────────────────────────────────────────

@patch(_PATCH_FILTERED)
@patch(_PATCH_LOCAL)
@patch(_PATCH_MEMBERS)
@patch(_PATCH_GROUP)
def test_view_annotates_local_transfers_with_global_amount(
    mock_group, mock_members, mock_local, mock_filtered
):
    mock_group.return_value = SimpleNamespace(id=1)
    mock_members.return_value = _members((1, "Alice"), (2, "Bob"), (3, "Carol"))
    mock_local.return_value = {1: Decimal("20.00"), 2: Decimal("-10.00"), 3: Decimal("-10.00")}
    # Bob is owed 10 from outside the group, so globally only Carol pays.
    mock_filtered.return_value = {1: Decimal("20.00"), 2: Decimal("0.00"), 3: Decimal("-10.00")}

    view = settlement_service.get_group_settlement_view(group_id=1, caller_id=1, session=MagicMock())

    assert view["local_settlements"] == [
        {"from_user_id": 2, "to_user_id": 1, "amount": Decimal("10.00"),
         "from_name": "Bob", "to_name": "Alice", "global_amount": Decimal("0.00")},
        {"from_user_id": 3, "to_user_id": 1, "amount": Decimal("10.00"),
         "from_name": "Carol", "to_name": "Alice", "global_amount": Decimal("10.00")},
    ]
    assert view["global_settlements"] == [
        {"from_user_id": 3, "to_user_id": 1, "amount": Decimal("10.00"),
         "from_name": "Carol", "to_name": "Alice"},
    ]
    assert view["balance_sum"] == Decimal("0.00")
    assert [b["name"] for b in view["balances"]] == ["Alice", "Bob", "Carol"]


@patch(_PATCH_MEMBERS)
@patch(_PATCH_GROUP)
def test_view_forbidden_for_non_member(mock_group, mock_members):
    mock_group.return_value = SimpleNamespace(id=1)
    mock_members.return_value = _members((1, "Alice"))

    with pytest.raises(AppError) as exc_info:
        settlement_service.get_group_settlement_view(group_id=1, caller_id=5, session=MagicMock())

    assert exc_info.value.code == ErrorCode.FORBIDDEN


@patch(_PATCH_GROUP, return_value=None)
def test_view_of_missing_group_is_empty(_mock_group):
    view = settlement_service.get_group_settlement_view(group_id=404, caller_id=1, session=MagicMock())

    assert view["balances"] == []
    assert view["local_settlements"] == []
    assert view["global_settlements"] == []


# ── settle_global_debt ─────────────────────────────────────────────────────

def test_settle_rejects_non_positive_amount():
    session = MagicMock()

    with pytest.raises(AppError) as exc_info:
        settlement_service.settle_global_debt(1, 2, Decimal("0"), session)

    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT
    session.get.assert_not_called()


def test_settle_rejects_self():
    with pytest.raises(AppError) as exc_info:
        settlement_service.settle_global_debt(1, 1, Decimal("5.00"), MagicMock())

    assert exc_info.value.code == ErrorCode.SELF_SETTLEMENT


def test_settle_unknown_friend():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        settlement_service.settle_global_debt(1, 2, Decimal("5.00"), session)

    assert exc_info.value.code == ErrorCode.USER_NOT_FOUND
    assert exc_info.value.http_status == 404


@patch("splitshare.app.services.settlement_service.find_common_group", return_value=None)
def test_settle_without_common_group(_mock_find):
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=2, name="Bob")

    with pytest.raises(AppError) as exc_info:
        settlement_service.settle_global_debt(1, 2, Decimal("5.00"), session)

    assert exc_info.value.code == ErrorCode.NO_COMMON_GROUP
    assert exc_info.value.message == "No common group"


@patch("splitshare.app.services.expense_service.record_expense")
@patch("splitshare.app.services.settlement_service.find_common_group")
def test_settle_records_exact_expense_in_common_group(mock_find, mock_record):
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=2, name="Bob")
    mock_find.return_value = SimpleNamespace(id=8, name="Trip")

    group_name = settlement_service.settle_global_debt(1, 2, Decimal("12.50"), session)

    assert group_name == "Trip"
    mock_record.assert_called_once_with(
        8,
        1,
        {
            "amount": Decimal("12.50"),
            "description": "Settlement to Bob",
            "split_type": SplitType.EXACT,
            "split_data": [{"user_id": 2, "value": Decimal("12.50")}],
            "paid_by": 1,
        },
        session,
    )
