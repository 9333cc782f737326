"""
Unit tests for expense_service and nex_access helpers.

DB-free: the session is a MagicMock and membership lookups are patched.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from nexsplit.app.errors import AppError, ErrorCode, InvalidInputError, SplitMismatchError
from nexsplit.app.models.expense import SplitType
from nexsplit.app.models.nex import MemberRole
from nexsplit.app.services import expense_service, nex_access


def _mock_scalars_all(session: MagicMock, rows: list) -> None:
    session.execute.return_value.scalars.return_value.all.return_value = rows


# ── nex_access ─────────────────────────────────────────────────────────────

def test_get_nex_or_404_raises_when_missing():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        nex_access.get_nex_or_404(nex_id=404, session=session)

    err = exc_info.value
    assert err.code == ErrorCode.NEX_NOT_FOUND
    assert err.http_status == 404


def test_lock_nex_raises_when_missing():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(AppError) as exc_info:
        nex_access.lock_nex(nex_id=404, session=session)

    assert exc_info.value.code == ErrorCode.NEX_NOT_FOUND


def test_require_member_raises_forbidden_when_missing():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(AppError) as exc_info:
        nex_access.require_member(nex_id=1, user_id=999, session=session)

    err = exc_info.value
    assert err.code == ErrorCode.FORBIDDEN
    assert err.http_status == 403


def test_get_member_ids_reads_scalars():
    session = MagicMock()
    _mock_scalars_all(session, [1, 2, 3])

    assert nex_access.get_member_ids(nex_id=7, session=session) == [1, 2, 3]
    session.execute.assert_called_once()


def test_get_usernames_skips_query_for_no_ids():
    session = MagicMock()

    assert nex_access.get_usernames([], session) == {}
    session.execute.assert_not_called()


# ── Lookups and membership rules ───────────────────────────────────────────

def test_get_expense_or_404_raises_when_missing():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        expense_service._get_expense_or_404(expense_id=404, session=session)

    err = exc_info.value
    assert err.code == ErrorCode.EXPENSE_NOT_FOUND
    assert err.http_status == 404


def test_validate_payer_is_member_raises_for_non_member():
    with pytest.raises(AppError) as exc_info:
        expense_service._validate_payer_is_member(payer_id=5, nex_id=1, member_ids=[1, 2, 3])

    err = exc_info.value
    assert err.code == ErrorCode.PAYER_NOT_MEMBER
    assert err.http_status == 422
    assert err.field == "payerId"


def test_validate_split_users_are_members_raises_on_first_invalid_user():
    splits = [{"user_id": 1}, {"user_id": 9}, {"user_id": 8}]

    with pytest.raises(AppError) as exc_info:
        expense_service._validate_split_users_are_members(splits, nex_id=1, member_ids=[1, 2])

    err = exc_info.value
    assert err.code == ErrorCode.SPLIT_USER_NOT_MEMBER
    assert "9" in err.message


@pytest.mark.parametrize("caller_id, role", [
    (1, MemberRole.MEMBER),   # payer
    (2, MemberRole.MEMBER),   # creator
    (3, MemberRole.ADMIN),    # admin
])
def test_require_editor_allows_payer_creator_and_admin(caller_id, role):
    expense = SimpleNamespace(nex_id=1, payer_id=1, created_by=2)
    membership = SimpleNamespace(is_admin=role == MemberRole.ADMIN)

    with patch.object(expense_service, "require_member", return_value=membership):
        expense_service._require_editor(expense, caller_id, MagicMock())


def test_require_editor_refuses_other_members():
    expense = SimpleNamespace(nex_id=1, payer_id=1, created_by=2)

    with patch.object(expense_service, "require_member", return_value=SimpleNamespace(is_admin=False)):
        with pytest.raises(AppError) as exc_info:
            expense_service._require_editor(expense, 4, MagicMock())

    assert exc_info.value.code == ErrorCode.FORBIDDEN


# ── compute_shares ─────────────────────────────────────────────────────────

def test_equal_split_without_splits_uses_all_members():
    data = {"amount": Decimal("100.00"), "split_type": SplitType.EQUALLY, "splits": []}

    shares = expense_service.compute_shares(data, member_ids=[4, 5, 6])

    assert [(s.user_id, s.amount) for s in shares] == [
        (4, Decimal("33.34")),
        (5, Decimal("33.33")),
        (6, Decimal("33.33")),
    ]


def test_equal_split_with_splits_uses_only_those_users():
    data = {
        "amount": Decimal("90.00"),
        "split_type": SplitType.EQUALLY,
        "splits": [{"user_id": 5}, {"user_id": 6}],
    }

    shares = expense_service.compute_shares(data, member_ids=[4, 5, 6])

    assert [(s.user_id, s.amount) for s in shares] == [(5, Decimal("45.00")), (6, Decimal("45.00"))]


def test_compute_shares_rejects_non_positive_amount():
    with pytest.raises(InvalidInputError) as exc_info:
        expense_service.compute_shares({"amount": Decimal("0")}, member_ids=[1])
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT


def test_compute_shares_uses_default_currency():
    data = {"amount": Decimal("1000"), "split_type": SplitType.EQUALLY, "splits": []}

    shares = expense_service.compute_shares(data, member_ids=[1, 2, 3], default_currency="JPY")

    assert [s.amount for s in shares] == [Decimal("334"), Decimal("333"), Decimal("333")]


def test_compute_shares_propagates_sum_mismatch():
    data = {
        "amount": Decimal("100.00"),
        "split_type": SplitType.AMOUNT,
        "splits": [{"user_id": 1, "amount": Decimal("10.00")}],
    }

    with pytest.raises(SplitMismatchError):
        expense_service.compute_shares(data, member_ids=[1])


def test_preview_split_needs_participants():
    with pytest.raises(InvalidInputError) as exc_info:
        expense_service.preview_split({"amount": Decimal("10.00"), "splits": []})
    assert exc_info.value.code == ErrorCode.EMPTY_PARTICIPANTS


def test_preview_split_percentage():
    data = {
        "amount": Decimal("10.00"),
        "split_type": SplitType.PERCENTAGE,
        "splits": [
            {"user_id": 1, "percentage": Decimal("33.33")},
            {"user_id": 2, "percentage": Decimal("33.33")},
            {"user_id": 3, "percentage": Decimal("33.34")},
        ],
    }

    shares = expense_service.preview_split(data)

    assert [s.amount for s in shares] == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]


# ── Write paths stop before writing ────────────────────────────────────────

def test_create_expense_refuses_non_member_payer_before_writing():
    session = MagicMock()
    data = {"title": "Taxi", "amount": Decimal("20.00"), "payer_id": 9, "splits": []}

    with patch.object(expense_service, "lock_nex"), \
            patch.object(expense_service, "require_member"), \
            patch.object(expense_service, "get_member_ids", return_value=[1, 2]):
        with pytest.raises(AppError) as exc_info:
            expense_service.create_expense(nex_id=1, caller_id=1, data=data, session=session)

    assert exc_info.value.code == ErrorCode.PAYER_NOT_MEMBER
    session.add.assert_not_called()


def test_expense_in_another_currency_is_refused():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = "USD"

    with pytest.raises(InvalidInputError) as exc_info:
        expense_service._require_nex_currency(1, "JPY", session)

    err = exc_info.value
    assert err.code == ErrorCode.CURRENCY_MISMATCH
    assert err.http_status == 400
    assert err.field == "currency"


def test_expense_in_the_nex_currency_is_accepted():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    expense_service._require_nex_currency(1, "USD", session, exclude_expense_id=7)

    session.execute.assert_called_once()


def test_delete_expense_missing_raises_not_found():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        expense_service.delete_expense(expense_id=404, caller_id=1, session=session)

    assert exc_info.value.code == ErrorCode.EXPENSE_NOT_FOUND
    session.delete.assert_not_called()
