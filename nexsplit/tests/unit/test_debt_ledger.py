"""
tests/unit/test_debt_ledger.py — Debt generation and retraction with a mocked session.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from nexsplit.app.errors import ConflictError, ErrorCode
from nexsplit.app.models.debt import DebtStatus
from nexsplit.app.services import debt_ledger
from nexsplit.app.services.split_calculator import compute_equal_split


def _expense(payer_id: int = 1, payer_has: bool = True) -> SimpleNamespace:
    return SimpleNamespace(id=10, nex_id=5, payer_id=payer_id, is_initial_payer_has=payer_has)


def test_generate_debts_one_per_non_payer():
    session = MagicMock()
    shares = compute_equal_split(Decimal("100.00"), [1, 2, 3])

    debts = debt_ledger.generate_debts(_expense(payer_id=1), shares, session)

    assert [(d.debtor_id, d.creditor_id, d.amount) for d in debts] == [
        (2, 1, Decimal("33.33")),
        (3, 1, Decimal("33.33")),
    ]
    assert all(d.status == DebtStatus.UNSETTLED for d in debts)
    assert all(d.expense_id == 10 and d.nex_id == 5 for d in debts)
    session.add_all.assert_called_once_with(debts)
    session.flush.assert_called_once()


def test_generate_debts_ignores_payer_share_flag():
    """The flag changes bookkeeping only; the payer never owes themselves."""
    shares = compute_equal_split(Decimal("90.00"), [1, 2])

    debts = debt_ledger.generate_debts(_expense(payer_id=1, payer_has=False), shares, MagicMock())

    assert [(d.debtor_id, d.amount) for d in debts] == [(2, Decimal("45.00"))]


def test_generate_debts_for_payer_outside_the_split():
    shares = compute_equal_split(Decimal("10.00"), [2, 3])

    debts = debt_ledger.generate_debts(_expense(payer_id=1), shares, MagicMock())

    assert [(d.debtor_id, d.amount) for d in debts] == [(2, Decimal("5.00")), (3, Decimal("5.00"))]


def test_retract_refuses_once_anything_is_settled():
    settled = SimpleNamespace(id=1, status=DebtStatus.SETTLED)
    open_debt = SimpleNamespace(id=2, status=DebtStatus.UNSETTLED)
    session = MagicMock()

    with patch.object(debt_ledger, "list_debts_for_expense", return_value=[settled, open_debt]):
        with pytest.raises(ConflictError) as exc_info:
            debt_ledger.retract_debts(10, session)

    err = exc_info.value
    assert err.code == ErrorCode.EXPENSE_HAS_SETTLED_DEBTS
    assert err.http_status == 409
    session.execute.assert_not_called()


def test_retract_deletes_open_debts():
    debts = [
        SimpleNamespace(id=1, status=DebtStatus.UNSETTLED),
        SimpleNamespace(id=2, status=DebtStatus.UNSETTLED),
    ]
    session = MagicMock()

    with patch.object(debt_ledger, "list_debts_for_expense", return_value=debts):
        removed = debt_ledger.retract_debts(10, session)

    assert removed == 2
    assert session.execute.call_count == 2


def test_retract_with_no_debts_writes_nothing():
    session = MagicMock()

    with patch.object(debt_ledger, "list_debts_for_expense", return_value=[]):
        assert debt_ledger.retract_debts(10, session) == 0

    session.execute.assert_not_called()
