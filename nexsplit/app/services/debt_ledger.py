"""
services/debt_ledger.py — Turns computed splits into Debt rows and back.

  generate_debts            one UNSETTLED debt per non-payer with a positive share
  retract_debts             removes an expense's debts; refuses once any is settled
  list_unsettled_for_group  the open ledger of a nex, oldest first
  list_debts_for_expense    every debt an expense produced, including split-off
                            pieces and re-routed debts that carry its id

Layer rules:
  - No Flask imports.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from nexsplit.app.errors import ConflictError, ErrorCode
from nexsplit.app.models.debt import Debt, DebtStatus
from nexsplit.app.models.expense import Expense
from nexsplit.app.services.split_calculator import SplitShare, validate_participation

log = logging.getLogger(__name__)


def generate_debts(
        expense: Expense,
        splits: Sequence[SplitShare],
        session: Session,
) -> list[Debt]:
    """
    Creates the debts an expense implies: debtor = participant, creditor =
    payer. The payer's own share and zero shares produce nothing.
    """
    participation = validate_participation(
        splits,
        expense.payer_id,
        expense.is_initial_payer_has,
    )

    debts = [
        Debt(
            nex_id=expense.nex_id,
            expense_id=expense.id,
            debtor_id=share.user_id,
            creditor_id=expense.payer_id,
            amount=share.amount,
            status=DebtStatus.UNSETTLED,
        )
        for share in participation.debt_shares
    ]
    session.add_all(debts)
    session.flush()

    log.debug(
        "Generated %d debts for expense %s",
        len(debts),
        expense.id,
        extra={"expense_id": expense.id, "nex_id": expense.nex_id},
    )
    return debts


def list_debts_for_expense(expense_id: int, session: Session) -> list[Debt]:
    stmt = (
        select(Debt)
        .where(Debt.expense_id == expense_id)
        .order_by(Debt.created_at, Debt.id)
    )
    return list(session.execute(stmt).scalars().all())


def list_unsettled_for_group(group_id: int, session: Session) -> list[Debt]:
    """UNSETTLED debts of a nex, oldest first. This is the FIFO order settlements consume."""
    stmt = (
        select(Debt)
        .where(
            Debt.nex_id == group_id,
            Debt.status == DebtStatus.UNSETTLED,
        )
        .order_by(Debt.created_at, Debt.id)
    )
    return list(session.execute(stmt).scalars().all())


def retract_debts(expense_id: int, session: Session) -> int:
    """
    Deletes every debt of an expense so it can be recomputed or removed.

    Raises ConflictError (409) if any of them is SETTLED. Settled debts are
    history and are never un-settled as a side effect of an edit.

    Returns the number of debts removed.
    """
    debts = list_debts_for_expense(expense_id, session)

    settled = [d for d in debts if d.status == DebtStatus.SETTLED]
    if settled:
        raise ConflictError(
            ErrorCode.EXPENSE_HAS_SETTLED_DEBTS,
            f"Expense {expense_id} has {len(settled)} settled debt(s) and can no "
            f"longer be changed or deleted.",
        )

    # Children first so the self-referencing FK never blocks the delete.
    ids = [d.id for d in debts]
    if ids:
        session.execute(
            delete(Debt)
            .where(Debt.id.in_(ids), Debt.parent_debt_id.is_not(None))
            .execution_options(synchronize_session="fetch")
        )
        session.execute(
            delete(Debt)
            .where(Debt.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        session.flush()

    log.debug("Retracted %d debts for expense %s", len(ids), expense_id)
    return len(ids)
