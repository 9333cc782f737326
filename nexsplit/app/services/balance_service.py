"""
services/balance_service.py — Balance summary of a nex.

Net balances come from UNSETTLED debts only. They are computed by
settlement_engine.compute_net_balances(), the single place that formula
lives. This module adds the bookkeeping figures around it:

  total_paid   sum of the expenses the member paid for
  total_owed   sum of the member's shares; the payer's own share counts
               only when the expense has is_initial_payer_has set (the
               rule lives in split_calculator.validate_participation)
  net_balance  credited minus debited over open debts (+ is owed, - owes)

Layer rules:
  - No Flask imports. Returns plain dicts and lists.
  - Read-only; never flushes.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from nexsplit.app.models.expense import Expense
from nexsplit.app.money import Money
from nexsplit.app.services import debt_ledger
from nexsplit.app.services.nex_access import (
    get_members,
    get_nex_or_404,
    get_usernames,
    require_member,
)
from nexsplit.app.services.settlement_engine import (
    check_conservation,
    compute_net_balances,
    simplify_debts,
)
from nexsplit.app.services.split_calculator import validate_participation


def compute_paid_and_owed(
        nex_id: int,
        session: Session,
) -> tuple[dict[int, Decimal], dict[int, Decimal], list[Expense]]:
    """Returns ({user_id: total_paid}, {user_id: total_owed}, expenses)."""
    expenses = list(
        session.execute(
            select(Expense)
            .options(selectinload(Expense.splits))
            .where(Expense.nex_id == nex_id)
            .order_by(Expense.expense_date.desc(), Expense.id.desc())
        ).scalars().all()
    )

    paid: dict[int, Decimal] = defaultdict(lambda: Decimal("0.00"))
    owed: dict[int, Decimal] = defaultdict(lambda: Decimal("0.00"))
    for expense in expenses:
        paid[expense.payer_id] += expense.amount
        participation = validate_participation(
            expense.splits,
            expense.payer_id,
            expense.is_initial_payer_has,
        )
        for share in participation.debt_shares:
            owed[share.user_id] += share.amount
        if expense.is_initial_payer_has:
            owed[expense.payer_id] += participation.payer_share

    return dict(paid), dict(owed), expenses


def get_balance_summary(
        nex_id: int,
        caller_id: int,
        session: Session,
        default_currency: str = "USD",
) -> dict:
    """
    Builds the payload for GET /nex/:id/balances.

    Raises:
        AppError(NEX_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)          -- caller not an active member.
        InsufficientBalanceError(500)     -- open debts do not net to zero.
    """
    get_nex_or_404(nex_id, session)
    require_member(nex_id, caller_id, session)

    debts = debt_ledger.list_unsettled_for_group(nex_id, session)
    balances = compute_net_balances(debts)
    check_conservation(balances)

    paid, owed, expenses = compute_paid_and_owed(nex_id, session)

    members = get_members(nex_id, session)
    user_ids = [m.id for m in members]
    # Former members may still hold open debts; they stay visible until square.
    for uid in sorted(set(balances) | set(paid) | set(owed)):
        if uid not in user_ids:
            user_ids.append(uid)
    names = get_usernames(user_ids, session)

    member_rows = [
        {
            "user_id": uid,
            "username": names.get(uid, f"user_{uid}"),
            "total_paid": paid.get(uid, Decimal("0.00")),
            "total_owed": owed.get(uid, Decimal("0.00")),
            "net_balance": balances.get(uid, Decimal("0.00")),
        }
        for uid in user_ids
    ]

    simplified = [
        {
            "from_user_id": t["from_user_id"],
            "from_name": names.get(t["from_user_id"], f"user_{t['from_user_id']}"),
            "to_user_id": t["to_user_id"],
            "to_name": names.get(t["to_user_id"], f"user_{t['to_user_id']}"),
            "amount": t["amount"],
        }
        for t in simplify_debts(balances)
    ]

    currency = expenses[0].currency if expenses else default_currency
    total_expenses = Money.total(
        (Money.exact(e.amount, e.currency) for e in expenses),
        currency,
    )

    return {
        "nex_id": nex_id,
        "currency": currency,
        "total_expenses": total_expenses.amount,
        "members": member_rows,
        "simplified_debts": simplified,
        "balance_sum": sum(balances.values(), Decimal("0.00")),
    }
