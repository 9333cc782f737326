"""
services/expense_service.py — Expense business logic.

Every write follows the same sequence inside the request transaction:
lock the nex row, check membership, run the split calculator, then write the
expense, its splits and its debts. The route commits once.

Rules enforced here (shape rules live in schemas/expense.py):
  PAYER_NOT_MEMBER (422)          — payer must be an active member
  SPLIT_USER_NOT_MEMBER (422)     — every split user must be an active member
  SPLIT_SUM_MISMATCH / PERCENTAGE_SUM_MISMATCH (422) — from the calculator
  CURRENCY_MISMATCH (400)         — every expense of a nex uses one currency
  EXPENSE_HAS_SETTLED_DEBTS (409) — update/delete after any debt was settled
  FORBIDDEN (403)                 — non-members; edits by anyone other than
                                    the payer, the creator or a nex admin

EQUALLY without a splits list divides among all active members in join
order. Updates replace the expense wholesale: old debts are retracted, splits
recomputed, debts regenerated.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from nexsplit.app.errors import AppError, ErrorCode, InvalidInputError
from nexsplit.app.models.expense import Expense, SplitType
from nexsplit.app.models.split import Split
from nexsplit.app.money import DEFAULT_CURRENCY
from nexsplit.app.services import debt_ledger
from nexsplit.app.services.nex_access import (
    get_member_ids,
    get_nex_or_404,
    lock_nex,
    require_member,
)
from nexsplit.app.services.split_calculator import (
    SplitShare,
    compute_splits,
    strategy_from_input,
)

log = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _validate_payer_is_member(payer_id: int, nex_id: int, member_ids: list[int]) -> None:
    if payer_id not in member_ids:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {payer_id} is not a member of nex {nex_id}.",
            422,
            field="payerId",
        )


def _validate_split_users_are_members(
        splits: list[dict],
        nex_id: int,
        member_ids: list[int],
) -> None:
    member_set = set(member_ids)
    for split in splits:
        if split["user_id"] not in member_set:
            raise AppError(
                ErrorCode.SPLIT_USER_NOT_MEMBER,
                f"User {split['user_id']} is not a member of nex {nex_id}.",
                422,
                field="splits",
            )


def _require_nex_currency(
        nex_id: int,
        currency: str,
        session: Session,
        exclude_expense_id: int | None = None,
) -> None:
    """A nex is netted in one currency: the one its other expenses already use."""
    stmt = select(Expense.currency).where(
        Expense.nex_id == nex_id,
        Expense.currency != currency,
    )
    if exclude_expense_id is not None:
        stmt = stmt.where(Expense.id != exclude_expense_id)
    existing = session.execute(stmt.limit(1)).scalar_one_or_none()
    if existing is not None:
        raise InvalidInputError(
            ErrorCode.CURRENCY_MISMATCH,
            f"Nex {nex_id} already records expenses in {existing}; "
            f"{currency} expenses cannot be added to it.",
            field="currency",
        )


def _require_editor(expense: Expense, caller_id: int, session: Session) -> None:
    """Only the payer, the creator or a nex admin may change an expense."""
    membership = require_member(expense.nex_id, caller_id, session)
    if caller_id in (expense.payer_id, expense.created_by) or membership.is_admin:
        return
    raise AppError(
        ErrorCode.FORBIDDEN,
        "Only the payer, the creator or a nex admin may change this expense.",
        403,
    )


def compute_shares(
        data: dict,
        member_ids: list[int] | None,
        default_currency: str = DEFAULT_CURRENCY,
) -> list[SplitShare]:
    """
    Runs the split calculator for a validated payload.

    `member_ids` supplies the participants of an EQUALLY split sent without
    a splits list; pass None where membership is unknown (split preview).
    """
    amount: Decimal = data["amount"]
    if amount <= 0:
        raise InvalidInputError(
            ErrorCode.INVALID_AMOUNT,
            "Expense amount must be greater than zero.",
            field="amount",
        )

    currency = data.get("currency") or default_currency
    split_type = SplitType(data.get("split_type") or SplitType.EQUALLY)
    splits = data.get("splits") or []

    if split_type == SplitType.EQUALLY and not splits and member_ids is not None:
        splits = [{"user_id": uid} for uid in member_ids]

    strategy = strategy_from_input(split_type, splits)
    return compute_splits(amount, strategy, currency)


def _write_splits(expense: Expense, shares: list[SplitShare], session: Session) -> None:
    for share in shares:
        session.add(Split(
            expense=expense,
            user_id=share.user_id,
            position=share.position,
            share_value=share.share_value,
            percentage=share.percentage,
            amount=share.amount,
        ))
    session.flush()


def _prepare(
        nex_id: int,
        data: dict,
        session: Session,
        default_currency: str,
) -> list[SplitShare]:
    """Membership checks plus split computation; raises before any write."""
    member_ids = get_member_ids(nex_id, session)
    _validate_payer_is_member(data["payer_id"], nex_id, member_ids)
    _validate_split_users_are_members(data.get("splits") or [], nex_id, member_ids)
    return compute_shares(data, member_ids, default_currency)


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        nex_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        default_currency: str = DEFAULT_CURRENCY,
) -> Expense:
    """
    Records a new expense with its splits and debts.

    Args:
        nex_id:    The nex this expense belongs to.
        caller_id: The authenticated user creating the expense (from flask.g).
        data:      Validated dict from CreateExpenseSchema.

    Returns:
        The newly created Expense ORM object (with splits loaded).
    """
    lock_nex(nex_id, session)
    require_member(nex_id, caller_id, session)

    shares = _prepare(nex_id, data, session, default_currency)
    currency = (data.get("currency") or default_currency).upper()
    _require_nex_currency(nex_id, currency, session)

    expense = Expense(
        nex_id=nex_id,
        title=data["title"],
        description=data.get("description"),
        amount=data["amount"],
        currency=currency,
        category_id=data.get("category_id"),
        payer_id=data["payer_id"],
        created_by=caller_id,
        split_type=SplitType(data.get("split_type") or SplitType.EQUALLY),
        is_initial_payer_has=data.get("is_initial_payer_has", True),
        expense_date=data.get("expense_date") or date.today(),
    )
    session.add(expense)
    session.flush()  # populate expense.id before creating splits and debts

    _write_splits(expense, shares, session)
    debts = debt_ledger.generate_debts(expense, shares, session)

    session.refresh(expense)
    log.info(
        "Created expense %s in nex %s: %s %s split %s",
        expense.id,
        nex_id,
        expense.amount,
        expense.currency,
        expense.split_type.value,
        extra={"expense_id": expense.id, "nex_id": nex_id, "debts": len(debts)},
    )
    return expense


def list_expenses(
        nex_id: int,
        caller_id: int,
        session: Session,
        category_id: int | None = None,
        payer_id: int | None = None,
) -> list[Expense]:
    """Expenses of a nex, newest expense date first, optionally filtered."""
    get_nex_or_404(nex_id, session)
    require_member(nex_id, caller_id, session)

    stmt = select(Expense).where(Expense.nex_id == nex_id)
    if category_id is not None:
        stmt = stmt.where(Expense.category_id == category_id)
    if payer_id is not None:
        stmt = stmt.where(Expense.payer_id == payer_id)
    stmt = stmt.order_by(Expense.expense_date.desc(), Expense.id.desc())

    return list(session.execute(stmt).scalars().all())


def get_expense(expense_id: int, caller_id: int, session: Session) -> Expense:
    """Returns a single expense including its splits. Members only."""
    expense = _get_expense_or_404(expense_id, session)
    require_member(expense.nex_id, caller_id, session)
    return expense


def update_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        default_currency: str = DEFAULT_CURRENCY,
) -> Expense:
    """
    Replaces an expense and recomputes its splits and debts.

    Refuses with EXPENSE_HAS_SETTLED_DEBTS (409) once any of its debts has
    been settled; settled history is never rewritten.
    """
    expense = _get_expense_or_404(expense_id, session)
    lock_nex(expense.nex_id, session)
    _require_editor(expense, caller_id, session)

    shares = _prepare(expense.nex_id, data, session, default_currency)
    currency = (data.get("currency") or default_currency).upper()
    _require_nex_currency(expense.nex_id, currency, session, exclude_expense_id=expense.id)

    debt_ledger.retract_debts(expense.id, session)
    expense.splits.clear()  # delete-orphan removes the rows
    session.flush()

    expense.title = data["title"]
    expense.description = data.get("description")
    expense.amount = data["amount"]
    expense.currency = currency
    expense.category_id = data.get("category_id")
    expense.payer_id = data["payer_id"]
    expense.split_type = SplitType(data.get("split_type") or SplitType.EQUALLY)
    expense.is_initial_payer_has = data.get("is_initial_payer_has", True)
    expense.expense_date = data.get("expense_date") or expense.expense_date
    expense.updated_at = datetime.now(timezone.utc)
    session.flush()

    _write_splits(expense, shares, session)
    debt_ledger.generate_debts(expense, shares, session)

    session.refresh(expense)
    log.info(
        "Updated expense %s in nex %s",
        expense.id,
        expense.nex_id,
        extra={"expense_id": expense.id, "nex_id": expense.nex_id},
    )
    return expense


def delete_expense(expense_id: int, caller_id: int, session: Session) -> None:
    """
    Deletes an expense together with its splits and debts.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
        ConflictError(EXPENSE_HAS_SETTLED_DEBTS, 409)
    """
    expense = _get_expense_or_404(expense_id, session)
    nex_id = expense.nex_id
    lock_nex(nex_id, session)
    _require_editor(expense, caller_id, session)

    removed = debt_ledger.retract_debts(expense.id, session)
    session.delete(expense)
    session.flush()

    log.info(
        "Deleted expense %s in nex %s",
        expense_id,
        nex_id,
        extra={"expense_id": expense_id, "nex_id": nex_id, "debts_removed": removed},
    )


def preview_split(data: dict, default_currency: str = DEFAULT_CURRENCY) -> list[SplitShare]:
    """Runs the calculator without touching the database."""
    return compute_shares(data, None, default_currency)
