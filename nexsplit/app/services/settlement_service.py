"""
services/settlement_service.py — Settlement business logic.

Wires the pure algorithms in settlement_engine.py to the debts table.

  get_available_settlements  transfers that would settle the nex right now
  execute_settlements        settles all of them, or the ones picked by id
  get_settlement_history     SETTLED debts, newest first, paginated
  get_settlement_summary     counts and amounts, settled vs open
  get_settlement_analytics   the same plus average time-to-settle
  get_user_settlement_*      history, summary and analytics of one user
                             across all of their nexes

Nex rules:
  - The settlement type defaults to the nex's configured type, then to
    DEFAULT_SETTLEMENT_TYPE when the nex has none.
  - In a PERSONAL nex a member only sees transfers they are part of, and
    only an ADMIN may settle everything at once.

Atomicity: every selected id is resolved before the first write. The route
commits once; any exception rolls the whole request back.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from nexsplit.app.errors import AppError, ErrorCode, InvalidInputError
from nexsplit.app.models.debt import Debt, DebtStatus
from nexsplit.app.models.expense import Expense
from nexsplit.app.models.nex import Nex, NexType, SettlementType
from nexsplit.app.money import DEFAULT_CURRENCY, Money
from nexsplit.app.services import debt_ledger
from nexsplit.app.services.nex_access import (
    get_nex_or_404,
    get_usernames,
    lock_nex,
    require_member,
)
from nexsplit.app.services.settlement_engine import (
    SettlementTransfer,
    TransferStatus,
    build_transfers,
    close_zero_net_cycles,
    consume_transfer,
    debt_money,
)

log = logging.getLogger(__name__)


@dataclass
class SettlementExecution:
    executed: list[SettlementTransfer]
    remaining: list[SettlementTransfer]
    total_settled_amount: Decimal
    settled_debt_count: int

    @property
    def settled_count(self) -> int:
        return len(self.executed)

    @property
    def remaining_count(self) -> int:
        return len(self.remaining)


class _LedgerSink:
    """Creates split-off and compensating Debt rows for the engine."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def split(self, debt: Debt, settled_amount: Decimal) -> Debt:
        rest = Debt(
            nex_id=debt.nex_id,
            expense=debt.expense,
            debtor_id=debt.debtor_id,
            creditor_id=debt.creditor_id,
            amount=debt.amount - settled_amount,
            status=DebtStatus.UNSETTLED,
            parent=debt,
            created_at=debt.created_at,  # keeps its FIFO position
        )
        debt.amount = settled_amount
        self.session.add(rest)
        return rest

    def open(self, debtor_id: int, creditor_id: int, amount: Decimal, source: Debt) -> Debt:
        rerouted = Debt(
            nex_id=source.nex_id,
            expense=source.expense,
            debtor_id=debtor_id,
            creditor_id=creditor_id,
            amount=amount,
            status=DebtStatus.UNSETTLED,
            parent=source,
        )
        self.session.add(rerouted)
        return rerouted


# ── Private helpers ────────────────────────────────────────────────────────

def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _resolve_type(
        nex: Nex,
        requested: SettlementType | str | None,
        default: SettlementType | str = SettlementType.DETAILED,
) -> SettlementType:
    """The request wins, then the nex setting, then the configured default."""
    if requested is not None:
        return SettlementType(requested)
    if nex.settlement_type is not None:
        return SettlementType(nex.settlement_type)
    return SettlementType(default)


def _visible_transfers(
        nex: Nex,
        caller_id: int,
        settlement_type: SettlementType,
        session: Session,
) -> list[SettlementTransfer]:
    debts = debt_ledger.list_unsettled_for_group(nex.id, session)
    transfers = build_transfers(nex.id, debts, settlement_type)
    if nex.nex_type == NexType.PERSONAL:
        transfers = [t for t in transfers if t.involves(caller_id)]
    return transfers


def _select_transfers(
        nex: Nex,
        caller_id: int,
        settlement_type: SettlementType,
        data: dict,
        is_admin: bool,
        session: Session,
) -> tuple[list[SettlementTransfer], bool]:
    """
    Resolves the request into concrete transfers before anything is written.
    Returns (selected, settle_all).
    """
    settle_all = bool(data.get("settle_all"))
    transfer_ids = data.get("transfer_ids") or []

    if settle_all == bool(transfer_ids):
        raise InvalidInputError(
            ErrorCode.INVALID_SETTLEMENT_SELECTION,
            "Send either settleAll=true or a non-empty transferIds list, not both.",
            field="transferIds",
        )
    if len(set(transfer_ids)) != len(transfer_ids):
        raise InvalidInputError(
            ErrorCode.INVALID_SETTLEMENT_SELECTION,
            "transferIds must not contain duplicates.",
            field="transferIds",
        )

    personal = nex.nex_type == NexType.PERSONAL

    if settle_all:
        if personal and not is_admin:
            raise AppError(
                ErrorCode.SETTLEMENT_DENIED,
                "Only an admin can settle everything in a personal nex.",
                403,
            )
        debts = debt_ledger.list_unsettled_for_group(nex.id, session)
        return build_transfers(nex.id, debts, settlement_type), True

    debts = debt_ledger.list_unsettled_for_group(nex.id, session)
    by_id = {t.id: t for t in build_transfers(nex.id, debts, settlement_type)}

    selected = []
    for tid in transfer_ids:
        transfer = by_id.get(tid)
        if transfer is None:
            raise AppError(
                ErrorCode.SETTLEMENT_NOT_FOUND,
                f"No pending {settlement_type.value} settlement with id {tid} in nex {nex.id}.",
                404,
            )
        if personal and not is_admin and not transfer.involves(caller_id):
            raise AppError(
                ErrorCode.SETTLEMENT_DENIED,
                f"You are not a party to settlement {tid}.",
                403,
            )
        selected.append(transfer)
    return selected, False


def _mark_settled(debts: list[Debt], settled_at: datetime, data: dict) -> None:
    for debt in debts:
        debt.status = DebtStatus.SETTLED
        debt.settled_at = settled_at
        debt.payment_method = data.get("payment_method")
        debt.notes = data.get("notes")


# ── Public service functions ───────────────────────────────────────────────

def get_available_settlements(
        nex_id: int,
        caller_id: int,
        settlement_type: SettlementType | str | None,
        session: Session,
        default_type: SettlementType | str = SettlementType.DETAILED,
) -> tuple[SettlementType, list[SettlementTransfer]]:
    """
    Lists the transfers that would settle the nex with the current debts.
    Nothing is written.

    Raises:
        AppError(NEX_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403) -- caller is not an active member.
    """
    nex = get_nex_or_404(nex_id, session)
    require_member(nex_id, caller_id, session)

    resolved = _resolve_type(nex, settlement_type, default_type)
    return resolved, _visible_transfers(nex, caller_id, resolved, session)


def execute_settlements(
        nex_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        default_type: SettlementType | str = SettlementType.DETAILED,
) -> SettlementExecution:
    """
    Settles the selected transfers.

    Args:
        data: Validated dict from ExecuteSettlementSchema with keys
              settlement_type, settle_all, transfer_ids, payment_method,
              notes, settlement_date.

    DETAILED transfers settle exactly their debt. SIMPLIFIED transfers
    consume debts FIFO through settlement_engine.consume_transfer(); a
    settle-all also closes whatever zero-net cycles remain afterwards.

    Raises:
        AppError(NEX_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)                 -- not an active member
        AppError(SETTLEMENT_DENIED, 403)         -- personal nex restrictions
        AppError(SETTLEMENT_NOT_FOUND, 404)      -- unknown or stale transfer id
        InvalidInputError(INVALID_SETTLEMENT_SELECTION, 400)
        InsufficientBalanceError(500)            -- ledger inconsistency
    """
    nex = lock_nex(nex_id, session)
    membership = require_member(nex_id, caller_id, session)

    settlement_type = _resolve_type(nex, data.get("settlement_type"), default_type)
    selected, settle_all = _select_transfers(
        nex, caller_id, settlement_type, data, membership.is_admin, session,
    )

    settled_at = _as_utc(data.get("settlement_date")) or datetime.now(timezone.utc)
    open_debts = debt_ledger.list_unsettled_for_group(nex_id, session)

    covered_by_transfer: list[list[Debt]] = []
    if settlement_type == SettlementType.DETAILED:
        by_id = {str(d.id): d for d in open_debts}
        covered_by_transfer = [[by_id[t.id]] for t in selected]
    else:
        sink = _LedgerSink(session)
        for transfer in selected:
            covered_by_transfer.append(consume_transfer(transfer, open_debts, sink))

    all_covered = [d for covered in covered_by_transfer for d in covered]
    if settle_all and settlement_type == SettlementType.SIMPLIFIED:
        all_covered.extend(close_zero_net_cycles(open_debts))

    _mark_settled(all_covered, settled_at, data)
    session.flush()

    for transfer, covered in zip(selected, covered_by_transfer):
        transfer.status = TransferStatus.EXECUTED
        transfer.executed_at = settled_at
        transfer.related_debt_ids = [d.id for d in covered]

    remaining = _visible_transfers(nex, caller_id, settlement_type, session)
    total = sum((t.amount for t in selected), Decimal("0.00"))

    log.info(
        "Executed %d %s settlement(s) totalling %s in nex %s",
        len(selected),
        settlement_type.value,
        total,
        nex_id,
        extra={
            "nex_id": nex_id,
            "caller_id": caller_id,
            "settled_debts": len(all_covered),
            "settle_all": settle_all,
        },
    )

    return SettlementExecution(
        executed=selected,
        remaining=remaining,
        total_settled_amount=total,
        settled_debt_count=len(all_covered),
    )


# ── Reports ────────────────────────────────────────────────────────────────
#
# A SIMPLIFIED transfer between users with no debt between them re-routes
# debt through compensating rows. Those rows move existing obligations; they
# add no new money, so report totals count only the rows expenses produced
# (including split-off pieces). Row counts satisfy
#   total_debts + rerouted_debts == settled_debts + unsettled_debts
# and settled_amount == total_amount - unsettled_amount.

def _is_rerouted(debt: Debt) -> bool:
    """True for a compensating debt, or a split-off piece of one."""
    node = debt
    while node.parent is not None:
        if (node.parent.debtor_id, node.parent.creditor_id) != (debt.debtor_id, debt.creditor_id):
            return True
        node = node.parent
    return False


def _require_self(user_id: int, caller_id: int) -> None:
    if user_id != caller_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You can only view your own settlements.",
            403,
        )


def _history_page(conditions: list, page: int, size: int, session: Session) -> dict:
    """One page of SETTLED debts matching `conditions`, most recently settled first."""
    conditions = [Debt.status == DebtStatus.SETTLED, *conditions]

    total = session.execute(
        select(func.count()).select_from(Debt).where(*conditions)
    ).scalar_one()

    stmt = (
        select(Debt, Expense.title, Expense.currency)
        .join(Expense, Debt.expense_id == Expense.id)
        .where(*conditions)
        .order_by(Debt.settled_at.desc(), Debt.id.desc())
        .limit(size)
        .offset((page - 1) * size)
    )
    rows = session.execute(stmt).all()

    names = get_usernames(
        [d.debtor_id for d, _, _ in rows] + [d.creditor_id for d, _, _ in rows],
        session,
    )

    items = []
    for debt, expense_title, currency in rows:
        settled_at = _as_utc(debt.settled_at)
        created_at = _as_utc(debt.created_at)
        hours = None
        if settled_at is not None and created_at is not None:
            hours = round((settled_at - created_at).total_seconds() / 3600, 2)
        items.append({
            "debt_id": debt.id,
            "nex_id": debt.nex_id,
            "debtor_id": debt.debtor_id,
            "debtor_name": names.get(debt.debtor_id, f"user_{debt.debtor_id}"),
            "creditor_id": debt.creditor_id,
            "creditor_name": names.get(debt.creditor_id, f"user_{debt.creditor_id}"),
            "amount": debt.amount,
            "currency": currency,
            "expense_id": debt.expense_id,
            "expense_title": expense_title,
            "payment_method": debt.payment_method,
            "notes": debt.notes,
            "settled_at": settled_at,
            "settlement_hours": hours,
        })

    return {
        "items": items,
        "page": page,
        "size": size,
        "total": total,
        "pages": math.ceil(total / size) if size else 0,
    }


def _debt_rows(nex_id: int, session: Session) -> list[Debt]:
    stmt = (
        select(Debt)
        .options(selectinload(Debt.parent), selectinload(Debt.expense))
        .where(Debt.nex_id == nex_id)
    )
    return list(session.execute(stmt).scalars().all())


def _user_debt_rows(user_id: int, session: Session) -> list[Debt]:
    stmt = (
        select(Debt)
        .options(selectinload(Debt.parent), selectinload(Debt.expense))
        .where((Debt.debtor_id == user_id) | (Debt.creditor_id == user_id))
    )
    return list(session.execute(stmt).scalars().all())


def _counts(debts: list[Debt]) -> dict:
    settled = [d for d in debts if d.status == DebtStatus.SETTLED]
    rerouted = sum(1 for d in debts if _is_rerouted(d))

    settled_dates = [_as_utc(d.settled_at) for d in settled if d.settled_at is not None]
    durations = [
        (_as_utc(d.settled_at) - _as_utc(d.created_at)).total_seconds() / 3600
        for d in settled
        if d.settled_at is not None and d.created_at is not None
    ]

    return {
        "total_debts": len(debts) - rerouted,
        "rerouted_debts": rerouted,
        "settled_debts": len(settled),
        "unsettled_debts": len(debts) - len(settled),
        "last_settlement_date": max(settled_dates) if settled_dates else None,
        "average_settlement_time_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
    }


def _amounts(debts: list[Debt], currency: str) -> dict:
    """Amount figures over `debts`, all of which are in `currency`."""
    total = Money.total((debt_money(d) for d in debts if not _is_rerouted(d)), currency)
    unsettled = Money.total(
        (debt_money(d) for d in debts if d.status == DebtStatus.UNSETTLED),
        currency,
    )
    return {
        "currency": currency,
        "total_amount": total.amount,
        "settled_amount": (total - unsettled).amount,
        "unsettled_amount": unsettled.amount,
    }


def _amounts_by_currency(debts: list[Debt]) -> list[dict]:
    groups: dict[str, list[Debt]] = {}
    for debt in debts:
        groups.setdefault(debt_money(debt).currency, []).append(debt)
    return [_amounts(groups[code], code) for code in sorted(groups)]


def _nex_figures(nex_id: int, caller_id: int, session: Session) -> tuple[dict, dict]:
    get_nex_or_404(nex_id, session)
    require_member(nex_id, caller_id, session)

    debts = _debt_rows(nex_id, session)
    currency = debt_money(debts[0]).currency if debts else DEFAULT_CURRENCY
    return _counts(debts), _amounts(debts, currency)


# ── Nex reports ────────────────────────────────────────────────────────────

def get_settlement_history(
        nex_id: int,
        caller_id: int,
        page: int,
        size: int,
        session: Session,
) -> dict:
    """
    SETTLED debts of a nex, most recently settled first.

    In a PERSONAL nex the caller only sees debts they were a party to.
    `page` is 1-based.
    """
    nex = get_nex_or_404(nex_id, session)
    require_member(nex_id, caller_id, session)

    conditions = [Debt.nex_id == nex_id]
    if nex.nex_type == NexType.PERSONAL:
        conditions.append((Debt.debtor_id == caller_id) | (Debt.creditor_id == caller_id))
    return _history_page(conditions, page, size, session)


def get_settlement_summary(nex_id: int, caller_id: int, session: Session) -> dict:
    """Debt counts and amounts of a nex, split into settled and open."""
    counts, amounts = _nex_figures(nex_id, caller_id, session)
    return {
        "nex_id": nex_id,
        "currency": amounts["currency"],
        "total_debts": counts["total_debts"],
        "rerouted_debts": counts["rerouted_debts"],
        "settled_debts": counts["settled_debts"],
        "unsettled_debts": counts["unsettled_debts"],
        "total_amount": amounts["total_amount"],
        "settled_amount": amounts["settled_amount"],
        "unsettled_amount": amounts["unsettled_amount"],
        "last_settlement_date": counts["last_settlement_date"],
    }


def get_settlement_analytics(nex_id: int, caller_id: int, session: Session) -> dict:
    """Settlement counts, totals and the average hours from debt to settlement."""
    counts, amounts = _nex_figures(nex_id, caller_id, session)
    return {
        "nex_id": nex_id,
        "currency": amounts["currency"],
        "total_settlements": counts["total_debts"],
        "settled_count": counts["settled_debts"],
        "unsettled_count": counts["unsettled_debts"],
        "total_settled_amount": amounts["settled_amount"],
        "total_unsettled_amount": amounts["unsettled_amount"],
        "average_settlement_time_hours": counts["average_settlement_time_hours"],
    }


# ── User reports ───────────────────────────────────────────────────────────
#
# Every debt the user is a party to, across all of their nexes. Nexes may
# use different currencies, so amounts are reported per currency.

def get_user_settlement_history(
        user_id: int,
        caller_id: int,
        page: int,
        size: int,
        session: Session,
) -> dict:
    """SETTLED debts the user paid or received, across nexes. Own history only."""
    _require_self(user_id, caller_id)
    conditions = [(Debt.debtor_id == user_id) | (Debt.creditor_id == user_id)]
    return _history_page(conditions, page, size, session)


def get_user_settlement_summary(user_id: int, caller_id: int, session: Session) -> dict:
    _require_self(user_id, caller_id)

    debts = _user_debt_rows(user_id, session)
    counts = _counts(debts)
    return {
        "user_id": user_id,
        "total_debts": counts["total_debts"],
        "rerouted_debts": counts["rerouted_debts"],
        "settled_debts": counts["settled_debts"],
        "unsettled_debts": counts["unsettled_debts"],
        "last_settlement_date": counts["last_settlement_date"],
        "amounts": _amounts_by_currency(debts),
    }


def get_user_settlement_analytics(user_id: int, caller_id: int, session: Session) -> dict:
    _require_self(user_id, caller_id)

    debts = _user_debt_rows(user_id, session)
    counts = _counts(debts)
    return {
        "user_id": user_id,
        "total_settlements": counts["total_debts"],
        "settled_count": counts["settled_debts"],
        "unsettled_count": counts["unsettled_debts"],
        "average_settlement_time_hours": counts["average_settlement_time_hours"],
        "amounts": _amounts_by_currency(debts),
    }
