"""
services/settlement_engine.py — Netting and debt-consumption algorithms.

Pure functions over debt-like objects (anything with id, debtor_id,
creditor_id, amount). No database and no Flask, so every rule here is unit
tested with plain objects; settlement_service.py wires it to the ORM.

SIMPLIFIED settlement:
  1. Net balance per user over the open debts (credited minus debited),
     summed as Money so a ledger never nets two currencies together.
  2. Greedy netting: largest debtor pays largest creditor the smaller of the
     two amounts; whoever reaches zero drops out; repeat. Ties go to the
     lower user id. Best effort: at most N-1 transfers, not a global optimum.
  3. Transfer ids are uuid5 of "group:debtor:creditor:amount" so the same
     ledger always yields the same ids and a client can execute a suggestion
     it fetched earlier.

Executing a SIMPLIFIED transfer d -> c of T (consume_transfer):
  1. Direct d -> c debts are settled oldest first.
  2. If T is larger (transitive netting), R = what is left. R of d's other
     debts and R of c's other incoming debts are settled, oldest first, and
     the two sides are paired in order: for each matched slice, the debtor
     who owed c now owes the creditor d used to owe (a compensating debt).
     Pairs that meet in the same user cancel outright. Every third party's
     balance is unchanged; d moves by +T and c by -T.
  Greedy netting can pair users with no chain of debts between them, so the
  compensating debts are what make every suggested transfer executable.
  A debt that straddles the amount left is split via the sink; the settled
  part keeps the original row.

DETAILED settlement: every open debt is its own transfer.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Protocol, Sequence

from nexsplit.app.errors import InsufficientBalanceError
from nexsplit.app.money import Money
from nexsplit.app.models.nex import SettlementType


# Balances smaller than this are treated as settled.
BALANCE_TOLERANCE = Decimal("0.001")

_TRANSFER_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "nexsplit/settlement-transfer")


class TransferStatus(str, enum.Enum):
    PENDING  = "PENDING"
    EXECUTED = "EXECUTED"


@dataclass
class SettlementTransfer:
    id: str
    group_id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal
    settlement_type: SettlementType
    related_debt_ids: list[int] = field(default_factory=list)
    status: TransferStatus = TransferStatus.PENDING
    expense_id: int | None = None
    expense_title: str | None = None
    executed_at: datetime | None = None

    def involves(self, user_id: int) -> bool:
        return user_id in (self.from_user_id, self.to_user_id)


class DebtSink(Protocol):
    """Creates the debt rows the engine needs while consuming a transfer."""

    def split(self, debt, settled_amount: Decimal):
        """Shrinks `debt` to `settled_amount`; returns a new open debt for the rest."""

    def open(self, debtor_id: int, creditor_id: int, amount: Decimal, source):
        """Returns a new open debt re-routing part of `source`."""


# ── Balances ───────────────────────────────────────────────────────────────

def debt_money(debt) -> Money:
    """The amount of `debt` in its expense currency (USD when it has none)."""
    return Money.exact(debt.amount, getattr(debt, "currency", None))


def compute_net_balances(debts: Iterable) -> dict[int, Decimal]:
    """
    {user_id: credited - debited} across `debts`.

    Positive means the user is owed money, negative means they owe.
    The values always sum to exactly zero. A ledger is netted in one
    currency: mixing currencies raises CURRENCY_MISMATCH.
    """
    balances: dict[int, Money] = {}
    gross: Money | None = None
    for debt in debts:
        amount = debt_money(debt)
        gross = amount if gross is None else gross + amount
        zero = Money.zero(amount.currency)
        balances[debt.creditor_id] = balances.get(debt.creditor_id, zero) + amount
        balances[debt.debtor_id] = balances.get(debt.debtor_id, zero) - amount
    return {uid: money.amount for uid, money in balances.items()}


def check_conservation(balances: dict[int, Decimal]) -> None:
    """
    Raises InsufficientBalanceError unless creditors and debtors match.

    This can only fail on corrupted data; callers must not catch it.
    """
    credit = sum((b for b in balances.values() if b > 0), Decimal("0"))
    debit = sum((-b for b in balances.values() if b < 0), Decimal("0"))
    if credit != debit:
        raise InsufficientBalanceError(
            f"Ledger out of balance: creditors are owed {credit} but debtors owe {debit}."
        )


def simplify_debts(balances: dict[int, Decimal]) -> list[dict]:
    """
    Greedy netting of `balances` into transfers.

    Returns a list of {"from_user_id", "to_user_id", "amount"} dicts; an
    empty list means everybody is already square.
    """
    check_conservation(balances)

    creditors = {uid: b for uid, b in balances.items() if b > BALANCE_TOLERANCE}
    debtors = {uid: -b for uid, b in balances.items() if b < -BALANCE_TOLERANCE}

    transactions: list[dict] = []
    while creditors and debtors:
        # Largest first; the lower user id wins a tie.
        cid = max(creditors, key=lambda uid: (creditors[uid], -uid))
        did = max(debtors, key=lambda uid: (debtors[uid], -uid))

        amount = min(creditors[cid], debtors[did])
        transactions.append({
            "from_user_id": did,
            "to_user_id": cid,
            "amount": amount,
        })

        creditors[cid] -= amount
        debtors[did] -= amount
        if creditors[cid] <= BALANCE_TOLERANCE:
            del creditors[cid]
        if debtors[did] <= BALANCE_TOLERANCE:
            del debtors[did]

    return transactions


def transfer_id(group_id: int, debtor_id: int, creditor_id: int, amount: Decimal) -> str:
    """Deterministic id for a SIMPLIFIED transfer."""
    return str(uuid.uuid5(_TRANSFER_NAMESPACE, f"{group_id}:{debtor_id}:{creditor_id}:{amount}"))


# ── Transfer construction ──────────────────────────────────────────────────

def build_simplified_transfers(group_id: int, debts: Sequence) -> list[SettlementTransfer]:
    """
    Nets the open `debts` of a group into the fewest greedy transfers.

    related_debt_ids lists the direct debts between the two parties; the
    transitive part of a transfer has no single backing debt.
    """
    transfers = []
    for t in simplify_debts(compute_net_balances(debts)):
        direct = [
            d.id for d in debts
            if d.debtor_id == t["from_user_id"] and d.creditor_id == t["to_user_id"]
        ]
        transfers.append(SettlementTransfer(
            id=transfer_id(group_id, t["from_user_id"], t["to_user_id"], t["amount"]),
            group_id=group_id,
            from_user_id=t["from_user_id"],
            to_user_id=t["to_user_id"],
            amount=t["amount"],
            settlement_type=SettlementType.SIMPLIFIED,
            related_debt_ids=direct,
        ))
    return transfers


def build_detailed_transfers(group_id: int, debts: Sequence) -> list[SettlementTransfer]:
    """One transfer per open debt, id = the debt id."""
    transfers = []
    for debt in debts:
        expense = getattr(debt, "expense", None)
        transfers.append(SettlementTransfer(
            id=str(debt.id),
            group_id=group_id,
            from_user_id=debt.debtor_id,
            to_user_id=debt.creditor_id,
            amount=debt.amount,
            settlement_type=SettlementType.DETAILED,
            related_debt_ids=[debt.id],
            expense_id=debt.expense_id,
            expense_title=expense.title if expense is not None else None,
        ))
    return transfers


def build_transfers(
        group_id: int,
        debts: Sequence,
        settlement_type: SettlementType,
) -> list[SettlementTransfer]:
    if settlement_type == SettlementType.SIMPLIFIED:
        return build_simplified_transfers(group_id, debts)
    return build_detailed_transfers(group_id, debts)


# ── Consumption ────────────────────────────────────────────────────────────

def _take(candidates: list, amount: Decimal, open_debts: list, sink: DebtSink) -> list:
    """
    Consumes up to `amount` from `candidates` in order, splitting the last
    one if it is larger than what is left. Consumed debts leave `open_debts`.
    """
    covered = []
    remaining = amount
    for debt in candidates:
        if remaining <= 0:
            break
        if debt.amount > remaining:
            rest = sink.split(debt, remaining)
            open_debts.insert(open_debts.index(debt) + 1, rest)
        open_debts.remove(debt)
        covered.append(debt)
        remaining -= debt.amount
    return covered


def _total(debts: Iterable) -> Decimal:
    return sum((d.amount for d in debts), Decimal("0"))


def consume_transfer(
        transfer: SettlementTransfer,
        open_debts: list,
        sink: DebtSink,
) -> list:
    """
    Applies one SIMPLIFIED transfer to the open ledger.

    `open_debts` must be in FIFO order and is updated in place: covered
    debts are removed, split-off remainders and compensating debts are
    added. Returns the covered debts; the caller marks them SETTLED.

    Raises InsufficientBalanceError if the ledger cannot back the transfer,
    which only happens when the transfer is stale or the data is corrupt.
    """
    frm, to, amount = transfer.from_user_id, transfer.to_user_id, transfer.amount

    direct = [d for d in open_debts if d.debtor_id == frm and d.creditor_id == to]
    covered = _take(direct, amount, open_debts, sink)
    remaining = amount - _total(covered)
    if remaining <= 0:
        return covered

    outgoing = [d for d in open_debts if d.debtor_id == frm and d.creditor_id != to]
    incoming = [d for d in open_debts if d.creditor_id == to and d.debtor_id != frm]
    out_covered = _take(outgoing, remaining, open_debts, sink)
    in_covered = _take(incoming, remaining, open_debts, sink)

    if _total(out_covered) != remaining or _total(in_covered) != remaining:
        raise InsufficientBalanceError(
            f"Open debts cannot back a transfer of {amount} from user {frm} to user {to}."
        )

    # Pair d's former creditors with c's former debtors, slice by slice.
    i = j = 0
    out_left = out_covered[0].amount
    in_left = in_covered[0].amount
    while i < len(out_covered) and j < len(in_covered):
        slice_amount = min(out_left, in_left)
        creditor_id = out_covered[i].creditor_id
        debtor_id = in_covered[j].debtor_id
        if debtor_id != creditor_id:
            open_debts.append(sink.open(debtor_id, creditor_id, slice_amount, in_covered[j]))

        out_left -= slice_amount
        in_left -= slice_amount
        if out_left == 0:
            i += 1
            out_left = out_covered[i].amount if i < len(out_covered) else Decimal("0")
        if in_left == 0:
            j += 1
            in_left = in_covered[j].amount if j < len(in_covered) else Decimal("0")

    return covered + out_covered + in_covered


def close_zero_net_cycles(open_debts: list) -> list:
    """
    Returns every open debt once all balances are zero (pure cycles such as
    A->B 10, B->A 10). Raises InsufficientBalanceError if anything is still owed.
    """
    balances = compute_net_balances(open_debts)
    outstanding = {uid: b for uid, b in balances.items() if abs(b) > BALANCE_TOLERANCE}
    if outstanding:
        raise InsufficientBalanceError(
            f"Balances still outstanding after settling everything: {outstanding}."
        )
    closed = list(open_debts)
    open_debts.clear()
    return closed
