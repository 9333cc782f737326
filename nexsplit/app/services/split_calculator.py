"""
services/split_calculator.py — Turns an expense total plus a split strategy
into per-participant shares.

Pure functions. No database, no Flask, no I/O. Everything that touches money
is done in integer minor units of the expense currency so that the shares of
an EQUALLY or PERCENTAGE split always add up to the total exactly:

  EQUALLY     base = total // n; the first (total mod n) participants in input
              order get base + 1. 100.00 / 3 -> [33.34, 33.33, 33.33].
  AMOUNT      Amounts are taken as entered. They must add up to the total
              within one minor unit; a percentage is derived per participant.
  PERCENTAGE  Percentages must add up to 100 within 0.01. Each share is
              round_half_up(total * pct / 100); the residual is then spread
              one minor unit at a time in input order, same rule as EQUALLY.

Strategies are small dataclasses dispatched by compute_splits().
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

from nexsplit.app.errors import (
    ErrorCode,
    InvalidInputError,
    SplitMismatchError,
)
from nexsplit.app.models.expense import SplitType
from nexsplit.app.money import (
    HUNDRED,
    PERCENTAGE_TOLERANCE,
    Money,
    distribute_residual,
)


# Stored percentages carry four decimal places; the API shows one.
_PERCENT_STORAGE = Decimal("0.0001")
_PERCENT_DISPLAY = Decimal("0.1")


# ── Strategies ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EqualSplit:
    participant_ids: Sequence[int]


@dataclass(frozen=True)
class AmountSplit:
    # (user_id, amount) pairs in input order.
    amounts: Sequence[tuple[int, Decimal]]


@dataclass(frozen=True)
class PercentageSplit:
    # (user_id, percentage points) pairs in input order.
    percentages: Sequence[tuple[int, Decimal]]


@dataclass
class SplitShare:
    """One participant's computed share of an expense."""

    user_id: int
    amount: Decimal
    percentage: Decimal
    share_value: Decimal | None
    position: int

    @property
    def display_percentage(self) -> Decimal:
        return self.percentage.quantize(_PERCENT_DISPLAY, rounding=ROUND_HALF_UP)


@dataclass
class Participation:
    """Result of validate_participation()."""

    debt_shares: list[SplitShare]
    payer_share: Decimal


# ── Helpers ────────────────────────────────────────────────────────────────

def _require_unique(user_ids: Sequence[int]) -> None:
    if not user_ids:
        raise InvalidInputError(
            ErrorCode.EMPTY_PARTICIPANTS,
            "At least one participant is required.",
            field="splits",
        )
    seen: set[int] = set()
    for uid in user_ids:
        if uid in seen:
            raise InvalidInputError(
                ErrorCode.DUPLICATE_SPLIT_USER,
                f"User {uid} appears more than once in the splits.",
                field="splits",
            )
        seen.add(uid)


def _derived_percentage(amount: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return Decimal("0").quantize(_PERCENT_STORAGE)
    return (amount * HUNDRED / total).quantize(_PERCENT_STORAGE, rounding=ROUND_HALF_UP)


# ── Strategy implementations ───────────────────────────────────────────────

def compute_equal_split(
        total: Decimal,
        participant_ids: Sequence[int],
        currency: str | None = None,
) -> list[SplitShare]:
    """
    Divides `total` evenly. The first (total mod n) participants, in the
    order given, receive one extra minor unit each.
    """
    _require_unique(participant_ids)

    total_units = Money.exact(total, currency).minor_units
    n = len(participant_ids)
    base, remainder = divmod(total_units, n)
    shares = [Money.from_minor(u, currency) for u in distribute_residual([base] * n, remainder)]

    return [
        SplitShare(
            user_id=uid,
            amount=share.amount,
            percentage=_derived_percentage(share.amount, total),
            share_value=None,
            position=i,
        )
        for i, (uid, share) in enumerate(zip(participant_ids, shares))
    ]


def compute_amount_split(
        total: Decimal,
        participant_amounts: Sequence[tuple[int, Decimal]],
        currency: str | None = None,
) -> list[SplitShare]:
    """
    Accepts explicit amounts as entered.

    Raises SplitMismatchError if they miss the total by more than one minor
    unit; InvalidInputError for negative values or excess precision.
    """
    _require_unique([uid for uid, _ in participant_amounts])

    for uid, amount in participant_amounts:
        if amount < 0:
            raise InvalidInputError(
                ErrorCode.INVALID_AMOUNT,
                f"Split amount for user {uid} must not be negative.",
                field="splits",
            )
        Money.exact(amount, currency).minor_units  # precision check

    entered = Money.total(
        (Money.exact(amount, currency) for _, amount in participant_amounts),
        currency,
    )
    expected = Money.exact(total, currency)
    if not entered.within(expected):
        raise SplitMismatchError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Split amounts add up to {entered} but the expense total is {expected}.",
        )

    return [
        SplitShare(
            user_id=uid,
            amount=Money.from_minor(Money.exact(amount, currency).minor_units, currency).amount,
            percentage=_derived_percentage(amount, total),
            share_value=amount,
            position=i,
        )
        for i, (uid, amount) in enumerate(participant_amounts)
    ]


def compute_percentage_split(
        total: Decimal,
        participant_percentages: Sequence[tuple[int, Decimal]],
        currency: str | None = None,
) -> list[SplitShare]:
    """
    Converts percentages into amounts that add up to `total` exactly.

    Raises SplitMismatchError if the percentages miss 100 by more than 0.01.
    """
    _require_unique([uid for uid, _ in participant_percentages])

    for uid, pct in participant_percentages:
        if pct < 0 or pct > HUNDRED:
            raise InvalidInputError(
                ErrorCode.INVALID_FIELD,
                f"Percentage for user {uid} must be between 0 and 100.",
                field="splits",
            )

    pct_sum = sum((pct for _, pct in participant_percentages), Decimal("0"))
    if abs(pct_sum - HUNDRED) > PERCENTAGE_TOLERANCE:
        raise SplitMismatchError(
            ErrorCode.PERCENTAGE_SUM_MISMATCH,
            f"Percentages add up to {pct_sum}, expected 100.",
        )

    total_units = Money.exact(total, currency).minor_units
    units = [
        int((Decimal(total_units) * pct / HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))
        for _, pct in participant_percentages
    ]
    units = distribute_residual(units, total_units - sum(units))

    return [
        SplitShare(
            user_id=uid,
            amount=Money.from_minor(u, currency).amount,
            percentage=pct.quantize(_PERCENT_STORAGE, rounding=ROUND_HALF_UP),
            share_value=pct,
            position=i,
        )
        for i, ((uid, pct), u) in enumerate(zip(participant_percentages, units))
    ]


def compute_splits(
        total: Decimal,
        strategy: EqualSplit | AmountSplit | PercentageSplit,
        currency: str | None = None,
) -> list[SplitShare]:
    """Dispatches to the strategy's calculator."""
    match strategy:
        case EqualSplit(participant_ids=ids):
            return compute_equal_split(total, ids, currency)
        case AmountSplit(amounts=amounts):
            return compute_amount_split(total, amounts, currency)
        case PercentageSplit(percentages=percentages):
            return compute_percentage_split(total, percentages, currency)
        case _:
            raise InvalidInputError(
                ErrorCode.INVALID_FIELD,
                f"Unknown split strategy {type(strategy).__name__}.",
                field="splitType",
            )


def strategy_from_input(split_type: str, splits: Sequence[dict]) -> EqualSplit | AmountSplit | PercentageSplit:
    """
    Builds a strategy from validated request data.

    `splits` is the list produced by SplitInputSchema: dicts with `user_id`
    and optionally `amount` / `percentage`.
    """
    if split_type == SplitType.EQUALLY:
        return EqualSplit([s["user_id"] for s in splits])

    if split_type == SplitType.AMOUNT:
        key = "amount"
        missing = [s["user_id"] for s in splits if s.get(key) is None]
    elif split_type == SplitType.PERCENTAGE:
        key = "percentage"
        missing = [s["user_id"] for s in splits if s.get(key) is None]
    else:
        raise InvalidInputError(
            ErrorCode.INVALID_FIELD,
            f"splitType must be one of {', '.join(t.value for t in SplitType)}.",
            field="splitType",
        )

    if missing:
        raise InvalidInputError(
            ErrorCode.MISSING_FIELD,
            f"splits[].{key} is required for {split_type} splits (missing for user {missing[0]}).",
            field="splits",
        )

    pairs = [(s["user_id"], s[key]) for s in splits]
    if split_type == SplitType.AMOUNT:
        return AmountSplit(pairs)
    return PercentageSplit(pairs)


def validate_participation(
        splits: Sequence[SplitShare],
        payer_id: int,
        is_initial_payer_has: bool,
) -> Participation:
    """
    Separates the shares that become debts from the payer's own share.

    The payer never owes themselves, so their split never produces a debt.
    With `is_initial_payer_has` set, the payer's share still counts toward
    what they consumed; without it, the payer fronted the money only and
    their share is left out of the bookkeeping.
    """
    debt_shares = [s for s in splits if s.user_id != payer_id and s.amount > 0]
    payer_share = Decimal("0.00")
    if is_initial_payer_has:
        payer_share = sum(
            (s.amount for s in splits if s.user_id == payer_id),
            Decimal("0.00"),
        )
    return Participation(debt_shares=debt_shares, payer_share=payer_share)
