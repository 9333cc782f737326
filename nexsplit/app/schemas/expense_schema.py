"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file (400):
      - Field types, lengths, enum values, at most 2 decimal places
      - MISSING_PAYER when payerId is absent
      - DUPLICATE_SPLIT_USER within the splits array
      - splits[].amount / splits[].percentage present for AMOUNT / PERCENTAGE
      - Non-empty-after-trim enforcement for title
  - services/split_calculator.py:
      - SPLIT_SUM_MISMATCH, PERCENTAGE_SUM_MISMATCH (422) — Decimal arithmetic
      - Currency-specific precision (e.g. no fractions for JPY)
  - services/expense_service.py:
      - PAYER_NOT_MEMBER, SPLIT_USER_NOT_MEMBER (422) — DB lookups

Payloads are camelCase on the wire; `data_key` maps them to snake_case.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from nexsplit.app.errors import ErrorCode
from nexsplit.app.models.expense import SplitType


def _validate_non_negative_amount(value: Decimal) -> None:
    """
    Rejects negative values and more than 2 decimal places. Input is never
    rounded: Decimal("10.123").as_tuple().exponent == -3 is refused.
    """
    if value < Decimal("0"):
        raise ValidationError(ErrorCode.INVALID_AMOUNT)
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT)


def _validate_positive_amount(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError(ErrorCode.INVALID_AMOUNT)
    _validate_non_negative_amount(value)


def _validate_non_empty_after_trim(value: str) -> None:
    """validate.Length(min=1) alone lets "   " through."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


# ── Sub-schema: one entry in the `splits` array ───────────────────────────

class SplitInputSchema(Schema):
    """
    One participant. `amount` is used by AMOUNT splits, `percentage` by
    PERCENTAGE splits; EQUALLY needs only userId.
    """

    user_id = fields.Int(
        required=True,
        strict=True,
        data_key="userId",
        validate=validate.Range(min=1, error="userId must be a positive integer."),
    )

    amount = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_non_negative_amount,
    )

    percentage = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=validate.Range(
            min=Decimal("0"),
            max=Decimal("100"),
            error="percentage must be between 0 and 100.",
        ),
    )


class _SplitPayloadSchema(Schema):
    """Fields shared by create/update and the split preview."""

    amount = fields.Decimal(
        required=True,
        validate=_validate_positive_amount,
    )

    currency = fields.Str(
        load_default=None,
        validate=validate.Regexp(
            r"^[A-Za-z]{3}$",
            error="currency must be a three-letter ISO 4217 code.",
        ),
    )

    split_type = fields.Enum(
        SplitType,
        by_value=True,
        data_key="splitType",
        load_default=SplitType.EQUALLY,
    )

    splits = fields.List(
        fields.Nested(SplitInputSchema),
        load_default=list,
    )

    @validates_schema
    def validate_splits_coherence(self, data: dict, **kwargs) -> None:
        """
        Request-shape rules for the splits array (all 400):
          1. DUPLICATE_SPLIT_USER — a userId appears twice.
          2. AMOUNT needs splits[].amount, PERCENTAGE needs splits[].percentage.
          3. AMOUNT and PERCENTAGE need a non-empty splits array.
        Sums are checked by the split calculator, not here.
        """
        split_type = data.get("split_type", SplitType.EQUALLY)
        splits = data.get("splits") or []

        user_ids = [s["user_id"] for s in splits]
        if len(user_ids) != len(set(user_ids)):
            raise ValidationError({"splits": [ErrorCode.DUPLICATE_SPLIT_USER]})

        if split_type == SplitType.EQUALLY:
            return

        if not splits:
            raise ValidationError({"splits": [ErrorCode.EMPTY_PARTICIPANTS]})

        key = "amount" if split_type == SplitType.AMOUNT else "percentage"
        if any(s.get(key) is None for s in splits):
            raise ValidationError(
                {"splits": [f"Every split needs a {key} when splitType is {split_type.value}."]}
            )


# ── Create / replace expense ───────────────────────────────────────────────

class CreateExpenseSchema(_SplitPayloadSchema):
    """
    POST /nex/:id/expenses and PUT /expenses/:id

    PUT is a full replace: the same payload, recomputed from scratch.
    """

    title = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, max=100, error="title must be between 1 and 100 characters."),
            _validate_non_empty_after_trim,
        ],
    )

    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500, error="description must be at most 500 characters."),
    )

    payer_id = fields.Int(
        required=True,
        strict=True,
        data_key="payerId",
        validate=validate.Range(min=1, error="payerId must be a positive integer."),
        error_messages={"required": ErrorCode.MISSING_PAYER, "null": ErrorCode.MISSING_PAYER},
    )

    category_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        data_key="categoryId",
    )

    is_initial_payer_has = fields.Bool(
        load_default=True,
        data_key="isInitialPayerHas",
    )

    expense_date = fields.Date(
        load_default=None,
        allow_none=True,
        data_key="expenseDate",
    )


class PreviewSplitSchema(_SplitPayloadSchema):
    """POST /expenses/preview-split — the calculator without persistence."""

    payer_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        data_key="payerId",
    )


class ExpenseListQuerySchema(Schema):
    """Query string of GET /nex/:id/expenses."""

    class Meta:
        unknown = EXCLUDE

    category_id = fields.Int(load_default=None, data_key="categoryId")
    payer_id = fields.Int(load_default=None, data_key="payerId")
