"""
schemas/settlement_schema.py — Marshmallow schemas for settlement endpoints.

Validation responsibility:
  - This file: field types, enum values, lengths, pagination bounds.
  - services/settlement_service.py:
      - INVALID_SETTLEMENT_SELECTION (400) — settleAll vs transferIds
      - SETTLEMENT_NOT_FOUND (404)         — ids resolved against the ledger
      - SETTLEMENT_DENIED (403)            — personal nex restrictions

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, validate

from nexsplit.app.models.nex import SettlementType


class ExecuteSettlementSchema(Schema):
    """
    POST /nex/:id/settlements/execute

    Either settleAll=true, or transferIds naming transfers previously
    returned by the available-settlements endpoint (transfer ids for
    SIMPLIFIED, debt ids for DETAILED).
    """

    settlement_type = fields.Enum(
        SettlementType,
        by_value=True,
        load_default=None,
        allow_none=True,
        data_key="settlementType",
    )

    settle_all = fields.Bool(load_default=False, data_key="settleAll")

    transfer_ids = fields.List(
        fields.Str(validate=validate.Length(min=1, max=64)),
        load_default=list,
        data_key="transferIds",
    )

    payment_method = fields.Str(
        load_default=None,
        allow_none=True,
        data_key="paymentMethod",
        validate=validate.Length(max=50),
    )

    notes = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500),
    )

    settlement_date = fields.DateTime(
        load_default=None,
        allow_none=True,
        data_key="settlementDate",
    )


class AvailableSettlementsQuerySchema(Schema):
    """Query string of GET /nex/:id/settlements/available."""

    class Meta:
        unknown = EXCLUDE

    settlement_type = fields.Enum(
        SettlementType,
        by_value=True,
        load_default=None,
        data_key="settlementType",
    )


class HistoryQuerySchema(Schema):
    """Query string of GET /nex/:id/settlements/history. `page` is 1-based."""

    class Meta:
        unknown = EXCLUDE

    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    size = fields.Int(load_default=None, validate=validate.Range(min=1, max=100))
