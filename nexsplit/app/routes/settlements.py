"""
routes/settlements.py — Settlement route handlers.

Endpoints (url_prefix=/api/v1/nex):
  GET  /nex/:id/settlements/available   → 200  transfers that would settle the nex
  POST /nex/:id/settlements/execute     → 200  settle all or the selected transfers
  GET  /nex/:id/settlements/history     → 200  settled debts, newest first
  GET  /nex/:id/settlements/summary     → 200  counts and amounts
  GET  /nex/:id/settlements/analytics   → 200  counts, amounts, average hours

Layer rules:
  - Parse, validate, call ONE service, commit (execute only), return envelope.
  - No business logic. No DB queries.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import Blueprint, current_app, g, jsonify, request

from nexsplit.app.extensions import db
from nexsplit.app.middleware.auth_middleware import require_auth
from nexsplit.app.schemas.settlement_schema import (
    AvailableSettlementsQuerySchema,
    ExecuteSettlementSchema,
    HistoryQuerySchema,
)
from nexsplit.app.services import settlement_service
from nexsplit.app.services.settlement_engine import SettlementTransfer

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────

def iso_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _serialize_transfer(transfer: SettlementTransfer) -> dict:
    return {
        "id": transfer.id,
        "nexId": transfer.group_id,
        "fromUserId": transfer.from_user_id,
        "toUserId": transfer.to_user_id,
        "amount": str(transfer.amount),
        "settlementType": transfer.settlement_type.value,
        "status": transfer.status.value,
        "relatedDebtIds": transfer.related_debt_ids,
        "expenseId": transfer.expense_id,
        "expenseTitle": transfer.expense_title,
        "executedAt": iso_datetime(transfer.executed_at),
    }


def serialize_history_item(item: dict) -> dict:
    return {
        "debtId": item["debt_id"],
        "nexId": item["nex_id"],
        "debtorId": item["debtor_id"],
        "debtorName": item["debtor_name"],
        "creditorId": item["creditor_id"],
        "creditorName": item["creditor_name"],
        "amount": str(item["amount"]),
        "currency": item["currency"],
        "expenseId": item["expense_id"],
        "expenseTitle": item["expense_title"],
        "paymentMethod": item["payment_method"],
        "notes": item["notes"],
        "settledAt": iso_datetime(item["settled_at"]),
        "settlementHours": item["settlement_hours"],
    }


def _default_type() -> str:
    return current_app.config.get("DEFAULT_SETTLEMENT_TYPE", "DETAILED")


# ── Routes ─────────────────────────────────────────────────────────────────

@settlements_bp.route("/<int:nex_id>/settlements/available", methods=["GET"])
@require_auth
def get_available_settlements(nex_id: int):
    """
    GET /nex/:id/settlements/available?settlementType=SIMPLIFIED|DETAILED

    Without settlementType the nex's configured type is used, falling back
    to DEFAULT_SETTLEMENT_TYPE.
    """
    query = AvailableSettlementsQuerySchema().load(request.args)
    settlement_type, transfers = settlement_service.get_available_settlements(
        nex_id=nex_id,
        caller_id=g.user_id,
        settlement_type=query["settlement_type"],
        session=db.session,
        default_type=_default_type(),
    )
    total = sum((t.amount for t in transfers), Decimal("0.00"))
    return jsonify({
        "data": {
            "nexId": nex_id,
            "settlementType": settlement_type.value,
            "settlements": [_serialize_transfer(t) for t in transfers],
            "totalAmount": str(total),
            "count": len(transfers),
        },
        "warnings": [],
    }), 200


@settlements_bp.route("/<int:nex_id>/settlements/execute", methods=["POST"])
@require_auth
def execute_settlements(nex_id: int):
    """
    POST /nex/:id/settlements/execute

    Body: {settlementType?, settleAll | transferIds, paymentMethod?, notes?,
    settlementDate?}. All selected transfers apply, or none do.
    """
    data = ExecuteSettlementSchema().load(request.get_json(force=True) or {})
    result = settlement_service.execute_settlements(
        nex_id=nex_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        default_type=_default_type(),
    )
    db.session.commit()
    return jsonify({
        "data": {
            "nexId": nex_id,
            "executedSettlements": [_serialize_transfer(t) for t in result.executed],
            "remainingSettlements": [_serialize_transfer(t) for t in result.remaining],
            "totalSettledAmount": str(result.total_settled_amount),
            "settledCount": result.settled_count,
            "remainingCount": result.remaining_count,
            "settledDebtCount": result.settled_debt_count,
        },
        "warnings": [],
    }), 200


@settlements_bp.route("/<int:nex_id>/settlements/history", methods=["GET"])
@require_auth
def get_settlement_history(nex_id: int):
    """GET /nex/:id/settlements/history?page=&size= — settled debts, newest first."""
    query = HistoryQuerySchema().load(request.args)
    history = settlement_service.get_settlement_history(
        nex_id=nex_id,
        caller_id=g.user_id,
        page=query["page"],
        size=query["size"] or current_app.config.get("HISTORY_PAGE_SIZE", 20),
        session=db.session,
    )
    return jsonify({
        "data": {
            "items": [serialize_history_item(i) for i in history["items"]],
            "page": history["page"],
            "size": history["size"],
            "total": history["total"],
            "pages": history["pages"],
        },
        "warnings": [],
    }), 200


@settlements_bp.route("/<int:nex_id>/settlements/summary", methods=["GET"])
@require_auth
def get_settlement_summary(nex_id: int):
    """GET /nex/:id/settlements/summary"""
    summary = settlement_service.get_settlement_summary(
        nex_id=nex_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": {
            "nexId": summary["nex_id"],
            "currency": summary["currency"],
            "totalDebts": summary["total_debts"],
            "reroutedDebts": summary["rerouted_debts"],
            "settledDebts": summary["settled_debts"],
            "unsettledDebts": summary["unsettled_debts"],
            "totalAmount": str(summary["total_amount"]),
            "settledAmount": str(summary["settled_amount"]),
            "unsettledAmount": str(summary["unsettled_amount"]),
            "lastSettlementDate": iso_datetime(summary["last_settlement_date"]),
        },
        "warnings": [],
    }), 200


@settlements_bp.route("/<int:nex_id>/settlements/analytics", methods=["GET"])
@require_auth
def get_settlement_analytics(nex_id: int):
    """GET /nex/:id/settlements/analytics"""
    analytics = settlement_service.get_settlement_analytics(
        nex_id=nex_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": {
            "nexId": analytics["nex_id"],
            "currency": analytics["currency"],
            "totalSettlements": analytics["total_settlements"],
            "settledCount": analytics["settled_count"],
            "unsettledCount": analytics["unsettled_count"],
            "totalSettledAmount": str(analytics["total_settled_amount"]),
            "totalUnsettledAmount": str(analytics["total_unsettled_amount"]),
            "averageSettlementTimeHours": analytics["average_settlement_time_hours"],
        },
        "warnings": [],
    }), 200
