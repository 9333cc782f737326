"""
routes/users.py — Per-user settlement views across all of a user's nexes.

Endpoints (url_prefix=/api/v1/users):
  GET /users/:id/settlements/history     → 200  settled debts, newest first
  GET /users/:id/settlements/summary     → 200  counts, amounts per currency
  GET /users/:id/settlements/analytics   → 200  counts, amounts, average hours

A caller may only read their own figures; anyone else gets 403 FORBIDDEN.
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from nexsplit.app.extensions import db
from nexsplit.app.middleware.auth_middleware import require_auth
from nexsplit.app.routes.settlements import iso_datetime, serialize_history_item
from nexsplit.app.schemas.settlement_schema import HistoryQuerySchema
from nexsplit.app.services import settlement_service

users_bp = Blueprint("users", __name__)


def _serialize_amounts(entry: dict) -> dict:
    return {
        "currency": entry["currency"],
        "totalAmount": str(entry["total_amount"]),
        "settledAmount": str(entry["settled_amount"]),
        "unsettledAmount": str(entry["unsettled_amount"]),
    }


@users_bp.route("/<int:user_id>/settlements/history", methods=["GET"])
@require_auth
def get_user_settlement_history(user_id: int):
    """GET /users/:id/settlements/history?page=&size="""
    query = HistoryQuerySchema().load(request.args)
    history = settlement_service.get_user_settlement_history(
        user_id=user_id,
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


@users_bp.route("/<int:user_id>/settlements/summary", methods=["GET"])
@require_auth
def get_user_settlement_summary(user_id: int):
    summary = settlement_service.get_user_settlement_summary(
        user_id=user_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": {
            "userId": summary["user_id"],
            "totalDebts": summary["total_debts"],
            "reroutedDebts": summary["rerouted_debts"],
            "settledDebts": summary["settled_debts"],
            "unsettledDebts": summary["unsettled_debts"],
            "lastSettlementDate": iso_datetime(summary["last_settlement_date"]),
            "amounts": [_serialize_amounts(a) for a in summary["amounts"]],
        },
        "warnings": [],
    }), 200


@users_bp.route("/<int:user_id>/settlements/analytics", methods=["GET"])
@require_auth
def get_user_settlement_analytics(user_id: int):
    analytics = settlement_service.get_user_settlement_analytics(
        user_id=user_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": {
            "userId": analytics["user_id"],
            "totalSettlements": analytics["total_settlements"],
            "settledCount": analytics["settled_count"],
            "unsettledCount": analytics["unsettled_count"],
            "averageSettlementTimeHours": analytics["average_settlement_time_hours"],
            "amounts": [_serialize_amounts(a) for a in analytics["amounts"]],
        },
        "warnings": [],
    }), 200
