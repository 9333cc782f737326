"""
routes/balances.py — Balance route handler.

Endpoint (url_prefix=/api/v1/nex):
  GET /nex/:id/balances  → 200  per-member paid / owed / net plus suggested transfers

Layer rules:
  - Call ONE service, return envelope. No business logic, no DB queries.
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify

from nexsplit.app.extensions import db
from nexsplit.app.middleware.auth_middleware import require_auth
from nexsplit.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


def _serialize_summary(summary: dict) -> dict:
    return {
        "nexId": summary["nex_id"],
        "currency": summary["currency"],
        "totalExpenses": str(summary["total_expenses"]),
        "balanceSum": str(summary["balance_sum"]),
        "members": [
            {
                "userId": m["user_id"],
                "username": m["username"],
                "totalPaid": str(m["total_paid"]),
                "totalOwed": str(m["total_owed"]),
                "netBalance": str(m["net_balance"]),
            }
            for m in summary["members"]
        ],
        "simplifiedDebts": [
            {
                "fromUserId": t["from_user_id"],
                "fromName": t["from_name"],
                "toUserId": t["to_user_id"],
                "toName": t["to_name"],
                "amount": str(t["amount"]),
            }
            for t in summary["simplified_debts"]
        ],
    }


@balances_bp.route("/<int:nex_id>/balances", methods=["GET"])
@require_auth
def get_balances(nex_id: int):
    """
    GET /nex/:id/balances

    Net balances come from unsettled debts only. A non-zero sum means the
    ledger is corrupt and surfaces as a 500 (BALANCE_INTEGRITY_VIOLATION).
    """
    summary = balance_service.get_balance_summary(
        nex_id=nex_id,
        caller_id=g.user_id,
        session=db.session,
        default_currency=current_app.config.get("DEFAULT_CURRENCY", "USD"),
    )
    return jsonify({"data": _serialize_summary(summary), "warnings": []}), 200
