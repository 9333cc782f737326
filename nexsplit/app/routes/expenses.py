"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 because this blueprint owns both the
nex-scoped paths (/nex/:id/expenses) and the expense-id paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.
  - The _serialize_* helpers only reshape data. Amounts leave as strings.

Endpoints:
  POST   /nex/:id/expenses          → 201  create expense
  GET    /nex/:id/expenses          → 200  list (?categoryId=, ?payerId=)
  GET    /expenses/:id              → 200  expense + splits
  PUT    /expenses/:id              → 200  replace and recompute
  DELETE /expenses/:id              → 200  delete with its debts
  POST   /expenses/preview-split    → 200  split calculator, nothing stored
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from flask import Blueprint, current_app, g, jsonify, request

from nexsplit.app.extensions import db
from nexsplit.app.middleware.auth_middleware import require_auth
from nexsplit.app.models.expense import Expense
from nexsplit.app.schemas.expense_schema import (
    CreateExpenseSchema,
    ExpenseListQuerySchema,
    PreviewSplitSchema,
)
from nexsplit.app.services import expense_service
from nexsplit.app.services.split_calculator import SplitShare

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────

def _serialize_share(share: SplitShare) -> dict:
    return {
        "userId": share.user_id,
        "amount": str(share.amount),
        "percentage": str(share.display_percentage),
        "position": share.position,
    }


def _serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "nexId": expense.nex_id,
        "title": expense.title,
        "description": expense.description,
        "amount": str(expense.amount),
        "currency": expense.currency,
        "categoryId": expense.category_id,
        "payerId": expense.payer_id,
        "payerName": expense.payer.username,
        "createdBy": expense.created_by,
        "splitType": expense.split_type.value,
        "isInitialPayerHas": expense.is_initial_payer_has,
        "expenseDate": expense.expense_date.isoformat(),
        "createdAt": expense.created_at.isoformat() if expense.created_at else None,
        "updatedAt": expense.updated_at.isoformat() if expense.updated_at else None,
        "splits": [
            {
                "id": s.id,
                "userId": s.user_id,
                "username": s.user.username,
                "shareValue": str(s.share_value) if s.share_value is not None else None,
                "percentage": str(s.percentage.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)),
                "amount": str(s.amount),
            }
            for s in expense.splits
        ],
    }


def _default_currency() -> str:
    return current_app.config.get("DEFAULT_CURRENCY", "USD")


# ── Nex-scoped expense routes ──────────────────────────────────────────────

@expenses_bp.route("/nex/<int:nex_id>/expenses", methods=["POST"])
@require_auth
def create_expense(nex_id: int):
    """POST /nex/:id/expenses — record an expense, its splits and its debts."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        nex_id=nex_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        default_currency=_default_currency(),
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 201


@expenses_bp.route("/nex/<int:nex_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(nex_id: int):
    """GET /nex/:id/expenses — newest expense date first."""
    query = ExpenseListQuerySchema().load(request.args)
    expenses = expense_service.list_expenses(
        nex_id=nex_id,
        caller_id=g.user_id,
        session=db.session,
        category_id=query["category_id"],
        payer_id=query["payer_id"],
    )
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/preview-split", methods=["POST"])
@require_auth
def preview_split():
    """POST /expenses/preview-split — live recalculation for the client."""
    data = PreviewSplitSchema().load(request.get_json(force=True) or {})
    shares = expense_service.preview_split(data, default_currency=_default_currency())
    return jsonify({
        "data": {
            "amount": str(data["amount"]),
            "splitType": data["split_type"].value,
            "splits": [_serialize_share(s) for s in shares],
        },
        "warnings": [],
    }), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    """GET /expenses/:id — expense detail including splits."""
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PUT"])
@require_auth
def update_expense(expense_id: int):
    """
    PUT /expenses/:id — full replace; splits and debts are recomputed.
    409 once any debt of the expense has been settled.
    """
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.update_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        default_currency=_default_currency(),
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — removes the expense, its splits and its debts."""
    expense_service.delete_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "expenseId": expense_id,
        },
        "warnings": [],
    }), 200
