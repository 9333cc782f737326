"""
tests/integration/test_expenses.py — Integration tests for expense endpoints.

Endpoints covered:
  POST /nex/:id/expenses           → 201 (create)
  GET  /nex/:id/expenses           → 200 (list, filters)
  GET  /expenses/:id               → 200 (detail)
  POST /expenses/preview-split     → 200 (calculator only)

Error paths:
  TOKEN_MISSING (401), FORBIDDEN (403), PAYER_NOT_MEMBER (422),
  SPLIT_USER_NOT_MEMBER (422), SPLIT_SUM_MISMATCH (422),
  PERCENTAGE_SUM_MISMATCH (422), validation envelope (400).
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from .conftest import (
    auth_headers,
    available,
    deactivate_member,
    make_expense,
    seed_user,
    token_for,
)


def _balances(client, token, nex_id) -> dict:
    resp = client.get(f"/api/v1/nex/{nex_id}/balances", headers=auth_headers(token))
    assert resp.status_code == 200, resp.get_json()
    return {m["userId"]: m for m in resp.get_json()["data"]["members"]}


# ═══════════════════════════════════════════════════════════════════════════
# POST /nex/:id/expenses
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateExpense:

    def test_equal_split_across_all_members(self, client, trio):
        resp = make_expense(
            client, trio["alice_token"], trio["nex"],
            payer_id=trio["alice"], amount="100.00", title="Dinner",
        )

        assert resp.status_code == 201, resp.get_json()
        body = resp.get_json()
        assert body["warnings"] == []

        data = body["data"]
        assert data["title"] == "Dinner"
        assert data["amount"] == "100.00"
        assert data["currency"] == "USD"
        assert data["payerName"] == "alice"
        assert data["splitType"] == "EQUALLY"
        assert data["isInitialPayerHas"] is True
        assert [(s["userId"], s["amount"]) for s in data["splits"]] == [
            (trio["alice"], "33.34"),
            (trio["bob"], "33.33"),
            (trio["carol"], "33.33"),
        ]

    def test_creates_debts_towards_the_payer(self, client, trio):
        make_expense(client, trio["alice_token"], trio["nex"], trio["alice"], "100.00")

        rows = _balances(client, trio["alice_token"], trio["nex"])

        assert rows[trio["alice"]]["netBalance"] == "66.66"
        assert rows[trio["bob"]]["netBalance"] == "-33.33"
        assert rows[trio["carol"]]["netBalance"] == "-33.33"

    def test_amount_split(self, client, trio):
        resp = make_expense(
            client, trio["bob_token"], trio["nex"], trio["bob"], "50.00",
            split_type="AMOUNT",
            splits=[
                {"userId": trio["alice"], "amount": "20.00"},
                {"userId": trio["carol"], "amount": "30.00"},
            ],
        )

        assert resp.status_code == 201, resp.get_json()
        assert [s["amount"] for s in resp.get_json()["data"]["splits"]] == ["20.00", "30.00"]

        rows = _balances(client, trio["bob_token"], trio["nex"])
        assert rows[trio["bob"]]["netBalance"] == "50.00"

    def test_percentage_split(self, client, trio):
        resp = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "10.00",
            split_type="PERCENTAGE",
            splits=[
                {"userId": trio["alice"], "percentage": "33.33"},
                {"userId": trio["bob"], "percentage": "33.33"},
                {"userId": trio["carol"], "percentage": "33.34"},
            ],
        )

        assert resp.status_code == 201, resp.get_json()
        amounts = [Decimal(s["amount"]) for s in resp.get_json()["data"]["splits"]]
        assert sum(amounts) == Decimal("10.00")

    def test_payer_outside_the_split_is_owed_everything(self, client, trio):
        make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "40.00",
            splits=[{"userId": trio["bob"]}, {"userId": trio["carol"]}],
        )

        rows = _balances(client, trio["alice_token"], trio["nex"])
        assert rows[trio["alice"]]["netBalance"] == "40.00"
        assert rows[trio["bob"]]["netBalance"] == "-20.00"

    def test_payer_share_flag_only_changes_total_owed(self, client, trio):
        make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "90.00",
            isInitialPayerHas=False,
        )

        rows = _balances(client, trio["alice_token"], trio["nex"])
        assert rows[trio["alice"]]["totalOwed"] == "0.00"
        assert rows[trio["alice"]]["netBalance"] == "60.00"

    def test_inactive_member_is_left_out_of_equal_split(self, app, client, trio):
        deactivate_member(app, trio["nex"], trio["carol"])

        resp = make_expense(client, trio["alice_token"], trio["nex"], trio["alice"], "10.00")

        assert resp.status_code == 201
        assert [s["userId"] for s in resp.get_json()["data"]["splits"]] == [trio["alice"], trio["bob"]]

    def test_zero_decimal_currency(self, client, trio):
        resp = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "1000",
            currency="JPY",
        )

        assert resp.status_code == 201, resp.get_json()
        data = resp.get_json()["data"]
        assert data["currency"] == "JPY"
        assert [Decimal(s["amount"]) for s in data["splits"]] == [
            Decimal("334"), Decimal("333"), Decimal("333"),
        ]

    def test_expense_in_a_second_currency_is_refused(self, client, trio):
        """A USD debt and a JPY debt must never cancel each other out."""
        first = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "100.00",
            split_type="AMOUNT", splits=[{"userId": trio["bob"], "amount": "100.00"}],
        )
        assert first.status_code == 201

        resp = make_expense(
            client, trio["bob_token"], trio["nex"], trio["bob"], "100",
            split_type="AMOUNT", splits=[{"userId": trio["alice"], "amount": "100"}],
            currency="JPY",
        )

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "CURRENCY_MISMATCH"
        assert error["field"] == "currency"

        rows = _balances(client, trio["alice_token"], trio["nex"])
        assert rows[trio["alice"]]["netBalance"] == "100.00"
        assert rows[trio["bob"]]["netBalance"] == "-100.00"
        settlements = available(client, trio["alice_token"], trio["nex"], "SIMPLIFIED").get_json()["data"]
        assert settlements["count"] == 1

    def test_lowercase_currency_matches_the_nex_currency(self, client, trio):
        make_expense(client, trio["alice_token"], trio["nex"], trio["alice"], "30.00", currency="EUR")

        resp = make_expense(client, trio["bob_token"], trio["nex"], trio["bob"], "30.00", currency="eur")

        assert resp.status_code == 201, resp.get_json()

    # ── Failure paths ──────────────────────────────────────────────────────

    def test_requires_token(self, client, trio):
        resp = client.post(f"/api/v1/nex/{trio['nex']}/expenses", json={})

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_non_member_is_forbidden(self, app, client, trio):
        outsider = seed_user(app, "mallory")

        resp = make_expense(client, token_for(app, outsider), trio["nex"], outsider, "10.00")

        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_unknown_nex(self, client, trio):
        resp = make_expense(client, trio["alice_token"], 99999, trio["alice"], "10.00")

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NEX_NOT_FOUND"

    def test_payer_must_be_member(self, app, client, trio):
        outsider = seed_user(app, "mallory")

        resp = make_expense(client, trio["alice_token"], trio["nex"], outsider, "10.00")

        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "PAYER_NOT_MEMBER"
        assert error["field"] == "payerId"

    def test_split_users_must_be_members(self, app, client, trio):
        outsider = seed_user(app, "mallory")

        resp = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "10.00",
            splits=[{"userId": trio["alice"]}, {"userId": outsider}],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SPLIT_USER_NOT_MEMBER"

    def test_amount_split_must_close(self, client, trio):
        resp = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "100.00",
            split_type="AMOUNT",
            splits=[{"userId": trio["bob"], "amount": "10.00"}],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SPLIT_SUM_MISMATCH"

    def test_percentage_split_must_reach_hundred(self, client, trio):
        resp = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "100.00",
            split_type="PERCENTAGE",
            splits=[
                {"userId": trio["alice"], "percentage": "50"},
                {"userId": trio["bob"], "percentage": "40"},
            ],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PERCENTAGE_SUM_MISMATCH"

    def test_failed_create_writes_nothing(self, client, trio):
        make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "100.00",
            split_type="AMOUNT",
            splits=[{"userId": trio["bob"], "amount": "10.00"}],
        )

        resp = client.get(f"/api/v1/nex/{trio['nex']}/expenses", headers=auth_headers(trio["alice_token"]))
        assert resp.get_json()["data"] == []

    @pytest.mark.parametrize("overrides, code, field", [
        ({"amount": "10.123"}, "INVALID_AMOUNT", "amount"),
        ({"amount": "-5.00"}, "INVALID_AMOUNT", "amount"),
        ({"payerId": None}, "MISSING_PAYER", "payerId"),
        ({"title": "   "}, "INVALID_FIELD", "title"),
        ({"splitType": "SHARES"}, "INVALID_FIELD", "splitType"),
    ])
    def test_validation_errors(self, client, trio, overrides, code, field):
        payload = {"title": "Taxi", "amount": "10.00", "payerId": trio["alice"], **overrides}

        resp = client.post(
            f"/api/v1/nex/{trio['nex']}/expenses",
            json=payload,
            headers=auth_headers(trio["alice_token"]),
        )

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == code
        assert error["field"] == field

    def test_missing_title(self, client, trio):
        resp = client.post(
            f"/api/v1/nex/{trio['nex']}/expenses",
            json={"amount": "10.00", "payerId": trio["alice"]},
            headers=auth_headers(trio["alice_token"]),
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"] == {
            "code": "MISSING_FIELD",
            "message": "Missing data for required field.",
            "field": "title",
        }

    def test_duplicate_split_user(self, client, trio):
        resp = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "10.00",
            splits=[{"userId": trio["bob"]}, {"userId": trio["bob"]}],
        )

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "DUPLICATE_SPLIT_USER"
        assert error["field"] == "splits"


# ═══════════════════════════════════════════════════════════════════════════
# GET /nex/:id/expenses and GET /expenses/:id
# ═══════════════════════════════════════════════════════════════════════════

class TestReadExpenses:

    def test_list_newest_first_and_filter_by_payer(self, client, trio):
        make_expense(client, trio["alice_token"], trio["nex"], trio["alice"], "10.00",
                     title="Old", expenseDate="2026-01-01")
        make_expense(client, trio["alice_token"], trio["nex"], trio["bob"], "20.00",
                     title="New", expenseDate="2026-02-01")

        headers = auth_headers(trio["carol_token"])
        resp = client.get(f"/api/v1/nex/{trio['nex']}/expenses", headers=headers)
        assert resp.status_code == 200
        assert [e["title"] for e in resp.get_json()["data"]] == ["New", "Old"]

        resp = client.get(f"/api/v1/nex/{trio['nex']}/expenses?payerId={trio['bob']}", headers=headers)
        assert [e["title"] for e in resp.get_json()["data"]] == ["New"]

    def test_filter_by_category(self, client, trio):
        make_expense(client, trio["alice_token"], trio["nex"], trio["alice"], "10.00",
                     title="Food", categoryId=7)
        make_expense(client, trio["alice_token"], trio["nex"], trio["alice"], "10.00",
                     title="Fuel", categoryId=8)

        resp = client.get(
            f"/api/v1/nex/{trio['nex']}/expenses?categoryId=7",
            headers=auth_headers(trio["alice_token"]),
        )
        assert [e["title"] for e in resp.get_json()["data"]] == ["Food"]

    def test_get_expense_detail(self, client, trio):
        created = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "30.00",
            description="Groceries for the weekend",
        ).get_json()["data"]

        resp = client.get(f"/api/v1/expenses/{created['id']}", headers=auth_headers(trio["bob_token"]))

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["description"] == "Groceries for the weekend"
        assert [s["username"] for s in data["splits"]] == ["alice", "bob", "carol"]
        assert all(s["percentage"] == "33.3" for s in data["splits"])

    def test_get_unknown_expense(self, client, trio):
        resp = client.get("/api/v1/expenses/99999", headers=auth_headers(trio["alice_token"]))

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"

    def test_get_expense_of_another_nex_is_forbidden(self, app, client, trio):
        created = make_expense(
            client, trio["alice_token"], trio["nex"], trio["alice"], "30.00",
        ).get_json()["data"]
        outsider = seed_user(app, "mallory")

        resp = client.get(f"/api/v1/expenses/{created['id']}", headers=auth_headers(token_for(app, outsider)))

        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# POST /expenses/preview-split
# ═══════════════════════════════════════════════════════════════════════════

class TestPreviewSplit:

    def test_equal_preview_assigns_remainder_first(self, client, trio):
        resp = client.post(
            "/api/v1/expenses/preview-split",
            json={
                "amount": "100.00",
                "splits": [{"userId": 1}, {"userId": 2}, {"userId": 3}],
            },
            headers=auth_headers(trio["alice_token"]),
        )

        assert resp.status_code == 200, resp.get_json()
        data = resp.get_json()["data"]
        assert data["splitType"] == "EQUALLY"
        assert [s["amount"] for s in data["splits"]] == ["33.34", "33.33", "33.33"]

    def test_preview_writes_nothing(self, client, trio):
        client.post(
            "/api/v1/expenses/preview-split",
            json={"amount": "10.00", "splits": [{"userId": trio["bob"]}]},
            headers=auth_headers(trio["alice_token"]),
        )

        resp = client.get(f"/api/v1/nex/{trio['nex']}/expenses", headers=auth_headers(trio["alice_token"]))
        assert resp.get_json()["data"] == []

    def test_preview_reports_mismatch(self, client, trio):
        resp = client.post(
            "/api/v1/expenses/preview-split",
            json={
                "amount": "10.00",
                "splitType": "AMOUNT",
                "splits": [{"userId": 1, "amount": "4.00"}, {"userId": 2, "amount": "4.00"}],
            },
            headers=auth_headers(trio["alice_token"]),
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SPLIT_SUM_MISMATCH"
