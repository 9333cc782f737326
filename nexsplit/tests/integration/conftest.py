"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at an in-memory SQLite database unless TEST_DATABASE_URL is set.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Users, nex rows and memberships are owned by other services in
    production, so the helpers insert them directly instead of going
    through HTTP. Tokens are minted with the configured JWT secret.

Helper functions (not fixtures) are provided for common operations:
  - seed_user(app, ...)         → user id
  - seed_nex(app, ...)          → nex id, with the given members
  - token_for(app, user_id)     → signed access token
  - auth_headers(token)         → {"Authorization": "Bearer <token>"}
  - make_expense(client, ...)   → HTTP response
  - execute(client, ...)        → HTTP response

These are plain functions so they can be called with arbitrary arguments
in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import select, text

from nexsplit.app import create_app
from nexsplit.app.extensions import db as _db
from nexsplit.app.models.nex import MemberRole, MemberStatus, Nex, NexMember, NexType, SettlementType
from nexsplit.app.models.user import User


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the session."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test, children before parents.
    Debts reference each other, so child pieces go before their parents.
    """
    yield

    with app.app_context():
        _db.session.rollback()
        _db.session.execute(text("DELETE FROM debts WHERE parent_debt_id IS NOT NULL"))
        _db.session.execute(text("DELETE FROM debts"))
        _db.session.execute(text("DELETE FROM splits"))
        _db.session.execute(text("DELETE FROM expenses"))
        _db.session.execute(text("DELETE FROM nex_members"))
        _db.session.execute(text("DELETE FROM nex"))
        _db.session.execute(text("DELETE FROM users"))
        _db.session.commit()


@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Seeding helpers
# ═══════════════════════════════════════════════════════════════════════════

def seed_user(app, username: str) -> int:
    with app.app_context():
        user = User(username=username, email=f"{username}@example.com")
        _db.session.add(user)
        _db.session.commit()
        return user.id


def seed_nex(
    app,
    creator_id: int,
    member_ids: list[int],
    nex_type: NexType = NexType.GROUP,
    settlement_type: SettlementType | None = SettlementType.DETAILED,
    name: str = "Trip",
) -> int:
    """
    Creates a nex whose creator is an ADMIN member. `member_ids` join as
    plain members; the creator may be repeated there and is added once.
    """
    with app.app_context():
        nex = Nex(
            name=name,
            created_by=creator_id,
            nex_type=nex_type,
            settlement_type=settlement_type,
        )
        _db.session.add(nex)
        _db.session.flush()

        _db.session.add(NexMember(nex_id=nex.id, user_id=creator_id, role=MemberRole.ADMIN))
        for uid in member_ids:
            if uid != creator_id:
                _db.session.add(NexMember(nex_id=nex.id, user_id=uid, role=MemberRole.MEMBER))
        _db.session.commit()
        return nex.id


def deactivate_member(app, nex_id: int, user_id: int) -> None:
    with app.app_context():
        member = _db.session.execute(
            select(NexMember).where(NexMember.nex_id == nex_id, NexMember.user_id == user_id)
        ).scalar_one()
        member.status = MemberStatus.INACTIVE
        _db.session.commit()


def token_for(app, user_id: int, expires_in: timedelta = timedelta(hours=1)) -> str:
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, app.config["JWT_SECRET_KEY"], algorithm="HS256")


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


# ═══════════════════════════════════════════════════════════════════════════
# Request helpers
# ═══════════════════════════════════════════════════════════════════════════

def make_expense(
    client,
    token: str,
    nex_id: int,
    payer_id: int,
    amount: str,
    splits: list[dict] | None = None,
    split_type: str = "EQUALLY",
    title: str = "Test Expense",
    **extra,
):
    """
    Creates an expense and returns the HTTP response.
    For EQUALLY without splits, every active member takes part.
    """
    payload: dict = {
        "title": title,
        "amount": amount,
        "payerId": payer_id,
        "splitType": split_type,
        **extra,
    }
    if splits is not None:
        payload["splits"] = splits

    return client.post(
        f"/api/v1/nex/{nex_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def available(client, token: str, nex_id: int, settlement_type: str | None = None):
    url = f"/api/v1/nex/{nex_id}/settlements/available"
    if settlement_type:
        url += f"?settlementType={settlement_type}"
    return client.get(url, headers=auth_headers(token))


def execute(client, token: str, nex_id: int, **body):
    return client.post(
        f"/api/v1/nex/{nex_id}/settlements/execute",
        json=body,
        headers=auth_headers(token),
    )


@pytest.fixture
def trio(app):
    """
    alice (admin), bob and carol in one GROUP nex with DETAILED settlement.
    Returns a namespace-like dict of ids and tokens.
    """
    alice = seed_user(app, "alice")
    bob = seed_user(app, "bob")
    carol = seed_user(app, "carol")
    nex_id = seed_nex(app, alice, [alice, bob, carol])
    return {
        "nex": nex_id,
        "alice": alice,
        "bob": bob,
        "carol": carol,
        "alice_token": token_for(app, alice),
        "bob_token": token_for(app, bob),
        "carol_token": token_for(app, carol),
    }
