"""
tests/unit/test_auth_middleware.py — Bearer token verification.

A bare Flask app supplies the JWT settings; no database is involved.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from flask import Flask, g

from nexsplit.app.errors import AppError, ErrorCode
from nexsplit.app.middleware.auth_middleware import authenticate_bearer, require_auth

SECRET = "unit-test-secret-key-0123456789abcdef"


@pytest.fixture
def app():
    flask_app = Flask(__name__)
    flask_app.config.update(
        JWT_SECRET_KEY=SECRET,
        JWT_ALGORITHM="HS256",
        JWT_ISSUER=None,
        JWT_AUDIENCE=None,
    )
    return flask_app


def _token(secret: str = SECRET, expires_in: int = 300, **claims) -> str:
    payload = {"sub": "42", "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def _error_code(app, header: str) -> str:
    with app.app_context():
        with pytest.raises(AppError) as exc_info:
            authenticate_bearer(header)
    assert exc_info.value.http_status == 401
    return exc_info.value.code


def test_valid_token_returns_user_id(app):
    with app.app_context():
        assert authenticate_bearer(f"Bearer {_token()}") == 42


def test_scheme_is_case_insensitive(app):
    with app.app_context():
        assert authenticate_bearer(f"bearer {_token()}") == 42


def test_missing_header(app):
    assert _error_code(app, "") == ErrorCode.TOKEN_MISSING


@pytest.mark.parametrize("header", ["Token abc", "Bearer", "Bearer ", "Bearer a b"])
def test_malformed_header(app, header):
    assert _error_code(app, header) == ErrorCode.TOKEN_INVALID


def test_expired_token(app):
    assert _error_code(app, f"Bearer {_token(expires_in=-60)}") == ErrorCode.TOKEN_EXPIRED


def test_wrong_signature(app):
    forged = _token(secret="another-secret-key-0123456789abcdef")
    assert _error_code(app, f"Bearer {forged}") == ErrorCode.TOKEN_INVALID


def test_non_numeric_subject(app):
    assert _error_code(app, f"Bearer {_token(sub='alice')}") == ErrorCode.TOKEN_INVALID


def test_token_without_expiry_is_refused(app):
    token = jwt.encode({"sub": "42"}, SECRET, algorithm="HS256")
    assert _error_code(app, f"Bearer {token}") == ErrorCode.TOKEN_INVALID


def test_issuer_and_audience_are_checked_when_configured(app):
    app.config.update(JWT_ISSUER="accounts", JWT_AUDIENCE="nexsplit")

    good = _token(iss="accounts", aud="nexsplit")
    with app.app_context():
        assert authenticate_bearer(f"Bearer {good}") == 42

    assert _error_code(app, f"Bearer {_token(iss='elsewhere', aud='nexsplit')}") == ErrorCode.TOKEN_INVALID
    assert _error_code(app, f"Bearer {_token(iss='accounts')}") == ErrorCode.TOKEN_INVALID


def test_require_auth_puts_user_id_on_g(app):
    @require_auth
    def view():
        return g.user_id

    with app.test_request_context(headers={"Authorization": f"Bearer {_token(sub='7')}"}):
        assert view() == 7


def test_require_auth_rejects_anonymous_request(app):
    @require_auth
    def view():  # pragma: no cover
        return g.user_id

    with app.test_request_context():
        with pytest.raises(AppError) as exc_info:
            view()
    assert exc_info.value.code == ErrorCode.TOKEN_MISSING
