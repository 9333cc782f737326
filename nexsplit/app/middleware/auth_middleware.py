"""
middleware/auth_middleware.py — Bearer token verification.

Tokens are issued by the account service; NexSplit only verifies them.
@require_auth checks the signature (JWT_SECRET_KEY / JWT_ALGORITHM), the
expiry, and when configured the issuer (JWT_ISSUER) and audience
(JWT_AUDIENCE), then puts the integer `sub` claim on flask.g.user_id.

Authentication only (401). Whether the user may touch a nex is decided
in the services (403), which receive the user id as a plain int.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, bad signature, wrong iss/aud, bad sub
  TOKEN_EXPIRED  (401) — exp claim is in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from nexsplit.app.errors import AppError, ErrorCode


def _unauthenticated(code: str, message: str) -> AppError:
    return AppError(code, message, 401)


def require_auth(f: Callable) -> Callable:
    """
    Route decorator: authenticates the request, then calls the view.

        @expenses_bp.route("/nex/<int:nex_id>/expenses")
        @require_auth
        def list_expenses(nex_id):
            caller_id = g.user_id
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = authenticate_bearer(request.headers.get("Authorization", ""))
        return f(*args, **kwargs)

    return decorated


def authenticate_bearer(auth_header: str) -> int:
    """
    Verifies an Authorization header value and returns the caller's user id.

    Needs an application context for the JWT settings. Raises AppError (401)
    on any failure; the global error handler renders it.
    """
    if not auth_header:
        raise _unauthenticated(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
        )

    scheme, _, raw_token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not raw_token.strip() or " " in raw_token.strip():
        raise _unauthenticated(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
        )

    config = current_app.config
    options = {"require": ["exp", "sub"]}
    decode_kwargs = {}
    if config.get("JWT_AUDIENCE"):
        decode_kwargs["audience"] = config["JWT_AUDIENCE"]
    else:
        options["verify_aud"] = False
    if config.get("JWT_ISSUER"):
        decode_kwargs["issuer"] = config["JWT_ISSUER"]

    try:
        payload = jwt.decode(
            raw_token.strip(),
            config["JWT_SECRET_KEY"],
            algorithms=[config.get("JWT_ALGORITHM", "HS256")],
            options=options,
            **decode_kwargs,
        )
    except jwt.ExpiredSignatureError:
        raise _unauthenticated(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Obtain a new one from the account service.",
        )
    except jwt.InvalidTokenError:
        # Bad signature, malformed token, missing claims, wrong iss/aud.
        raise _unauthenticated(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
        )

    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        raise _unauthenticated(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim in the access token is not a valid user ID.",
        )
