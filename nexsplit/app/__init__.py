"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances and `flask db migrate` works without a running server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register the route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a JSON provider that writes Decimal as string and reads
     JSON numbers as Decimal, so money never passes through float

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it.
"""

from __future__ import annotations

import json
import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError

from nexsplit.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Serialises Decimal as str and parses JSON floats as Decimal.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001), and a
    request body {"amount": 33.33} reaches the schema as Decimal("33.33").
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)

    def loads(self, s, **kwargs):
        kwargs.setdefault("parse_float", Decimal)
        return json.loads(s, **kwargs)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from nexsplit.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from nexsplit.app.models import (  # noqa: F401
            debt,
            expense,
            nex,
            split,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("nexsplit").setLevel(level)
    app.logger.setLevel(level)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints.

    expenses_bp sits at /api/v1 because it owns both /nex/<id>/expenses and
    /expenses/<id>. Balances and settlements are nex-scoped; users_bp holds
    the per-user settlement views.
    """
    from nexsplit.app.routes.balances import balances_bp
    from nexsplit.app.routes.expenses import expenses_bp
    from nexsplit.app.routes.settlements import settlements_bp
    from nexsplit.app.routes.users import users_bp

    app.register_blueprint(expenses_bp,    url_prefix="/api/v1")
    app.register_blueprint(balances_bp,    url_prefix="/api/v1/nex")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1/nex")
    app.register_blueprint(users_bp,       url_prefix="/api/v1/users")


def _first_validation_message(messages, path: tuple = ()) -> tuple[tuple, str]:
    """
    Walks marshmallow's nested messages and returns (field path, message)
    of the first leaf. Nested list entries are keyed by their index.
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            return _first_validation_message(value, path + (key,))
    if isinstance(messages, list):
        if not messages:
            return path, "Invalid value."
        return _first_validation_message(messages[0], path)
    return path, str(messages)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow errors as MISSING_FIELD / INVALID_FIELD, or
                        the error code a validator raised (400)
      Exception       → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from nexsplit.app.errors import AppError, ErrorCode

    known_codes = {v for k, v in vars(ErrorCode).items() if not k.startswith("_")}

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.http_status >= 500:
            app.logger.error("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """Returns the FIRST error only: one error, not many."""
        path, raw_message = _first_validation_message(error.messages)

        field_parts = [str(p) for p in path if p != "_schema"]
        field = ".".join(field_parts) if field_parts else None

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        # Let werkzeug's own HTTP errors (404 on unknown URL, 405) through.
        from werkzeug.exceptions import HTTPException
        if isinstance(error, HTTPException):
            return error

        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """Adds CORS headers for browser-based local development (DEBUG or TESTING)."""

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Human-readable default message for a code raised as a ValidationError
    message inside a schema.
    """
    _messages = {
        "INVALID_AMOUNT": "Amount must be positive with at most 2 decimal places.",
        "MISSING_PAYER": "payerId is required.",
        "EMPTY_PARTICIPANTS": "At least one participant is required.",
        "DUPLICATE_SPLIT_USER": "The same userId appears more than once in the splits array.",
        "INVALID_SETTLEMENT_SELECTION": "Send settleAll=true or a non-empty transferIds list.",
    }
    return _messages.get(code, "Invalid input.")
