"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances and Alembic can import the models without a server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure the "splitshare" package logger
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a custom JSON provider to serialise Decimal as string

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic or db.create_all() inspects it.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from flask.logging import default_handler
from marshmallow import ValidationError as SchemaValidationError
from werkzeug.exceptions import HTTPException

from splitshare.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.
# Monetary amounts go over the wire as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # Must run before the first access to app.logger.
    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from splitshare.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from splitshare.app.models import (  # noqa: F401
            expense,
            group,
            membership,
            split,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    app.logger.debug("SplitShare app created with %s config", config_name)
    return app


def _configure_logging(app: Flask) -> None:
    """
    Routes every `splitshare.*` logger (services and app.logger alike)
    through Flask's default stderr handler at the configured LOG_LEVEL.
    """
    package_logger = logging.getLogger("splitshare")
    package_logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    if default_handler not in package_logger.handlers:
        package_logger.addHandler(default_handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    balances_bp and settlements_bp sit at /api/v1 because each owns both a
    group-scoped path (/groups/<id>/...) and a global one (/balances/global,
    /settlements/global).
    """
    from splitshare.app.routes.balances import balances_bp
    from splitshare.app.routes.expenses import expenses_bp
    from splitshare.app.routes.groups import groups_bp
    from splitshare.app.routes.settlements import settlements_bp
    from splitshare.app.routes.users import users_bp

    app.register_blueprint(users_bp,       url_prefix="/api/v1/users")
    app.register_blueprint(groups_bp,      url_prefix="/api/v1/groups")
    app.register_blueprint(expenses_bp,    url_prefix="/api/v1/groups")
    app.register_blueprint(balances_bp,    url_prefix="/api/v1")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError              → structured JSON error envelope with its status
      SchemaValidationError → first marshmallow field error as a 400
      HTTPException         → rendered by werkzeug unchanged
      Exception            → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from splitshare.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError; it propagates here."""
        if error.http_status >= 500:
            app.logger.error("%r", error)
        else:
            app.logger.info("Request failed: %s %s → %s", request.method, request.path, error.code)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(SchemaValidationError)
    def handle_schema_error(error: SchemaValidationError):
        """
        Marshmallow raises with a messages dict keyed by field name.
        Only the FIRST error is returned.

        If the message is itself a registered ErrorCode it is used as the
        code; otherwise MISSING_FIELD / INVALID_FIELD is inferred.
        """
        known_codes = set(vars(ErrorCode).values())
        messages = error.messages  # e.g. {"amount": ["INVALID_AMOUNT_PRECISION"]}

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                raw_message = _first_message(field_errors)
                break
        elif isinstance(messages, list) and messages:
            raw_message = _first_message(messages)

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        """Werkzeug errors (unknown route, wrong method) keep their own status."""
        return error

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
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
    """
    Adds CORS headers for browser-based local development when DEBUG or
    TESTING is true.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _first_message(field_errors) -> str:
    """Digs the first string out of marshmallow's nested message structure."""
    while True:
        if isinstance(field_errors, list):
            if not field_errors:
                return "Invalid value."
            field_errors = field_errors[0]
        elif isinstance(field_errors, dict):
            if not field_errors:
                return "Invalid value."
            field_errors = next(iter(field_errors.values()))
        else:
            return str(field_errors)


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a schema error message IS the error code constant itself.
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_SPLIT_TYPE": "split_type must be one of EQUAL, EXACT or PERCENT.",
        "DUPLICATE_SPLIT_USER": "The same user_id appears more than once in split_data.",
    }
    return _messages.get(code, "Invalid input.")
