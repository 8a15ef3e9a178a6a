"""
middleware/auth_middleware.py — bearer-token authentication decorators.

Tokens are issued by an external identity provider; SplitShare only
verifies them.

@require_auth:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Verifies signature, expiry and (when configured) issuer and audience
  3. Attaches the decoded identity claims to flask.g.identity and the
     principal's token identifier to flask.g.token_identifier

@require_user additionally resolves the token identifier to a stored User
and attaches its id to flask.g.user_id. A caller that never called
POST /users/me gets 401 USER_NOT_REGISTERED.

Middleware = authentication (401). Services = authorization (403).
Services receive user ids as plain integers, with no knowledge of JWT or
HTTP headers.
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from splitshare.app.errors import AuthError, ErrorCode


# Claims copied from the verified token into g.identity.
_PROFILE_CLAIMS = ("name", "email", "nickname", "username")


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces a valid bearer token.

    Usage:
        @users_bp.route("/me", methods=["POST"])
        @require_auth
        def store_me():
            identity = g.identity
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_user(f: Callable) -> Callable:
    """Route decorator: @require_auth plus caller resolution to g.user_id."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        from splitshare.app.extensions import db
        from splitshare.app.services import user_service

        _authenticate_request()
        user = user_service.resolve_caller(g.token_identifier, db.session)
        g.user_id = user.id
        return f(*args, **kwargs)

    return decorated


def token_identifier_from_claims(payload: dict) -> str:
    """'<iss>|<sub>' when an issuer claim is present, else the bare subject."""
    sub = str(payload["sub"])
    iss = payload.get("iss")
    return f"{iss}|{sub}" if iss else sub


def _authenticate_request() -> None:
    """
    Performs the full authentication sequence and populates flask.g.

    Raises AuthError on any failure; the global error handler renders it.
    """
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AuthError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
        )

    raw_token = parts[1]
    config = current_app.config

    # ── Step 3: Decode and verify the JWT ─────────────────────────────────
    try:
        payload = jwt.decode(
            raw_token,
            config["JWT_SECRET_KEY"],
            algorithms=[config.get("JWT_ALGORITHM", "HS256")],
            audience=config.get("JWT_AUDIENCE"),
            issuer=config.get("JWT_ISSUER"),
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Sign in again.",
        )
    except jwt.InvalidTokenError:
        # Bad signature, malformed token, wrong issuer/audience, missing sub.
        raise AuthError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
        )

    # ── Step 4: Attach identity to flask.g ────────────────────────────────
    identity = {claim: payload.get(claim) for claim in _PROFILE_CLAIMS}
    identity["token_identifier"] = token_identifier_from_claims(payload)

    g.identity = identity
    g.token_identifier = identity["token_identifier"]
