"""
services/user_service.py — User registration from identity-provider claims.

SplitShare does not hold credentials. A user row is created the first time
a verified principal calls POST /users/me and is patched on every later
call, so the stored profile follows the identity provider.

Profile derivation:
  handle = first of username, nickname, email local part,
           first 8 chars of the token identifier; lower-cased, with a
           numeric suffix (alice2, alice3, ...) when another user holds it
  name   = first of name, nickname, handle, "Guest"

Layer rules:
  - No Flask imports. The route passes flask.g.identity as a plain dict.
  - Commits are the route's responsibility; services only flush.
"""

from __future__ import annotations

import itertools
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from splitshare.app.errors import AuthError, ErrorCode, ValidationError
from splitshare.app.models.user import User

logger = logging.getLogger(__name__)

_HANDLE_MAX = 50
_NAME_MAX = 100


def _first_present(*values: str | None) -> str | None:
    for value in values:
        if value is not None and value.strip():
            return value.strip()
    return None


def derive_handle(identity: dict) -> str:
    email = identity.get("email") or ""
    local_part = email.split("@", 1)[0] if "@" in email else None
    handle = _first_present(
        identity.get("username"),
        identity.get("nickname"),
        local_part,
        identity["token_identifier"][:8],
    )
    return handle.lower()[:_HANDLE_MAX]


def derive_name(identity: dict, handle: str) -> str:
    name = _first_present(identity.get("name"), identity.get("nickname"), handle)
    return (name or "Guest")[:_NAME_MAX]


def _unique_handle(handle: str, own_id: int | None, session: Session) -> str:
    """
    Returns handle, or handle2, handle3, ... when another user holds it.
    The caller's own row never counts as a collision.
    """
    candidate = handle
    for n in itertools.count(2):
        owner = session.execute(
            select(User).where(User.username == candidate)
        ).scalar_one_or_none()
        if owner is None or owner.id == own_id:
            return candidate
        suffix = str(n)
        candidate = handle[:_HANDLE_MAX - len(suffix)] + suffix


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "username": user.username,
        "email": user.email,
    }


def store_user(identity: dict, session: Session) -> User:
    """
    Idempotent upsert of the authenticated principal.

    Args:
        identity: {"token_identifier", "name", "email", "nickname", "username"}
                  as attached by the auth middleware. Only token_identifier
                  is guaranteed.

    Raises:
      ValidationError(MISSING_EMAIL, 422)       — token carries no email
      ValidationError(DUPLICATE_EMAIL, 409)     — email taken by another user

    Returns: the stored User (id assigned).
    """
    token_identifier = identity["token_identifier"]

    email = (identity.get("email") or "").strip().lower()
    if not email:
        raise ValidationError(
            ErrorCode.MISSING_EMAIL,
            "Your identity provider did not supply an email address.",
            field="email",
        )

    handle = derive_handle(identity)
    name = derive_name(identity, handle)

    user = session.execute(
        select(User).where(User.token_identifier == token_identifier)
    ).scalar_one_or_none()
    own_id = user.id if user is not None else None

    handle = _unique_handle(handle, own_id, session)

    email_owner = session.execute(
        select(User).where(User.email == email)
    ).scalar_one_or_none()
    if email_owner is not None and email_owner.id != own_id:
        raise ValidationError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            409,
            field="email",
        )

    if user is None:
        user = User(
            token_identifier=token_identifier,
            name=name,
            username=handle,
            email=email,
        )
        session.add(user)
        session.flush()
        logger.info("Registered user %s (%s)", user.id, handle)
        return user

    if (user.name, user.username, user.email) != (name, handle, email):
        user.name = name
        user.username = handle
        user.email = email
        session.flush()
        logger.info("Updated profile of user %s", user.id)

    return user


def resolve_caller(token_identifier: str, session: Session) -> User:
    """
    Maps a verified principal to its stored User.

    Raises:
      AuthError(USER_NOT_REGISTERED, 401) — the principal never called
        POST /users/me.
    """
    user = session.execute(
        select(User).where(User.token_identifier == token_identifier)
    ).scalar_one_or_none()
    if user is None:
        raise AuthError(
            ErrorCode.USER_NOT_REGISTERED,
            "No SplitShare account for this sign-in. Call POST /users/me first.",
        )
    return user


def list_users(session: Session) -> list[dict]:
    """Every registered user, by id. Clients use this to resolve names."""
    users = session.execute(select(User).order_by(User.id)).scalars().all()
    return [serialize_user(u) for u in users]
