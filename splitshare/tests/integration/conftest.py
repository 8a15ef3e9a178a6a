"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against an in-memory SQLite database unless TEST_DATABASE_URL
    points somewhere else.
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Identity tokens are minted here with PyJWT and the testing signing key,
    standing in for the external identity provider.

Helper functions (not fixtures) are provided for common operations:
  - make_token(...)          → signed bearer token for a principal
  - sign_in(client, ...)     → registers the principal via POST /users/me
  - auth_headers(token)      → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)  → group dict
  - add_member(...)          → HTTP response
  - make_expense(...)        → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import delete

from splitshare.app import create_app
from splitshare.app.extensions import db as _db
from splitshare.app.models.expense import Expense
from splitshare.app.models.group import Group
from splitshare.app.models.membership import Membership
from splitshare.app.models.split import Split
from splitshare.app.models.user import User


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire
    test session, creates every table, and drops them at teardown.
    """
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
    """
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.session.execute(delete(Split))
        _db.session.execute(delete(Expense))
        _db.session.execute(delete(Membership))
        _db.session.execute(delete(Group))
        _db.session.execute(delete(User))
        _db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_token(
    client,
    sub: str,
    email: str | None = None,
    name: str | None = None,
    username: str | None = None,
    expires_in: timedelta = timedelta(minutes=15),
    **extra_claims,
) -> str:
    """Signs a token the way the identity provider would."""
    now = datetime.now(timezone.utc)
    claims = {"sub": sub, "iat": now, "exp": now + expires_in, **extra_claims}
    if email is not None:
        claims["email"] = email
    if name is not None:
        claims["name"] = name
    if username is not None:
        claims["username"] = username

    config = client.application.config
    return jwt.encode(claims, config["JWT_SECRET_KEY"], algorithm=config["JWT_ALGORITHM"])


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def sign_in(client, handle: str = "alice", name: str | None = None) -> dict:
    """
    Registers (or refreshes) a principal via POST /users/me.
    Returns: {"token": "...", "user": {"id", "name", "username", "email"}}
    """
    token = make_token(
        client,
        sub=f"sub-{handle}",
        email=f"{handle}@test.com",
        name=name or handle.capitalize(),
        username=handle,
    )
    resp = client.post("/api/v1/users/me", headers=auth_headers(token))
    assert resp.status_code == 200, f"sign_in failed: {resp.get_json()}"
    return {"token": token, "user": resp.get_json()["data"]}


def make_group(client, token: str, name: str = "Test Group") -> dict:
    """
    Creates a group and returns the group data dict.
    The caller (token owner) becomes the group admin and first member.
    """
    resp = client.post(
        "/api/v1/groups/",
        json={"name": name},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, token: str, group_id: int, handle_or_email: str):
    """Adds a registered user to a group. Returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/members",
        json={"handle_or_email": handle_or_email},
        headers=auth_headers(token),
    )


def make_expense(
    client,
    token: str,
    group_id: int,
    amount: str,
    split_type: str = "EQUAL",
    split_data: list[dict] | None = None,
    description: str = "Test Expense",
    paid_by: int | None = None,
):
    """
    Records an expense and returns the HTTP response.
    split_data entries are {"user_id": int, "value": str}.
    """
    payload: dict = {
        "description": description,
        "amount": amount,
        "split_type": split_type,
    }
    if split_data is not None:
        payload["split_data"] = split_data
    if paid_by is not None:
        payload["paid_by"] = paid_by

    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def setup_group(client, *handles: str, name: str = "Trip") -> tuple[list[dict], dict]:
    """
    Signs in every handle, lets the first create a group and add the rest.
    Returns (people, group) where people[i] = {"token", "user"}.
    """
    people = [sign_in(client, handle) for handle in handles]
    group = make_group(client, people[0]["token"], name)
    for person in people[1:]:
        resp = add_member(client, people[0]["token"], group["id"], person["user"]["username"])
        assert resp.status_code == 201, f"add_member failed: {resp.get_json()}"
    return people, group
