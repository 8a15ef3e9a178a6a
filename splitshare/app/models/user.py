"""
models/user.py — User table definition.

No business logic. No imports from services or routes.

Users are created the first time an authenticated principal calls
POST /users/me and are patched on every later call. They are never deleted.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitshare.app.extensions import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Opaque principal id from the identity provider ("<iss>|<sub>" or "<sub>").
    token_identifier: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,   # idx_users_token
    )

    # Display name only. Not unique.
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Stable lowercase handle used to add people to groups.
    username: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,   # idx_users_username
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,   # idx_users_email
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────
    # Read-only navigation. No logic here.

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="user",
    )

    # Expenses this user paid for (payer_id FK)
    expenses_paid: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="payer",
        foreign_keys="[Expense.payer_id]",
    )

    # Splits assigned to this user
    splits: Mapped[list["Split"]] = relationship(  # noqa: F821
        "Split",
        back_populates="user",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} username={self.username!r}>"
