"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - Expenses are immutable. There is no update path and no soft delete;
    rows disappear only when their group is deleted.
  - `amount` uses Numeric(12, 2). Never Float.
  - The split type is stored as a plain string column (native_enum=False)
    so the same model works on PostgreSQL and SQLite.
  - SplitType is a Python enum so it can be imported by schemas and services
    without repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitshare.app.extensions import db


class SplitType(str, enum.Enum):
    """How an expense amount is divided among participants."""
    EQUAL   = "EQUAL"
    EXACT   = "EXACT"
    PERCENT = "PERCENT"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values, not member names."""
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,   # idx_expenses_group
    )

    payer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,   # idx_expenses_payer (global balance scans)
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    split_type: Mapped[SplitType] = mapped_column(
        Enum(
            SplitType,
            name="split_type_enum",
            native_enum=False,
            length=10,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    # Python-side default keeps sub-second ordering for the history view.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="expenses",
    )

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="expenses_paid",
        foreign_keys=[payer_id],
    )

    # Splits are owned by their expense and written in the same flush.
    splits: Mapped[list["Split"]] = relationship(  # noqa: F821
        "Split",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"amount={self.amount} "
            f"split_type={self.split_type}>"
        )
