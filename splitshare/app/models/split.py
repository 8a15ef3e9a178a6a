"""
models/split.py — Split table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2). Never Float.
  - A split may be zero: EXACT/PERCENT payloads list every participant,
    including those who owe nothing for this expense.
  - expense_id is ON DELETE CASCADE; splits are owned by their expense.
  - UNIQUE(expense_id, user_id): one split row per participant.

The split-sum tolerance (0.01 absolute for EXACT, 0.1 percentage points for
PERCENT) is enforced in expense_service.py before anything is written.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitshare.app.extensions import db


class Split(db.Model):
    __tablename__ = "splits"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_splits_expense_user"),
        CheckConstraint("amount >= 0", name="ck_splits_amount_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,   # idx_splits_expense
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,   # idx_splits_user (global balance scans)
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="splits",
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="splits",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Split id={self.id} "
            f"expense_id={self.expense_id} "
            f"user_id={self.user_id} "
            f"amount={self.amount}>"
        )
