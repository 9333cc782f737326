"""
models/split.py — Split (one participant's share of an expense).

Key design points:
  - `amount` is the computed share, Numeric(12, 2). Zero is allowed for
    AMOUNT and PERCENTAGE splits.
  - `share_value` is the raw input: percentage points for PERCENTAGE, the
    entered amount for AMOUNT, NULL for EQUALLY.
  - `percentage` is kept at four decimal places and shown with one.
  - `position` preserves input order; the remainder rule depends on it.
  - UNIQUE(expense_id, user_id): a user appears once per expense.

sum(splits.amount) == expense.amount (within one minor unit) is enforced by
the split calculator before anything is written.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexsplit.app.extensions import db


class Split(db.Model):
    __tablename__ = "splits"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_splits_expense_user"),
        CheckConstraint("amount >= 0", name="ck_splits_amount_nonnegative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE CASCADE: splits are destroyed with their expense.
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    share_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="splits",
    )

    user: Mapped["User"] = relationship("User")  # noqa: F821

    @property
    def share_type(self):
        """Mirrors the owning expense's split type."""
        return self.expense.split_type

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Split id={self.id} "
            f"expense_id={self.expense_id} "
            f"user_id={self.user_id} "
            f"amount={self.amount}>"
        )
