"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2). Never Float.
  - Expenses are hard-deleted. Deletion goes through debt_ledger.retract_debts()
    first, which refuses when any of the expense's debts has been settled.
  - `category_id` belongs to the category service; it is stored, never joined.
  - SplitType is a Python enum so the calculator, schemas and services share
    one definition instead of repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexsplit.app.extensions import db
from nexsplit.app.models import enum_values


class SplitType(str, enum.Enum):
    EQUALLY    = "EQUALLY"
    AMOUNT     = "AMOUNT"
    PERCENTAGE = "PERCENTAGE"


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_expenses_title_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    nex_id: Mapped[int] = mapped_column(
        ForeignKey("nex.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # NUMERIC(12, 2). Input with more precision than the currency allows is
    # rejected, not rounded.
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
        server_default="USD",
    )

    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    payer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    split_type: Mapped[SplitType] = mapped_column(
        Enum(SplitType, name="split_type_enum", values_callable=enum_values),
        nullable=False,
        default=SplitType.EQUALLY,
        server_default=SplitType.EQUALLY.value,
    )

    # Whether the payer's own share counts toward what they consumed.
    is_initial_payer_has: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    expense_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        default=date.today,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Set on every successful update.
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    nex: Mapped["Nex"] = relationship(  # noqa: F821
        "Nex",
        back_populates="expenses",
    )

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[payer_id],
    )

    # Splits are owned by their expense and kept in input order.
    splits: Mapped[list["Split"]] = relationship(  # noqa: F821
        "Split",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="Split.position",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"nex_id={self.nex_id} "
            f"amount={self.amount} {self.currency} "
            f"split_type={self.split_type.value}>"
        )
