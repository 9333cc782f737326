"""
models/debt.py — Debt table definition.

One row per obligation "debtor owes creditor `amount` because of expense X".
Rows are created UNSETTLED by the debt ledger and move to SETTLED exactly
once. There is no way back: a correction opens a new debt instead.

Key design points:
  - debtor_id <> creditor_id at the DB level. Nobody owes themselves.
  - amount > 0. Zero shares never produce a debt row.
  - parent_debt_id links the pieces when a debt is split on a partial
    settlement, and links a compensating debt to the debt it re-routes.
  - created_at is set in Python so FIFO order is stable within a request.
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
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexsplit.app.extensions import db
from nexsplit.app.models import enum_values


class DebtStatus(str, enum.Enum):
    UNSETTLED = "UNSETTLED"
    SETTLED   = "SETTLED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Debt(db.Model):
    __tablename__ = "debts"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_debts_amount_positive"),
        CheckConstraint("debtor_id <> creditor_id", name="ck_debts_no_self_debt"),
        Index("idx_debts_nex_status", "nex_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    nex_id: Mapped[int] = mapped_column(
        ForeignKey("nex.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # RESTRICT: expenses retract their debts explicitly before being deleted.
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    debtor_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    creditor_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[DebtStatus] = mapped_column(
        Enum(DebtStatus, name="debt_status_enum", values_callable=enum_values),
        nullable=False,
        default=DebtStatus.UNSETTLED,
        server_default=DebtStatus.UNSETTLED.value,
    )

    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    parent_debt_id: Mapped[int | None] = mapped_column(
        ForeignKey("debts.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship("Expense")  # noqa: F821

    debtor: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[debtor_id],
    )

    creditor: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[creditor_id],
    )

    # Set through the relationship so unflushed parents still link up.
    parent: Mapped["Debt | None"] = relationship(
        "Debt",
        remote_side=[id],
    )

    @property
    def currency(self) -> str | None:
        """Debts carry the currency of the expense that produced them."""
        return self.expense.currency if self.expense is not None else None

    @property
    def is_settled(self) -> bool:
        return self.status == DebtStatus.SETTLED

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Debt id={self.id} {self.debtor_id}->{self.creditor_id} "
            f"amount={self.amount} status={self.status.value}>"
        )
