"""
models/nex.py — Nex (expense group) and NexMember table definitions.

A nex is the unit of locking: every mutating operation on its expenses or
debts takes SELECT ... FOR UPDATE on the nex row first.

Only ACTIVE members count as members for authorization and equal splits.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    String,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexsplit.app.extensions import db
from nexsplit.app.models import enum_values


class SettlementType(str, enum.Enum):
    DETAILED   = "DETAILED"
    SIMPLIFIED = "SIMPLIFIED"


class NexType(str, enum.Enum):
    PERSONAL = "PERSONAL"
    GROUP    = "GROUP"


class MemberRole(str, enum.Enum):
    ADMIN  = "ADMIN"
    MEMBER = "MEMBER"


class MemberStatus(str, enum.Enum):
    ACTIVE   = "ACTIVE"
    INACTIVE = "INACTIVE"


class Nex(db.Model):
    __tablename__ = "nex"

    __table_args__ = (
        CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_nex_name_nonempty"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Used when a settlement request does not name a type. NULL falls back
    # to DEFAULT_SETTLEMENT_TYPE.
    settlement_type: Mapped[SettlementType | None] = mapped_column(
        Enum(SettlementType, name="settlement_type_enum", values_callable=enum_values),
        nullable=True,
    )

    nex_type: Mapped[NexType] = mapped_column(
        Enum(NexType, name="nex_type_enum", values_callable=enum_values),
        nullable=False,
        default=NexType.GROUP,
        server_default=NexType.GROUP.value,
    )

    is_archived: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    members: Mapped[list["NexMember"]] = relationship(
        "NexMember",
        back_populates="nex",
    )

    expenses: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="nex",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Nex id={self.id} name={self.name!r} type={self.nex_type.value}>"


class NexMember(db.Model):
    __tablename__ = "nex_members"

    __table_args__ = (
        UniqueConstraint("nex_id", "user_id", name="uq_nex_members_nex_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    nex_id: Mapped[int] = mapped_column(
        ForeignKey("nex.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    role: Mapped[MemberRole] = mapped_column(
        Enum(MemberRole, name="member_role_enum", values_callable=enum_values),
        nullable=False,
        default=MemberRole.MEMBER,
        server_default=MemberRole.MEMBER.value,
    )

    status: Mapped[MemberStatus] = mapped_column(
        Enum(MemberStatus, name="member_status_enum", values_callable=enum_values),
        nullable=False,
        default=MemberStatus.ACTIVE,
        server_default=MemberStatus.ACTIVE.value,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    nex: Mapped["Nex"] = relationship("Nex", back_populates="members")

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="memberships",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<NexMember nex_id={self.nex_id} user_id={self.user_id} "
            f"role={self.role.value} status={self.status.value}>"
        )
