"""Initial schema — all tables, enums, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  A schema change gets a NEW migration file.

Creation order:
  1. PostgreSQL enum types (must exist before tables that reference them)
  2. Tables in FK dependency order (users → nex → nex_members → expenses
     → splits → debts)
  3. Indexes

ON DELETE policies:
  nex_members.*          → RESTRICT  (cannot delete user/nex with members)
  expenses.*             → RESTRICT  (cannot delete nex/user with expenses)
  splits.expense_id      → CASCADE   (splits owned by expense)
  debts.expense_id       → RESTRICT  (debts are retracted explicitly first)
  debts.parent_debt_id   → SET NULL
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration
branch_labels: tuple | None = None
depends_on: tuple | None = None


def _enum(*values: str, name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


def upgrade() -> None:
    """
    Apply the full initial schema.

    Enum types are created with op.execute() so the exact SQL is explicit
    and reviewable; the columns then reference them with create_type=False.
    """

    # ── Step 1: PostgreSQL enum types ─────────────────────────────────────

    op.execute("CREATE TYPE settlement_type_enum AS ENUM ('DETAILED', 'SIMPLIFIED')")
    op.execute("CREATE TYPE nex_type_enum AS ENUM ('PERSONAL', 'GROUP')")
    op.execute("CREATE TYPE member_role_enum AS ENUM ('ADMIN', 'MEMBER')")
    op.execute("CREATE TYPE member_status_enum AS ENUM ('ACTIVE', 'INACTIVE')")
    op.execute("CREATE TYPE split_type_enum AS ENUM ('EQUALLY', 'AMOUNT', 'PERCENTAGE')")
    op.execute("CREATE TYPE debt_status_enum AS ENUM ('UNSETTLED', 'SETTLED')")

    # ── Step 2: users ──────────────────────────────────────────────────────
    # Mirror of the account service's users; no password column here.

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
    )

    # ── Step 3: nex ────────────────────────────────────────────────────────

    op.create_table(
        "nex",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column(
            "created_by",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_nex_creator"),
            nullable=False,
        ),
        sa.Column(
            "settlement_type",
            _enum("DETAILED", "SIMPLIFIED", name="settlement_type_enum"),
            nullable=True,
        ),
        sa.Column(
            "nex_type",
            _enum("PERSONAL", "GROUP", name="nex_type_enum"),
            nullable=False,
            server_default="GROUP",
        ),
        sa.Column(
            "is_archived",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_nex"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_nex_name_nonempty"),
    )

    # ── Step 4: nex_members ────────────────────────────────────────────────
    # Both FKs ON DELETE RESTRICT. UNIQUE(nex_id, user_id).

    op.create_table(
        "nex_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "nex_id",
            sa.Integer(),
            sa.ForeignKey("nex.id", ondelete="RESTRICT", name="fk_nex_members_nex"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_nex_members_user"),
            nullable=False,
        ),
        sa.Column(
            "role",
            _enum("ADMIN", "MEMBER", name="member_role_enum"),
            nullable=False,
            server_default="MEMBER",
        ),
        sa.Column(
            "status",
            _enum("ACTIVE", "INACTIVE", name="member_status_enum"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_nex_members"),
        sa.UniqueConstraint("nex_id", "user_id", name="uq_nex_members_nex_user"),
    )

    # ── Step 5: expenses ───────────────────────────────────────────────────
    # Hard-deleted; category_id belongs to the category service (no FK).

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "nex_id",
            sa.Integer(),
            sa.ForeignKey("nex.id", ondelete="RESTRICT", name="fk_expenses_nex"),
            nullable=False,
        ),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column(
            "payer_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_payer"),
            nullable=False,
        ),
        sa.Column(
            "created_by",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_creator"),
            nullable=False,
        ),
        sa.Column(
            "split_type",
            _enum("EQUALLY", "AMOUNT", "PERCENTAGE", name="split_type_enum"),
            nullable=False,
            server_default="EQUALLY",
        ),
        sa.Column(
            "is_initial_payer_has",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("TRUE"),
        ),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_expenses_title_nonempty",
        ),
    )

    # ── Step 6: splits ─────────────────────────────────────────────────────
    # Zero-amount shares are legal for AMOUNT and PERCENTAGE splits.

    op.create_table(
        "splits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_splits_expense"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_splits_user"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("share_value", sa.Numeric(12, 4), nullable=True),
        sa.Column("percentage", sa.Numeric(7, 4), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_splits"),
        sa.UniqueConstraint("expense_id", "user_id", name="uq_splits_expense_user"),
        sa.CheckConstraint("amount >= 0", name="ck_splits_amount_nonnegative"),
    )

    # ── Step 7: debts ──────────────────────────────────────────────────────
    # CHECK(debtor_id <> creditor_id): nobody owes themselves.

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "nex_id",
            sa.Integer(),
            sa.ForeignKey("nex.id", ondelete="RESTRICT", name="fk_debts_nex"),
            nullable=False,
        ),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="RESTRICT", name="fk_debts_expense"),
            nullable=False,
        ),
        sa.Column(
            "debtor_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_debts_debtor"),
            nullable=False,
        ),
        sa.Column(
            "creditor_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_debts_creditor"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "status",
            _enum("UNSETTLED", "SETTLED", name="debt_status_enum"),
            nullable=False,
            server_default="UNSETTLED",
        ),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "parent_debt_id",
            sa.Integer(),
            sa.ForeignKey("debts.id", ondelete="SET NULL", name="fk_debts_parent"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_debts"),
        sa.CheckConstraint("amount > 0", name="ck_debts_amount_positive"),
        sa.CheckConstraint("debtor_id <> creditor_id", name="ck_debts_no_self_debt"),
    )

    # ── Step 8: Indexes ────────────────────────────────────────────────────
    # Names match what the models declare so autogenerate stays quiet.

    op.create_index("ix_nex_members_nex_id", "nex_members", ["nex_id"])
    op.create_index("ix_nex_members_user_id", "nex_members", ["user_id"])
    op.create_index("ix_expenses_nex_id", "expenses", ["nex_id"])
    op.create_index("ix_expenses_payer_id", "expenses", ["payer_id"])
    op.create_index("ix_splits_expense_id", "splits", ["expense_id"])
    op.create_index("ix_debts_expense_id", "debts", ["expense_id"])
    # Every balance and settlement query filters on (nex_id, status).
    op.create_index("idx_debts_nex_status", "debts", ["nex_id", "status"])


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.
    For local development reset only; production takes a corrective migration.
    """
    op.drop_index("idx_debts_nex_status",   table_name="debts")
    op.drop_index("ix_debts_expense_id",    table_name="debts")
    op.drop_index("ix_splits_expense_id",   table_name="splits")
    op.drop_index("ix_expenses_payer_id",   table_name="expenses")
    op.drop_index("ix_expenses_nex_id",     table_name="expenses")
    op.drop_index("ix_nex_members_user_id", table_name="nex_members")
    op.drop_index("ix_nex_members_nex_id",  table_name="nex_members")

    op.drop_table("debts")
    op.drop_table("splits")
    op.drop_table("expenses")
    op.drop_table("nex_members")
    op.drop_table("nex")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS debt_status_enum")
    op.execute("DROP TYPE IF EXISTS split_type_enum")
    op.execute("DROP TYPE IF EXISTS member_status_enum")
    op.execute("DROP TYPE IF EXISTS member_role_enum")
    op.execute("DROP TYPE IF EXISTS nex_type_enum")
    op.execute("DROP TYPE IF EXISTS settlement_type_enum")
