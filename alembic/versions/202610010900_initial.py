"""initial budget ledger schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None

FREQUENCIES = (
    "weekly",
    "bi-weekly",
    "monthly",
    "quarterly",
    "semi-annually",
    "annually",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("buffer_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_budget_user_month"),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_budget_month_range"),
    )

    op.create_table(
        "recurring_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "frequency", sa.Enum(*FREQUENCIES, name="recurringfrequency"), nullable=False
        ),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column(
            "funded_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("category_type", sa.String(length=50)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )
    op.create_index(
        "ix_recurring_payments_user_active",
        "recurring_payments",
        ["user_id", "is_active"],
    )

    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("access_token", sa.String(length=255), nullable=False),
        sa.Column("provider_account_id", sa.String(length=100), nullable=False),
        sa.Column("institution_name", sa.String(length=100)),
        sa.Column("account_name", sa.String(length=100), nullable=False),
        sa.Column("account_type", sa.String(length=50)),
        sa.Column("last_four", sa.String(length=4)),
        sa.Column(
            "sync_enabled", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("last_synced_at", sa.DateTime()),
        sa.Column("sync_start_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "provider_account_id", name="uq_linked_account_user_provider"
        ),
    )

    op.create_table(
        "budget_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id",
            sa.Integer(),
            sa.ForeignKey("budgets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category_type", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("emoji", sa.String(length=16)),
        sa.Column("category_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index(
        "ix_budget_categories_budget_type",
        "budget_categories",
        ["budget_id", "category_type"],
    )

    op.create_table(
        "budget_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("budget_categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("planned_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "recurring_payment_id",
            sa.Integer(),
            sa.ForeignKey("recurring_payments.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_budget_items_recurring_payment", "budget_items", ["recurring_payment_id"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "budget_item_id",
            sa.Integer(),
            sa.ForeignKey("budget_items.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "linked_account_id",
            sa.Integer(),
            sa.ForeignKey("linked_accounts.id", ondelete="SET NULL"),
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("merchant", sa.String(length=255)),
        sa.Column("provider_transaction_id", sa.String(length=100)),
        sa.Column("provider_account_id", sa.String(length=100)),
        sa.Column("status", sa.String(length=20)),
        sa.Column(
            "is_non_earned", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "provider_transaction_id", name="uq_txn_user_provider_id"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_item", "transactions", ["user_id", "budget_item_id"]
    )
    op.create_index(
        "ix_transactions_user_merchant", "transactions", ["user_id", "merchant"]
    )

    op.create_table(
        "split_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "parent_transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "budget_item_id",
            sa.Integer(),
            sa.ForeignKey("budget_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "is_non_earned", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_split_amount_positive"),
    )
    op.create_index(
        "ix_split_transactions_parent", "split_transactions", ["parent_transaction_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_split_transactions_parent", table_name="split_transactions")
    op.drop_table("split_transactions")
    op.drop_index("ix_transactions_user_merchant", table_name="transactions")
    op.drop_index("ix_transactions_user_item", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_budget_items_recurring_payment", table_name="budget_items")
    op.drop_table("budget_items")
    op.drop_index("ix_budget_categories_budget_type", table_name="budget_categories")
    op.drop_table("budget_categories")
    op.drop_table("linked_accounts")
    op.drop_index("ix_recurring_payments_user_active", table_name="recurring_payments")
    op.drop_table("recurring_payments")
    op.drop_table("budgets")
