"""initial ledger schema

Revision ID: 202501100900
Revises:
Create Date: 2025-01-10 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202501100900"
down_revision = None
branch_labels = None
depends_on = None

PAYMENT_TYPE = ("cash", "online")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "profiles",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("name", sa.String(length=120)),
        sa.Column("email", sa.String(length=254)),
        *_timestamps(),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", sa.Enum(*PAYMENT_TYPE, name="paymenttype"), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("recurring_id", sa.Integer()),
        sa.Column("occurrence_due", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "recurring_id",
            "occurrence_due",
            name="uq_expense_recurring_occurrence",
        ),
        sa.CheckConstraint(
            "amount_cents >= 0 AND amount_cents <= 1000000",
            name="ck_expenses_amount_range",
        ),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index(
        "ix_expenses_user_category_date", "expenses", ["user_id", "category", "date"]
    )

    op.create_table(
        "balances",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("cash_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("online_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column(
            "period",
            sa.Enum("daily", "weekly", "monthly", name="budgetperiod"),
            nullable=False,
        ),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "category", "period", name="uq_budget_user_category_period"
        ),
        sa.CheckConstraint("limit_cents > 0", name="ck_budget_limit_positive"),
    )

    op.create_table(
        "recurring_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", sa.Enum(*PAYMENT_TYPE, name="paymenttype"), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "frequency",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="frequency"),
            nullable=False,
        ),
        sa.Column("next_due", sa.DateTime(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )
    op.create_index(
        "ix_recurring_active_next_due", "recurring_expenses", ["active", "next_due"]
    )
    op.create_index("ix_recurring_user", "recurring_expenses", ["user_id"])


def downgrade():
    op.drop_index("ix_recurring_user", table_name="recurring_expenses")
    op.drop_index("ix_recurring_active_next_due", table_name="recurring_expenses")
    op.drop_table("recurring_expenses")
    op.drop_table("budgets")
    op.drop_table("balances")
    op.drop_index("ix_expenses_user_category_date", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("profiles")
