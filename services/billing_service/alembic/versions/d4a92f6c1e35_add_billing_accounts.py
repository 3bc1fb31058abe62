"""add billing accounts and review reasons

Revision ID: d4a92f6c1e35
Revises: b7e41c9a2d10
Create Date: 2026-10-18 14:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "d4a92f6c1e35"
down_revision = "b7e41c9a2d10"
branch_labels = None
depends_on = None

NEW_REVIEW_REASONS = ("invalid_link", "not_billable")


def upgrade() -> None:
    for label in NEW_REVIEW_REASONS:
        op.execute(
            f"""
            DO $$
            BEGIN
                IF NOT EXISTS (
                    SELECT 1
                    FROM pg_enum e
                    JOIN pg_type t ON t.oid = e.enumtypid
                    WHERE t.typname = 'review_reason_enum'
                      AND e.enumlabel = '{label}'
                ) THEN
                    ALTER TYPE review_reason_enum ADD VALUE '{label}';
                END IF;
            END
            $$;
            """
        )

    op.create_table(
        "billing_accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("person_id", sa.Uuid(), nullable=False),
        sa.Column(
            "program",
            postgresql.ENUM(name="program_enum", create_type=False),
            nullable=False,
        ),
        sa.Column("stripe_customer_id", sa.String(length=128), nullable=True),
        sa.Column("payment_intent_id", sa.String(length=128), nullable=True),
        sa.Column("payment_method_captured", sa.Boolean(), nullable=False),
        sa.Column(
            "payment_method_captured_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["person_id"], ["persons.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("person_id", "program", name="uq_billing_account_person"),
    )
    op.create_index("ix_billing_accounts_person_id", "billing_accounts", ["person_id"])
    op.create_index(
        "ix_billing_accounts_stripe_customer_id",
        "billing_accounts",
        ["stripe_customer_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_billing_accounts_stripe_customer_id", table_name="billing_accounts")
    op.drop_index("ix_billing_accounts_person_id", table_name="billing_accounts")
    op.drop_table("billing_accounts")
    # PostgreSQL does not support removing enum values safely in-place.
