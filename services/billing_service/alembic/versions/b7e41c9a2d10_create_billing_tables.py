"""create_billing_tables

Revision ID: b7e41c9a2d10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "b7e41c9a2d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    "program_enum": ("mahad_program", "dugsi_program"),
    "contact_type_enum": ("email", "phone", "whatsapp"),
    "contact_verification_status_enum": ("unverified", "verified", "invalid"),
    "enrollment_status_enum": ("registered", "enrolled", "withdrawn"),
    "graduation_status_enum": ("non_graduate", "graduate"),
    "payment_frequency_enum": ("monthly", "bi_monthly"),
    "billing_type_enum": ("full_time", "full_time_scholarship", "part_time", "exempt"),
    "subscription_status_enum": (
        "incomplete",
        "incomplete_expired",
        "trialing",
        "active",
        "past_due",
        "canceled",
        "unpaid",
        "paused",
    ),
    "review_reason_enum": ("no_match", "rate_mismatch"),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created once up front; program_enum is shared by several tables
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    """Upgrade schema - Add billing service tables."""
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "persons",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "contact_points",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("person_id", sa.Uuid(), nullable=False),
        sa.Column("type", _enum("contact_type_enum"), nullable=False),
        sa.Column("value", sa.String(length=320), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        sa.Column(
            "verification_status",
            _enum("contact_verification_status_enum"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["person_id"], ["persons.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("person_id", "type", "value", name="uq_contact_point_person"),
    )
    op.create_index("ix_contact_points_person_id", "contact_points", ["person_id"])
    op.create_index("ix_contact_points_type_value", "contact_points", ["type", "value"])

    op.create_table(
        "program_profiles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("person_id", sa.Uuid(), nullable=False),
        sa.Column("program", _enum("program_enum"), nullable=False),
        sa.Column("status", _enum("enrollment_status_enum"), nullable=False),
        sa.Column("graduation_status", _enum("graduation_status_enum"), nullable=True),
        sa.Column("payment_frequency", _enum("payment_frequency_enum"), nullable=True),
        sa.Column("billing_type", _enum("billing_type_enum"), nullable=True),
        sa.Column("family_reference_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["person_id"], ["persons.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("person_id", "program", name="uq_program_profile_person"),
    )
    op.create_index("ix_program_profiles_person_id", "program_profiles", ["person_id"])
    op.create_index(
        "ix_program_profiles_family_reference_id",
        "program_profiles",
        ["family_reference_id"],
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(length=128), nullable=False),
        sa.Column("stripe_customer_id", sa.String(length=128), nullable=True),
        sa.Column("program", _enum("program_enum"), nullable=False),
        sa.Column("status", _enum("subscription_status_enum"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("interval", sa.String(length=16), nullable=False),
        sa.Column("interval_count", sa.Integer(), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_subscriptions_stripe_subscription_id",
        "subscriptions",
        ["stripe_subscription_id"],
        unique=True,
    )
    op.create_index(
        "ix_subscriptions_stripe_customer_id", "subscriptions", ["stripe_customer_id"]
    )

    op.create_table(
        "billing_assignments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("subscription_id", sa.Uuid(), nullable=False),
        sa.Column("program_profile_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("link_method", sa.String(length=32), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["program_profile_id"], ["program_profiles.id"]),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_billing_assignments_subscription_id",
        "billing_assignments",
        ["subscription_id"],
    )
    op.create_index(
        "ix_billing_assignments_program_profile_id",
        "billing_assignments",
        ["program_profile_id"],
    )
    op.create_index(
        "ix_billing_assignments_subscription_active",
        "billing_assignments",
        ["subscription_id", "is_active"],
    )
    # One active subscription per profile
    op.create_index(
        "uq_billing_assignment_active_profile",
        "billing_assignments",
        ["program_profile_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("program", _enum("program_enum"), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_webhook_events_event_id", "webhook_events", ["event_id"], unique=True
    )

    op.create_table(
        "payment_review_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("program", _enum("program_enum"), nullable=False),
        sa.Column("reason", _enum("review_reason_enum"), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(length=128), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=128), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("attempted_identifiers", postgresql.JSONB(), nullable=True),
        sa.Column("validated_email", sa.String(length=320), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(length=255), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_payment_review_items_event_id", "payment_review_items", ["event_id"]
    )
    op.create_index(
        "ix_payment_review_items_stripe_subscription_id",
        "payment_review_items",
        ["stripe_subscription_id"],
    )


def downgrade() -> None:
    """Downgrade schema - Remove billing service tables."""
    op.drop_index(
        "ix_payment_review_items_stripe_subscription_id",
        table_name="payment_review_items",
    )
    op.drop_index("ix_payment_review_items_event_id", table_name="payment_review_items")
    op.drop_table("payment_review_items")

    op.drop_index("ix_webhook_events_event_id", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index(
        "uq_billing_assignment_active_profile", table_name="billing_assignments"
    )
    op.drop_index(
        "ix_billing_assignments_subscription_active", table_name="billing_assignments"
    )
    op.drop_index(
        "ix_billing_assignments_program_profile_id", table_name="billing_assignments"
    )
    op.drop_index(
        "ix_billing_assignments_subscription_id", table_name="billing_assignments"
    )
    op.drop_table("billing_assignments")

    op.drop_index("ix_subscriptions_stripe_customer_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_stripe_subscription_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index(
        "ix_program_profiles_family_reference_id", table_name="program_profiles"
    )
    op.drop_index("ix_program_profiles_person_id", table_name="program_profiles")
    op.drop_table("program_profiles")

    op.drop_index("ix_contact_points_type_value", table_name="contact_points")
    op.drop_index("ix_contact_points_person_id", table_name="contact_points")
    op.drop_table("contact_points")

    op.drop_table("persons")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
