import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.billing_service.models.enums import (
    Program,
    ReviewReason,
    SubscriptionStatus,
    enum_values,
)
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer
from sqlalchemy import Enum as SAEnum
from sqlalchemy import String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Subscription(Base):
    """Recurring payment instrument at Stripe.

    One subscription may fund several profiles (family billing) through
    BillingAssignment rows.
    """

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    stripe_subscription_id: Mapped[str] = mapped_column(
        String(128), unique=True, index=True, nullable=False
    )
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(128), index=True, nullable=True
    )
    program: Mapped[Program] = mapped_column(
        SAEnum(
            Program,
            name="program_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        SAEnum(
            SubscriptionStatus,
            name="subscription_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=SubscriptionStatus.INCOMPLETE,
        nullable=False,
    )

    # In cents
    amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="usd", nullable=False)
    interval: Mapped[str] = mapped_column(String(16), default="month", nullable=False)
    interval_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    current_period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    paid_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_payment_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Subscription {self.stripe_subscription_id} {self.status.value}>"


class BillingAssignment(Base):
    """Link between one program profile and the subscription paying for it.

    At most one active row per profile, enforced by the partial unique index
    below. Rows are deactivated, never deleted.
    """

    __tablename__ = "billing_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscriptions.id"), index=True, nullable=False
    )
    program_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("program_profiles.id"), index=True, nullable=False
    )

    # In cents; for family billing this is the profile's share of the total
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # student_email / student_phone / payer_email / subscription_metadata / manual
    link_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index(
            "uq_billing_assignment_active_profile",
            "program_profile_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_billing_assignments_subscription_active", "subscription_id", "is_active"),
    )

    def __repr__(self):
        state = "active" if self.is_active else "inactive"
        return f"<BillingAssignment profile={self.program_profile_id} {state}>"


class WebhookEvent(Base):
    """Provider events already processed; redeliveries are acknowledged only."""

    __tablename__ = "webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(
        String(128), unique=True, index=True, nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    program: Mapped[Program] = mapped_column(
        SAEnum(
            Program,
            name="program_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<WebhookEvent {self.event_id} {self.event_type}>"


class PaymentReviewItem(Base):
    """Payment event that could not be linked automatically.

    Wrong-child billing is worse than a delayed link, so anything the matcher
    cannot resolve uniquely lands here for staff triage.
    """

    __tablename__ = "payment_review_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    program: Mapped[Program] = mapped_column(
        SAEnum(
            Program,
            name="program_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    reason: Mapped[ReviewReason] = mapped_column(
        SAEnum(
            ReviewReason,
            name="review_reason_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(128), index=True, nullable=True
    )
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True
    )
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # {"student_email": ..., "student_phone": ..., "payer_email": ...}
    attempted_identifiers: Mapped[Optional[dict]] = mapped_column(
        JSONType, nullable=True
    )
    validated_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<PaymentReviewItem {self.event_id} {self.reason.value}>"


class BillingAccount(Base):
    """Per-person Stripe customer record for one program account.

    Captured when a checkout completes so staff can see who has a saved
    payment method even before a subscription is linked.
    """

    __tablename__ = "billing_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    person_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("persons.id"), index=True, nullable=False
    )
    program: Mapped[Program] = mapped_column(
        SAEnum(
            Program,
            name="program_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(128), index=True, nullable=True
    )
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True
    )
    payment_method_captured: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    payment_method_captured_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("person_id", "program", name="uq_billing_account_person"),
    )

    def __repr__(self):
        return f"<BillingAccount person={self.person_id} {self.program.value}>"
