"""Billing Service models package."""

from services.billing_service.models.billing import (
    BillingAccount,
    BillingAssignment,
    PaymentReviewItem,
    Subscription,
    WebhookEvent,
)
from services.billing_service.models.enums import (
    BillingType,
    ContactType,
    ContactVerificationStatus,
    EnrollmentStatus,
    GraduationStatus,
    MatchMethod,
    PaymentFrequency,
    Program,
    ReviewReason,
    SubscriptionStatus,
)
from services.billing_service.models.identity import (
    ContactPoint,
    Person,
    ProgramProfile,
)

__all__ = [
    "BillingAccount",
    "BillingAssignment",
    "BillingType",
    "ContactPoint",
    "ContactType",
    "ContactVerificationStatus",
    "EnrollmentStatus",
    "GraduationStatus",
    "MatchMethod",
    "PaymentFrequency",
    "PaymentReviewItem",
    "Person",
    "Program",
    "ProgramProfile",
    "ReviewReason",
    "Subscription",
    "SubscriptionStatus",
    "WebhookEvent",
]
