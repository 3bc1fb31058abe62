"""Enum definitions for billing service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class Program(str, enum.Enum):
    MAHAD_PROGRAM = "mahad_program"
    DUGSI_PROGRAM = "dugsi_program"


class ContactType(str, enum.Enum):
    EMAIL = "email"
    PHONE = "phone"
    WHATSAPP = "whatsapp"


class ContactVerificationStatus(str, enum.Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    INVALID = "invalid"


class EnrollmentStatus(str, enum.Enum):
    REGISTERED = "registered"
    ENROLLED = "enrolled"
    WITHDRAWN = "withdrawn"


class GraduationStatus(str, enum.Enum):
    NON_GRADUATE = "non_graduate"
    GRADUATE = "graduate"


class PaymentFrequency(str, enum.Enum):
    MONTHLY = "monthly"
    BI_MONTHLY = "bi_monthly"


class BillingType(str, enum.Enum):
    FULL_TIME = "full_time"
    FULL_TIME_SCHOLARSHIP = "full_time_scholarship"
    PART_TIME = "part_time"
    EXEMPT = "exempt"


class SubscriptionStatus(str, enum.Enum):
    # Mirrors Stripe's subscription.status values
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class ReviewReason(str, enum.Enum):
    NO_MATCH = "no_match"
    RATE_MISMATCH = "rate_mismatch"
    INVALID_LINK = "invalid_link"
    NOT_BILLABLE = "not_billable"


class MatchMethod(str, enum.Enum):
    STUDENT_EMAIL = "student_email"
    STUDENT_PHONE = "student_phone"
    PAYER_EMAIL = "payer_email"
