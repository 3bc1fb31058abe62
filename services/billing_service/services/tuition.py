"""Tuition rate calculation.

All amounts are integer cents. Mahad students are billed individually from a
fixed rate table; Dugsi children are billed per family with a sibling
discount ladder.

Mahad rate formula:
1. Base rate by graduation status and payment frequency (per month).
2. Billing type modifier:
   - FULL_TIME: 100% of base
   - FULL_TIME_SCHOLARSHIP: base minus SCHOLARSHIP_DISCOUNT
   - PART_TIME: half of base, floored
   - EXEMPT: 0 (no subscription)
3. Bi-monthly cycles cover two months, so the per-month figure is doubled.
"""

from typing import Optional

from libs.common.currency import format_cents
from services.billing_service.models.enums import (
    BillingType,
    GraduationStatus,
    PaymentFrequency,
)

# Bi-monthly is a discounted bulk rate, tabulated separately rather than
# derived from the monthly one.
MAHAD_BASE_RATES: dict[GraduationStatus, dict[PaymentFrequency, int]] = {
    GraduationStatus.NON_GRADUATE: {
        PaymentFrequency.MONTHLY: 12000,
        PaymentFrequency.BI_MONTHLY: 11000,
    },
    GraduationStatus.GRADUATE: {
        PaymentFrequency.MONTHLY: 9500,
        PaymentFrequency.BI_MONTHLY: 9000,
    },
}

SCHOLARSHIP_DISCOUNT = 3000

DUGSI_BASE_RATE = 8000  # 1st and 2nd child
DUGSI_THIRD_CHILD_RATE = 7000
DUGSI_FOURTH_PLUS_RATE = 6000


def calculate_mahad_rate(
    graduation_status: Optional[GraduationStatus],
    payment_frequency: Optional[PaymentFrequency],
    billing_type: Optional[BillingType],
) -> int:
    """Return the Mahad tuition for one billing cycle, in cents.

    A missing billing type means the student is not billable yet and an
    exempt student pays nothing; both return 0.

    >>> calculate_mahad_rate(GraduationStatus.GRADUATE, PaymentFrequency.BI_MONTHLY, BillingType.FULL_TIME)
    18000
    """
    if billing_type is None or billing_type == BillingType.EXEMPT:
        return 0

    effective_status = graduation_status or GraduationStatus.NON_GRADUATE
    effective_frequency = payment_frequency or PaymentFrequency.MONTHLY

    rate = MAHAD_BASE_RATES[effective_status][effective_frequency]

    if billing_type == BillingType.PART_TIME:
        rate = rate // 2
    elif billing_type == BillingType.FULL_TIME_SCHOLARSHIP:
        rate = rate - SCHOLARSHIP_DISCOUNT

    if effective_frequency == PaymentFrequency.BI_MONTHLY:
        rate = rate * 2

    return rate


def calculate_dugsi_rate(child_count: int) -> int:
    """Monthly family rate for ``child_count`` enrolled children, in cents."""
    if isinstance(child_count, bool) or not isinstance(child_count, int):
        return 0
    return get_dugsi_rate_breakdown(child_count)["total"]


def get_dugsi_rate_breakdown(child_count: int) -> dict[str, int]:
    if child_count <= 0:
        return {"first_two": 0, "third": 0, "fourth_plus": 0, "total": 0}

    first_two = DUGSI_BASE_RATE * min(child_count, 2)
    third = DUGSI_THIRD_CHILD_RATE if child_count >= 3 else 0
    fourth_plus = DUGSI_FOURTH_PLUS_RATE * max(child_count - 3, 0)
    return {
        "first_two": first_two,
        "third": third,
        "fourth_plus": fourth_plus,
        "total": first_two + third + fourth_plus,
    }


def calculate_split_amounts(total_amount: int, count: int) -> list[int]:
    """Split a family total evenly; the remainder goes to the last share.

    >>> calculate_split_amounts(1001, 3)
    [333, 333, 335]
    """
    if count <= 0:
        raise ValueError("count must be positive")

    base = total_amount // count
    remainder = total_amount - base * count
    amounts = [base] * count
    amounts[-1] += remainder
    return amounts


def billing_interval(payment_frequency: Optional[PaymentFrequency]) -> tuple[str, int]:
    """Stripe recurring interval for a frequency: ("month", 1) or ("month", 2)."""
    if payment_frequency == PaymentFrequency.BI_MONTHLY:
        return "month", 2
    return "month", 1


def should_create_subscription(billing_type: Optional[BillingType]) -> bool:
    return billing_type is not None and billing_type != BillingType.EXEMPT


_BILLING_TYPE_DESCRIPTIONS = {
    BillingType.FULL_TIME: "Full-time student",
    BillingType.FULL_TIME_SCHOLARSHIP: (
        f"Full-time with scholarship ({format_cents(SCHOLARSHIP_DISCOUNT)} discount)"
    ),
    BillingType.PART_TIME: "Part-time student (50% rate)",
    BillingType.EXEMPT: "Exempt from payment",
}


def describe_billing_type(billing_type: Optional[BillingType]) -> str:
    if billing_type is None:
        return "Billing not configured"
    return _BILLING_TYPE_DESCRIPTIONS[billing_type]


def format_rate_display(cents: int, payment_frequency: Optional[PaymentFrequency]) -> str:
    """E.g. ``$220.00/bi-monthly``."""
    suffix = "/bi-monthly" if payment_frequency == PaymentFrequency.BI_MONTHLY else "/month"
    return f"{format_cents(cents)}{suffix}"
