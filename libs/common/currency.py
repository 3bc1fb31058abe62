"""Currency helpers for tuition amounts.

Internal storage unit: cents (smallest USD unit, 100 cents = $1).
Stripe reports ``unit_amount``/``amount_total`` in cents as well, so amounts
flow from webhook payloads into the database without conversion.
API / display unit: dollars string (e.g. "$120.00").
"""

from decimal import Decimal

CENTS_PER_DOLLAR: int = 100


def cents_to_dollars(cents: int) -> Decimal:
    """Convert cents to an exact dollar Decimal. 100 cents = $1."""
    return (Decimal(cents) / CENTS_PER_DOLLAR).quantize(Decimal("0.01"))


def format_cents(cents: int) -> str:
    """Format cents for display, e.g. 12000 -> "$120.00"."""
    sign = "-" if cents < 0 else ""
    return f"{sign}${cents_to_dollars(abs(cents)):,.2f}"
