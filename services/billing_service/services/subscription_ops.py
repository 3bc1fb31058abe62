"""Subscription row lifecycle driven by Stripe subscription/invoice events."""

from typing import Optional

from libs.common.datetime_utils import from_unix_timestamp, utc_now
from libs.common.logging import get_logger
from services.billing_service.models import Program, Subscription, SubscriptionStatus
from services.billing_service.schemas.events import StripeInvoice, StripeSubscription
from services.billing_service.services.queries import get_subscription_by_stripe_id
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ACTIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


def parse_status(raw: Optional[str]) -> Optional[SubscriptionStatus]:
    try:
        return SubscriptionStatus(str(raw).lower())
    except ValueError:
        logger.warning("Unknown Stripe subscription status %r", raw)
        return None


def _apply_stripe_fields(subscription: Subscription, stripe_sub: StripeSubscription) -> None:
    status = parse_status(stripe_sub.status)
    if status is not None:
        subscription.status = status
    if stripe_sub.customer:
        subscription.stripe_customer_id = stripe_sub.customer
    if stripe_sub.amount is not None:
        subscription.amount = stripe_sub.amount
    if stripe_sub.currency:
        subscription.currency = stripe_sub.currency

    item = stripe_sub.first_item
    if item is not None and item.price is not None and item.price.recurring is not None:
        subscription.interval = item.price.recurring.interval
        subscription.interval_count = item.price.recurring.interval_count

    start, end = stripe_sub.period_bounds
    period_start = from_unix_timestamp(start)
    period_end = from_unix_timestamp(end)
    if period_start is not None:
        subscription.current_period_start = period_start
    if period_end is not None:
        subscription.current_period_end = period_end
        subscription.paid_until = period_end


async def upsert_subscription(
    db: AsyncSession,
    stripe_sub: StripeSubscription,
    program: Program,
) -> Subscription:
    """Create or refresh the local copy of a Stripe subscription."""
    subscription = await get_subscription_by_stripe_id(db, stripe_sub.id)
    created = subscription is None
    if created:
        subscription = Subscription(stripe_subscription_id=stripe_sub.id, program=program)
        db.add(subscription)

    _apply_stripe_fields(subscription, stripe_sub)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent delivery inserted the same subscription first
        await db.rollback()
        subscription = await get_subscription_by_stripe_id(db, stripe_sub.id)
        if subscription is None:
            raise
        _apply_stripe_fields(subscription, stripe_sub)
        await db.commit()
        created = False

    logger.info(
        "%s subscription %s (status=%s, amount=%s)",
        "Created" if created else "Updated",
        stripe_sub.id,
        subscription.status.value,
        subscription.amount,
        extra={
            "extra_fields": {
                "stripe_subscription_id": stripe_sub.id,
                "status": subscription.status.value,
                "program": program.value,
            }
        },
    )
    return subscription


async def mark_subscription_canceled(
    db: AsyncSession, stripe_sub: StripeSubscription, program: Program
) -> Subscription:
    stripe_sub = stripe_sub.model_copy(update={"status": SubscriptionStatus.CANCELED.value})
    return await upsert_subscription(db, stripe_sub, program)


async def record_invoice_payment(
    db: AsyncSession, invoice: StripeInvoice
) -> Optional[Subscription]:
    """Advance ``paid_until`` after a successful invoice.

    Returns None when the invoice is not tied to a known subscription; the
    subscription.created event will bring the row in later.
    """
    if not invoice.subscription:
        return None

    subscription = await get_subscription_by_stripe_id(db, invoice.subscription)
    if subscription is None:
        logger.warning(
            "Invoice %s paid for unknown subscription %s",
            invoice.id,
            invoice.subscription,
        )
        return None

    paid_at = from_unix_timestamp(invoice.status_transitions.get("paid_at"))
    subscription.last_payment_date = paid_at or utc_now()

    period_end = None
    for line in invoice.lines.get("data") or []:
        period = line.get("period") or {}
        candidate = from_unix_timestamp(period.get("end"))
        if candidate is not None and (period_end is None or candidate > period_end):
            period_end = candidate
    period_end = period_end or from_unix_timestamp(invoice.period_end)
    if period_end is not None:
        subscription.paid_until = period_end

    await db.commit()
    logger.info(
        "Recorded payment for subscription %s (invoice %s)",
        invoice.subscription,
        invoice.id,
    )
    return subscription


async def record_invoice_finalized(
    db: AsyncSession, invoice: StripeInvoice
) -> Optional[Subscription]:
    """Move ``paid_until`` to the end of a finalized invoice's period."""
    if not invoice.subscription:
        return None

    subscription = await get_subscription_by_stripe_id(db, invoice.subscription)
    if subscription is None:
        logger.warning(
            "Invoice %s finalized for unknown subscription %s",
            invoice.id,
            invoice.subscription,
        )
        return None

    paid_until = from_unix_timestamp(invoice.period_end)
    if paid_until is not None:
        subscription.paid_until = paid_until
        await db.commit()
    return subscription
