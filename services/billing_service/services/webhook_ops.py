"""Stripe webhook event processing.

Each delivery is one short unit of work. Events already recorded in
``webhook_events`` are acknowledged without reprocessing; an event is only
recorded after its handler succeeded, so a transient failure is retried by
Stripe and replayed through the (idempotent) reconciler.
"""

import uuid
from typing import Awaitable, Callable, Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.billing_service.exceptions import (
    InvalidLinkError,
    ProfileNotFoundError,
    RateMismatchError,
)
from services.billing_service.models import (
    BillingType,
    GraduationStatus,
    PaymentFrequency,
    PaymentReviewItem,
    Program,
    ProgramProfile,
    ReviewReason,
    WebhookEvent,
)
from services.billing_service.schemas.events import (
    CheckoutSession,
    PaymentEvent,
    StripeEvent,
    StripeInvoice,
    StripeSubscription,
)
from services.billing_service.services.billing_accounts import capture_payment_method
from services.billing_service.services.profile_matcher import profile_matcher
from services.billing_service.services.queries import find_family_profiles
from services.billing_service.services.reconciler import (
    deactivate_subscription_assignments,
    reconcile_assignments,
)
from services.billing_service.services.subscription_ops import (
    mark_subscription_canceled,
    record_invoice_finalized,
    record_invoice_payment,
    upsert_subscription,
)
from services.billing_service.services.tuition import (
    calculate_dugsi_rate,
    calculate_mahad_rate,
    should_create_subscription,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# Outcomes reported back in the webhook response
LINKED = "linked"
REVIEW = "review"
RECORDED = "recorded"
SKIPPED = "skipped"
DUPLICATE = "duplicate"
IGNORED = "ignored"


def build_payment_event(
    event: StripeEvent, session: CheckoutSession, program: Program
) -> PaymentEvent:
    settings = get_settings()
    details = session.customer_details
    return PaymentEvent(
        event_id=event.id,
        event_type=event.type,
        program=program,
        payer_email=details.email if details else None,
        student_email=session.custom_field(settings.STRIPE_STUDENT_EMAIL_FIELD),
        student_phone=session.custom_field(settings.STRIPE_STUDENT_PHONE_FIELD),
        stripe_subscription_id=session.subscription,
        stripe_customer_id=session.customer,
        amount=session.amount_total,
    )


async def expected_rate_for_profile(db: AsyncSession, profile: ProgramProfile) -> int:
    """Tuition the profile should be paying per cycle, in cents.

    Dugsi is billed per family, so the figure is the family total.
    """
    if profile.program == Program.DUGSI_PROGRAM:
        child_count = 1
        if profile.family_reference_id:
            siblings = await find_family_profiles(
                db, profile.family_reference_id, profile.program
            )
            child_count = max(len(siblings), 1)
        return calculate_dugsi_rate(child_count)

    return calculate_mahad_rate(
        profile.graduation_status, profile.payment_frequency, profile.billing_type
    )


async def create_review_item(
    db: AsyncSession,
    *,
    event_id: str,
    event_type: str,
    program: Program,
    reason: ReviewReason,
    stripe_subscription_id: Optional[str] = None,
    stripe_customer_id: Optional[str] = None,
    amount: Optional[int] = None,
    attempted_identifiers: Optional[dict] = None,
    validated_email: Optional[str] = None,
    details: Optional[str] = None,
) -> PaymentReviewItem:
    existing = await db.execute(
        select(PaymentReviewItem).where(
            PaymentReviewItem.event_id == event_id,
            PaymentReviewItem.reason == reason,
        )
    )
    item = existing.scalar_one_or_none()
    if item is not None:
        return item

    item = PaymentReviewItem(
        event_id=event_id,
        event_type=event_type,
        program=program,
        reason=reason,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
        amount=amount,
        attempted_identifiers=attempted_identifiers,
        validated_email=validated_email,
        details=details,
    )
    db.add(item)
    await db.commit()
    logger.warning(
        "Queued %s for manual review (%s)",
        event_id,
        reason.value,
        extra={
            "extra_fields": {
                "event_id": event_id,
                "reason": reason.value,
                "stripe_subscription_id": stripe_subscription_id,
                "action": "manual_linking_required",
            }
        },
    )
    return item


async def handle_checkout_completed(
    db: AsyncSession, event: StripeEvent, program: Program
) -> str:
    session = CheckoutSession.model_validate(event.object)
    if session.mode != "subscription" or not session.subscription:
        logger.info("Checkout session %s did not create a subscription", session.id)
        return SKIPPED

    payment_event = build_payment_event(event, session, program)
    match = await profile_matcher.find_by_payment_event(db, payment_event)

    if not match.matched:
        profile_matcher.log_no_match_found(payment_event)
        ambiguous = {
            method.value: [str(pid) for pid in ids]
            for method, ids in match.ambiguous.items()
        }
        await create_review_item(
            db,
            event_id=event.id,
            event_type=event.type,
            program=program,
            reason=ReviewReason.NO_MATCH,
            stripe_subscription_id=session.subscription,
            stripe_customer_id=session.customer,
            amount=session.amount_total,
            attempted_identifiers=payment_event.attempted_identifiers(),
            validated_email=match.validated_email,
            details=f"Ambiguous candidates: {ambiguous}" if ambiguous else None,
        )
        return REVIEW

    profile = match.profile
    profile_id = profile.id
    person_id = profile.person_id
    billable = program != Program.MAHAD_PROGRAM or should_create_subscription(
        profile.billing_type
    )
    expected = await expected_rate_for_profile(db, profile)

    if session.customer:
        await capture_payment_method(
            db,
            person_id=person_id,
            program=program,
            stripe_customer_id=session.customer,
            payment_intent_id=session.payment_intent,
        )

    if not billable:
        await create_review_item(
            db,
            event_id=event.id,
            event_type=event.type,
            program=program,
            reason=ReviewReason.NOT_BILLABLE,
            stripe_subscription_id=session.subscription,
            stripe_customer_id=session.customer,
            amount=session.amount_total,
            attempted_identifiers=payment_event.attempted_identifiers(),
            validated_email=match.validated_email,
            details=f"Matched profile {profile_id} is exempt or has no billing type",
        )
        return REVIEW

    amount = session.amount_total if session.amount_total is not None else expected
    if session.amount_total is not None and expected and amount != expected:
        logger.warning(
            "Checkout %s charged %d cents, calculated tuition is %d",
            session.id,
            amount,
            expected,
            extra={
                "extra_fields": {
                    "profile_id": str(profile_id),
                    "charged": amount,
                    "expected": expected,
                }
            },
        )

    try:
        await reconcile_assignments(
            db,
            stripe_subscription_id=session.subscription,
            profile_ids=[profile_id],
            amount=amount,
            program=program,
            stripe_customer_id=session.customer,
            link_method=match.match_method.value,
            notes=f"Linked from checkout session {session.id}",
        )
    except InvalidLinkError as exc:
        await create_review_item(
            db,
            event_id=event.id,
            event_type=event.type,
            program=program,
            reason=ReviewReason.INVALID_LINK,
            stripe_subscription_id=session.subscription,
            stripe_customer_id=session.customer,
            amount=session.amount_total,
            attempted_identifiers=payment_event.attempted_identifiers(),
            validated_email=match.validated_email,
            details=str(exc),
        )
        return REVIEW
    return LINKED


def validate_subscription_rate(
    stripe_sub: StripeSubscription, program: Program
) -> Optional[int]:
    """Check Stripe's price against the rate stored at checkout creation.

    Returns the validated rate, or None when the metadata carries no rate.
    Raises RateMismatchError when Stripe charges something else.
    """
    metadata = stripe_sub.metadata
    raw_rate = metadata.get("calculatedRate")
    if not raw_rate:
        return None

    try:
        expected = int(raw_rate)
    except ValueError:
        logger.warning("Non-numeric calculatedRate %r on %s", raw_rate, stripe_sub.id)
        return None

    actual = stripe_sub.amount
    if actual != expected:
        raise RateMismatchError(
            f"Stripe charged {actual} but expected {expected}",
            expected=expected,
            actual=actual,
            context={"stripe_subscription_id": stripe_sub.id, "program": program.value},
        )

    recalculated = None
    if program == Program.MAHAD_PROGRAM and metadata.get("billingType"):
        try:
            recalculated = calculate_mahad_rate(
                GraduationStatus(metadata["graduationStatus"].lower())
                if metadata.get("graduationStatus")
                else None,
                PaymentFrequency(metadata["paymentFrequency"].lower())
                if metadata.get("paymentFrequency")
                else None,
                BillingType(metadata["billingType"].lower()),
            )
        except ValueError:
            recalculated = None
    elif program == Program.DUGSI_PROGRAM and metadata.get("childCount", "").isdigit():
        recalculated = calculate_dugsi_rate(int(metadata["childCount"]))

    if recalculated is not None and recalculated != expected:
        logger.warning(
            "Stored rate %d for %s differs from recalculated rate %d",
            expected,
            stripe_sub.id,
            recalculated,
        )
    return expected


async def handle_subscription_created(
    db: AsyncSession, event: StripeEvent, program: Program
) -> str:
    stripe_sub = StripeSubscription.model_validate(event.object)
    subscription = await upsert_subscription(db, stripe_sub, program)
    subscription_amount = subscription.amount

    profile_ids = []
    for raw in stripe_sub.profile_ids:
        try:
            profile_ids.append(uuid.UUID(raw))
        except ValueError:
            logger.warning("Ignoring malformed profile id %r on %s", raw, stripe_sub.id)
    if not profile_ids:
        return RECORDED

    try:
        validated = validate_subscription_rate(stripe_sub, program)
    except RateMismatchError as exc:
        await create_review_item(
            db,
            event_id=event.id,
            event_type=event.type,
            program=program,
            reason=ReviewReason.RATE_MISMATCH,
            stripe_subscription_id=stripe_sub.id,
            stripe_customer_id=stripe_sub.customer,
            amount=exc.actual,
            details=str(exc),
        )
        return REVIEW

    amount = stripe_sub.amount
    if amount is None:
        amount = validated if validated is not None else subscription_amount

    try:
        await reconcile_assignments(
            db,
            stripe_subscription_id=stripe_sub.id,
            profile_ids=profile_ids,
            amount=amount,
            program=program,
            stripe_customer_id=stripe_sub.customer,
            link_method="subscription_metadata",
            notes=f"Linked from subscription metadata ({event.id})",
        )
    except ProfileNotFoundError as exc:
        await create_review_item(
            db,
            event_id=event.id,
            event_type=event.type,
            program=program,
            reason=ReviewReason.NO_MATCH,
            stripe_subscription_id=stripe_sub.id,
            stripe_customer_id=stripe_sub.customer,
            amount=stripe_sub.amount,
            details=str(exc),
        )
        return REVIEW
    except InvalidLinkError as exc:
        await create_review_item(
            db,
            event_id=event.id,
            event_type=event.type,
            program=program,
            reason=ReviewReason.INVALID_LINK,
            stripe_subscription_id=stripe_sub.id,
            stripe_customer_id=stripe_sub.customer,
            amount=stripe_sub.amount,
            details=str(exc),
        )
        return REVIEW
    return LINKED


async def handle_subscription_updated(
    db: AsyncSession, event: StripeEvent, program: Program
) -> str:
    stripe_sub = StripeSubscription.model_validate(event.object)
    await upsert_subscription(db, stripe_sub, program)
    return RECORDED


async def handle_subscription_deleted(
    db: AsyncSession, event: StripeEvent, program: Program
) -> str:
    stripe_sub = StripeSubscription.model_validate(event.object)
    await mark_subscription_canceled(db, stripe_sub, program)
    await deactivate_subscription_assignments(
        db, stripe_sub.id, notes="Subscription canceled in Stripe"
    )
    return RECORDED


async def handle_invoice_payment_succeeded(
    db: AsyncSession, event: StripeEvent, program: Program
) -> str:
    invoice = StripeInvoice.model_validate(event.object)
    subscription = await record_invoice_payment(db, invoice)
    return RECORDED if subscription is not None else IGNORED


async def handle_invoice_payment_failed(
    db: AsyncSession, event: StripeEvent, program: Program
) -> str:
    # Status changes arrive separately as customer.subscription.updated
    invoice = StripeInvoice.model_validate(event.object)
    logger.warning(
        "Invoice %s payment failed (attempt %s, %s cents due)",
        invoice.id,
        invoice.attempt_count,
        invoice.amount_due,
        extra={
            "extra_fields": {
                "invoice_id": invoice.id,
                "stripe_subscription_id": invoice.subscription,
                "attempt_count": invoice.attempt_count,
                "amount_due": invoice.amount_due,
                "program": program.value,
            }
        },
    )
    return RECORDED


async def handle_invoice_finalized(
    db: AsyncSession, event: StripeEvent, program: Program
) -> str:
    invoice = StripeInvoice.model_validate(event.object)
    subscription = await record_invoice_finalized(db, invoice)
    return RECORDED if subscription is not None else IGNORED


EventHandler = Callable[[AsyncSession, StripeEvent, Program], Awaitable[str]]

EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "invoice.finalized": handle_invoice_finalized,
}


async def is_event_processed(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(
        select(WebhookEvent.id).where(WebhookEvent.event_id == event_id)
    )
    return result.scalar_one_or_none() is not None


async def record_processed_event(
    db: AsyncSession, event: StripeEvent, program: Program
) -> None:
    db.add(
        WebhookEvent(
            event_id=event.id,
            event_type=event.type,
            program=program,
            payload=event.model_dump(mode="json"),
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent delivery of the same event already recorded it
        await db.rollback()


async def process_stripe_event(
    db: AsyncSession, event: StripeEvent, program: Program
) -> str:
    """Dispatch one verified Stripe event; returns the outcome label."""
    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.debug("Ignoring unhandled Stripe event type %s", event.type)
        return IGNORED

    if await is_event_processed(db, event.id):
        logger.info(
            "Webhook %s skipped - event already processed",
            event.id,
            extra={"extra_fields": {"event_id": event.id, "event_type": event.type}},
        )
        return DUPLICATE

    logger.info(
        "Processing %s (%s)",
        event.type,
        event.id,
        extra={
            "extra_fields": {
                "event_id": event.id,
                "event_type": event.type,
                "program": program.value,
            }
        },
    )
    outcome = await handler(db, event, program)
    await record_processed_event(db, event, program)
    return outcome
