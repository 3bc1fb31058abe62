"""Integration tests for the Stripe webhook endpoints."""

import json
from datetime import datetime

import pytest
from services.billing_service.models import (
    BillingAccount,
    BillingAssignment,
    BillingType,
    MatchMethod,
    PaymentReviewItem,
    Program,
    ReviewReason,
    Subscription,
    SubscriptionStatus,
    WebhookEvent,
)
from sqlalchemy import func, select
from tests.factories import (
    checkout_completed_event,
    create_student,
    invoice_event,
    invoice_paid_event,
    stripe_signature,
    subscription_event,
)


async def _assignments(db, profile_id) -> list[BillingAssignment]:
    result = await db.execute(
        select(BillingAssignment).where(BillingAssignment.program_profile_id == profile_id)
    )
    return list(result.scalars().all())


async def _review_items(db) -> list[PaymentReviewItem]:
    result = await db.execute(select(PaymentReviewItem))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Signature verification
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_signature_is_rejected(client):
    response = await client.post(
        "/billing/webhooks/stripe/mahad", content=json.dumps({"id": "evt_1"})
    )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_wrong_secret_is_rejected(post_webhook):
    response = await post_webhook(checkout_completed_event(), secret="whsec_wrong")
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_mahad_secret_does_not_open_dugsi_endpoint(post_webhook):
    from libs.common.config import get_settings

    response = await post_webhook(
        checkout_completed_event(),
        program="dugsi",
        secret=get_settings().STRIPE_WEBHOOK_SECRET_MAHAD,
    )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_stale_timestamp_is_rejected(client):
    from libs.common.config import get_settings

    payload = json.dumps(checkout_completed_event())
    signature = stripe_signature(
        payload, get_settings().STRIPE_WEBHOOK_SECRET_MAHAD, timestamp=1_000_000_000
    )
    response = await client.post(
        "/billing/webhooks/stripe/mahad",
        content=payload,
        headers={"stripe-signature": signature},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_signed_garbage_is_bad_request(client):
    from libs.common.config import get_settings

    payload = "not json"
    signature = stripe_signature(payload, get_settings().STRIPE_WEBHOOK_SECRET_MAHAD)
    response = await client.post(
        "/billing/webhooks/stripe/mahad",
        content=payload,
        headers={"stripe-signature": signature},
    )
    assert response.status_code == 400


# ---------------------------------------------------------------------------
# checkout.session.completed
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_links_student_by_email(post_webhook, db_session):
    profile = await create_student(db_session, email="amina@example.com")
    profile_id = profile.id
    event = checkout_completed_event(
        student_email="Amina@Example.com", subscription="sub_checkout"
    )

    response = await post_webhook(event)

    assert response.status_code == 200
    assert response.json() == {"received": True, "outcome": "linked"}

    assignments = await _assignments(db_session, profile_id)
    assert len(assignments) == 1
    assert assignments[0].is_active
    assert assignments[0].amount == 12000
    assert assignments[0].link_method == MatchMethod.STUDENT_EMAIL.value

    subscription = await db_session.scalar(
        select(Subscription).where(Subscription.stripe_subscription_id == "sub_checkout")
    )
    assert subscription is not None
    assert subscription.program == Program.MAHAD_PROGRAM


@pytest.mark.asyncio
@pytest.mark.integration
async def test_redelivered_checkout_is_acknowledged_once(post_webhook, db_session):
    profile = await create_student(db_session, email="amina@example.com")
    profile_id = profile.id
    event = checkout_completed_event(student_email="amina@example.com")

    first = await post_webhook(event)
    second = await post_webhook(event)

    assert first.json()["outcome"] == "linked"
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate"
    assert len(await _assignments(db_session, profile_id)) == 1
    count = await db_session.scalar(select(func.count()).select_from(WebhookEvent))
    assert count == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_shared_household_phone_goes_to_review(post_webhook, db_session):
    """Siblings on one phone are never guessed at; staff link them by hand."""
    await create_student(db_session, name="Sibling A", phone="6125550100")
    await create_student(db_session, name="Sibling B", phone="6125550100")
    event = checkout_completed_event(
        student_phone="(612) 555-0100",
        payer_email="Mom@Example.com",
        subscription="sub_ambiguous",
    )

    response = await post_webhook(event)

    assert response.status_code == 200
    assert response.json()["outcome"] == "review"

    items = await _review_items(db_session)
    assert len(items) == 1
    item = items[0]
    assert item.reason == ReviewReason.NO_MATCH
    assert item.stripe_subscription_id == "sub_ambiguous"
    assert item.validated_email == "mom@example.com"
    assert item.attempted_identifiers["student_phone"] == "(612) 555-0100"
    assert "student_phone" in item.details

    count = await db_session.scalar(select(func.count()).select_from(BillingAssignment))
    assert count == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_one_time_checkout_is_skipped(post_webhook, db_session):
    await create_student(db_session, email="amina@example.com")
    event = checkout_completed_event(student_email="amina@example.com", mode="payment")

    response = await post_webhook(event)

    assert response.json()["outcome"] == "skipped"
    count = await db_session.scalar(select(func.count()).select_from(BillingAssignment))
    assert count == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_dugsi_endpoint_matches_dugsi_profiles(post_webhook, db_session):
    profile = await create_student(
        db_session, email="kid@example.com", program=Program.DUGSI_PROGRAM
    )
    profile_id = profile.id
    event = checkout_completed_event(student_email="kid@example.com", amount_total=8000)

    response = await post_webhook(event, program="dugsi")

    assert response.json()["outcome"] == "linked"
    assignments = await _assignments(db_session, profile_id)
    assert [a.amount for a in assignments] == [8000]


# ---------------------------------------------------------------------------
# Subscription lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_subscription_created_links_family_from_metadata(post_webhook, db_session):
    children = [
        await create_student(
            db_session,
            name=f"Child {i}",
            program=Program.DUGSI_PROGRAM,
            family_reference_id="fam-42",
        )
        for i in range(2)
    ]
    ids = [c.id for c in children]
    event = subscription_event(
        subscription_id="sub_family",
        unit_amount=16000,
        metadata={
            "profileIds": ",".join(str(pid) for pid in ids),
            "calculatedRate": "16000",
            "childCount": "2",
        },
    )

    response = await post_webhook(event, program="dugsi")

    assert response.json()["outcome"] == "linked"
    for pid in ids:
        assignments = await _assignments(db_session, pid)
        assert [a.amount for a in assignments] == [8000]
        assert assignments[0].link_method == "subscription_metadata"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_subscription_rate_mismatch_goes_to_review(post_webhook, db_session):
    profile = await create_student(db_session)
    profile_id = profile.id
    event = subscription_event(
        subscription_id="sub_mismatch",
        unit_amount=10000,
        metadata={"profileId": str(profile_id), "calculatedRate": "12000"},
    )

    response = await post_webhook(event)

    assert response.json()["outcome"] == "review"
    items = await _review_items(db_session)
    assert [i.reason for i in items] == [ReviewReason.RATE_MISMATCH]
    assert await _assignments(db_session, profile_id) == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_subscription_created_without_profiles_is_recorded(post_webhook, db_session):
    response = await post_webhook(subscription_event(subscription_id="sub_plain"))

    assert response.json()["outcome"] == "recorded"
    subscription = await db_session.scalar(
        select(Subscription).where(Subscription.stripe_subscription_id == "sub_plain")
    )
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.amount == 12000


@pytest.mark.asyncio
@pytest.mark.integration
async def test_subscription_deleted_unlinks_profiles(post_webhook, db_session):
    profile = await create_student(db_session, email="amina@example.com")
    profile_id = profile.id
    await post_webhook(
        checkout_completed_event(student_email="amina@example.com", subscription="sub_end")
    )

    response = await post_webhook(
        subscription_event(
            "customer.subscription.deleted", subscription_id="sub_end", status="canceled"
        )
    )

    assert response.json()["outcome"] == "recorded"
    assignments = await _assignments(db_session, profile_id)
    assert len(assignments) == 1
    assert assignments[0].is_active is False
    subscription = await db_session.scalar(
        select(Subscription).where(Subscription.stripe_subscription_id == "sub_end")
    )
    assert subscription.status == SubscriptionStatus.CANCELED


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invoice_paid_advances_paid_until(post_webhook, db_session):
    await post_webhook(subscription_event(subscription_id="sub_invoice"))

    response = await post_webhook(
        invoice_paid_event(subscription_id="sub_invoice", line_period_end=1_772_323_200)
    )

    assert response.json()["outcome"] == "recorded"
    subscription = await db_session.scalar(
        select(Subscription).where(Subscription.stripe_subscription_id == "sub_invoice")
    )
    assert subscription.last_payment_date is not None
    assert subscription.paid_until.replace(tzinfo=None) == datetime(2026, 3, 1)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invoice_for_unknown_subscription_is_ignored(post_webhook):
    response = await post_webhook(invoice_paid_event(subscription_id="sub_nowhere"))
    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_failed_invoice_is_recorded_without_changes(post_webhook, db_session):
    await post_webhook(subscription_event(subscription_id="sub_declined"))
    subscription = await db_session.scalar(
        select(Subscription).where(Subscription.stripe_subscription_id == "sub_declined")
    )
    paid_until_before = subscription.paid_until

    response = await post_webhook(
        invoice_event(
            "invoice.payment_failed",
            subscription_id="sub_declined",
            attempt_count=2,
            amount_due=12000,
        )
    )

    assert response.status_code == 200
    assert response.json()["outcome"] == "recorded"
    await db_session.refresh(subscription)
    assert subscription.paid_until == paid_until_before
    assert subscription.status == SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
@pytest.mark.integration
async def test_finalized_invoice_advances_paid_until(post_webhook, db_session):
    await post_webhook(subscription_event(subscription_id="sub_final"))

    response = await post_webhook(
        invoice_event(
            "invoice.finalized", subscription_id="sub_final", period_end=1_772_323_200
        )
    )

    assert response.json()["outcome"] == "recorded"
    subscription = await db_session.scalar(
        select(Subscription).where(Subscription.stripe_subscription_id == "sub_final")
    )
    await db_session.refresh(subscription)
    assert subscription.paid_until.replace(tzinfo=None) == datetime(2026, 3, 1)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_finalized_invoice_for_unknown_subscription_is_ignored(post_webhook):
    response = await post_webhook(
        invoice_event("invoice.finalized", subscription_id="sub_nowhere")
    )
    assert response.json()["outcome"] == "ignored"


# ---------------------------------------------------------------------------
# Payload and linkage guards
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_undecodable_body_is_bad_request(client):
    response = await client.post(
        "/billing/webhooks/stripe/mahad",
        content=b"\xff\xfe\x00garbage",
        headers={"stripe-signature": "t=1,v1=abc", "content-type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Malformed event payload"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_captures_billing_account(post_webhook, db_session):
    profile = await create_student(db_session, email="amina@example.com")
    person_id = profile.person_id

    response = await post_webhook(
        checkout_completed_event(
            student_email="amina@example.com",
            customer="cus_amina",
            payment_intent="pi_amina",
        )
    )

    assert response.json()["outcome"] == "linked"
    account = await db_session.scalar(
        select(BillingAccount).where(BillingAccount.person_id == person_id)
    )
    assert account.program == Program.MAHAD_PROGRAM
    assert account.stripe_customer_id == "cus_amina"
    assert account.payment_intent_id == "pi_amina"
    assert account.payment_method_captured is True


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_for_exempt_student_goes_to_review(post_webhook, db_session):
    profile = await create_student(
        db_session, email="exempt@example.com", billing_type=BillingType.EXEMPT
    )
    profile_id = profile.id

    response = await post_webhook(
        checkout_completed_event(
            student_email="exempt@example.com", subscription="sub_exempt"
        )
    )

    assert response.json()["outcome"] == "review"
    assert await _assignments(db_session, profile_id) == []
    items = await _review_items(db_session)
    assert [i.reason for i in items] == [ReviewReason.NOT_BILLABLE]
    assert items[0].stripe_subscription_id == "sub_exempt"
    assert str(profile_id) in items[0].details


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_for_student_without_billing_type_goes_to_review(
    post_webhook, db_session
):
    profile = await create_student(
        db_session, email="unset@example.com", billing_type=None
    )
    profile_id = profile.id

    response = await post_webhook(
        checkout_completed_event(student_email="unset@example.com")
    )

    assert response.json()["outcome"] == "review"
    assert await _assignments(db_session, profile_id) == []
    assert [i.reason for i in await _review_items(db_session)] == [
        ReviewReason.NOT_BILLABLE
    ]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_subscription_metadata_naming_other_program_goes_to_review(
    post_webhook, db_session
):
    dugsi_child = await create_student(db_session, program=Program.DUGSI_PROGRAM)
    child_id = dugsi_child.id

    response = await post_webhook(
        subscription_event(
            subscription_id="sub_cross",
            metadata={"profileId": str(child_id)},
        ),
        program="mahad",
    )

    assert response.status_code == 200
    assert response.json()["outcome"] == "review"
    assert await _assignments(db_session, child_id) == []
    items = await _review_items(db_session)
    assert [i.reason for i in items] == [ReviewReason.INVALID_LINK]
    assert items[0].stripe_subscription_id == "sub_cross"
