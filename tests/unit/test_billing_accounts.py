"""Unit tests for billing account capture and billing status lookups."""

import uuid

import pytest
from services.billing_service.models import (
    BillingAccount,
    Program,
    SubscriptionStatus,
)
from services.billing_service.services.billing_accounts import (
    capture_payment_method,
    get_billing_account,
    get_billing_status_by_email,
    get_billing_status_for_profiles,
)
from sqlalchemy import func, select
from tests.factories import (
    BillingAssignmentFactory,
    SubscriptionFactory,
    create_student,
)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_capture_creates_then_updates_one_account(db_session):
    profile = await create_student(db_session)
    person_id = profile.person_id

    await capture_payment_method(
        db_session,
        person_id=person_id,
        program=Program.MAHAD_PROGRAM,
        stripe_customer_id="cus_first",
    )
    await capture_payment_method(
        db_session,
        person_id=person_id,
        program=Program.MAHAD_PROGRAM,
        stripe_customer_id="cus_second",
        payment_intent_id="pi_second",
    )

    count = await db_session.scalar(select(func.count()).select_from(BillingAccount))
    assert count == 1
    account = await get_billing_account(db_session, person_id, Program.MAHAD_PROGRAM)
    assert account.stripe_customer_id == "cus_second"
    assert account.payment_intent_id == "pi_second"
    assert account.payment_method_captured is True
    assert account.payment_method_captured_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_accounts_are_kept_per_program(db_session):
    profile = await create_student(db_session)
    person_id = profile.person_id

    await capture_payment_method(
        db_session,
        person_id=person_id,
        program=Program.MAHAD_PROGRAM,
        stripe_customer_id="cus_mahad",
    )

    assert await get_billing_account(db_session, person_id, Program.DUGSI_PROGRAM) is None


# ---------------------------------------------------------------------------
# Status by email
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_status_for_invalid_or_unknown_email(db_session):
    assert (
        await get_billing_status_by_email(db_session, "not-an-email", Program.MAHAD_PROGRAM)
        is None
    )
    assert (
        await get_billing_status_by_email(
            db_session, "nobody@example.com", Program.MAHAD_PROGRAM
        )
        is None
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_shared_email_prefers_person_with_account(db_session):
    await create_student(db_session, name="Older Sibling", email="family@example.com")
    payer = await create_student(
        db_session, name="Younger Sibling", email="family@example.com"
    )
    payer_person_id = payer.person_id
    await capture_payment_method(
        db_session,
        person_id=payer_person_id,
        program=Program.MAHAD_PROGRAM,
        stripe_customer_id="cus_family",
    )

    status = await get_billing_status_by_email(
        db_session, "family@example.com", Program.MAHAD_PROGRAM
    )

    assert status.person_id == payer_person_id
    assert status.has_payment_method is True
    assert status.stripe_customer_id == "cus_family"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_status_finds_subscription_through_assignment(db_session):
    profile = await create_student(db_session, email="amina@example.com")
    subscription = SubscriptionFactory.create()
    db_session.add(subscription)
    db_session.add(
        BillingAssignmentFactory.create(
            subscription_id=subscription.id, program_profile_id=profile.id
        )
    )
    await db_session.commit()

    status = await get_billing_status_by_email(
        db_session, "amina@example.com", Program.MAHAD_PROGRAM
    )

    assert status.has_payment_method is False
    assert status.has_active_subscription is True
    assert status.subscription_status == "active"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_status_finds_subscription_through_customer(db_session):
    profile = await create_student(db_session, email="amina@example.com")
    person_id = profile.person_id
    db_session.add(SubscriptionFactory.create(stripe_customer_id="cus_amina"))
    await db_session.commit()
    await capture_payment_method(
        db_session,
        person_id=person_id,
        program=Program.MAHAD_PROGRAM,
        stripe_customer_id="cus_amina",
    )

    status = await get_billing_status_by_email(
        db_session, "amina@example.com", Program.MAHAD_PROGRAM
    )

    assert status.has_active_subscription is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_canceled_subscription_is_not_active(db_session):
    profile = await create_student(db_session, email="amina@example.com")
    subscription = SubscriptionFactory.create(status=SubscriptionStatus.CANCELED)
    db_session.add(subscription)
    db_session.add(
        BillingAssignmentFactory.create(
            subscription_id=subscription.id, program_profile_id=profile.id
        )
    )
    await db_session.commit()

    status = await get_billing_status_by_email(
        db_session, "amina@example.com", Program.MAHAD_PROGRAM
    )

    assert status.has_active_subscription is False
    assert status.subscription_status is None


# ---------------------------------------------------------------------------
# Status by profile
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_profile_statuses_keep_request_order(db_session):
    funded = await create_student(db_session, name="Funded")
    unfunded = await create_student(db_session, name="Unfunded")
    subscription = SubscriptionFactory.create()
    db_session.add(subscription)
    db_session.add(
        BillingAssignmentFactory.create(
            subscription_id=subscription.id, program_profile_id=funded.id, amount=9000
        )
    )
    await db_session.commit()
    missing = uuid.uuid4()

    statuses = await get_billing_status_for_profiles(
        db_session, [unfunded.id, funded.id, unfunded.id, missing]
    )

    assert [s.program_profile_id for s in statuses] == [unfunded.id, funded.id, missing]
    assert [s.has_subscription for s in statuses] == [False, True, False]
    assert statuses[1].amount == 9000
