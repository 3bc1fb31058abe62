"""Billing accounts and billing status lookups.

A billing account records that a person completed checkout for a program
account: their Stripe customer id and whether a payment method is on file.
Status lookups combine it with the subscriptions paying for the person's
profiles.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.billing_service.models import (
    BillingAccount,
    BillingAssignment,
    Program,
    ProgramProfile,
    Subscription,
)
from services.billing_service.services.contacts import normalize_email
from services.billing_service.services.queries import (
    find_active_assignments_by_profiles,
    find_persons_by_contact,
)
from services.billing_service.services.subscription_ops import ACTIVE_STATUSES
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class BillingStatus:
    person_id: uuid.UUID
    program: Program
    has_payment_method: bool
    has_active_subscription: bool
    stripe_customer_id: Optional[str] = None
    subscription_status: Optional[str] = None
    paid_until: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


@dataclass
class ProfileBillingStatus:
    program_profile_id: uuid.UUID
    has_subscription: bool
    amount: Optional[int] = None


async def get_billing_account(
    db: AsyncSession, person_id: uuid.UUID, program: Program
) -> Optional[BillingAccount]:
    result = await db.execute(
        select(BillingAccount).where(
            BillingAccount.person_id == person_id,
            BillingAccount.program == program,
        )
    )
    return result.scalar_one_or_none()


def _apply_capture(
    account: BillingAccount, stripe_customer_id: str, payment_intent_id: Optional[str]
) -> None:
    account.stripe_customer_id = stripe_customer_id
    account.payment_method_captured = True
    account.payment_method_captured_at = utc_now()
    if payment_intent_id:
        account.payment_intent_id = payment_intent_id


async def capture_payment_method(
    db: AsyncSession,
    *,
    person_id: uuid.UUID,
    program: Program,
    stripe_customer_id: str,
    payment_intent_id: Optional[str] = None,
) -> BillingAccount:
    """Create or update the person's billing account after a checkout."""
    account = await get_billing_account(db, person_id, program)
    if account is None:
        account = BillingAccount(person_id=person_id, program=program)
        db.add(account)
    _apply_capture(account, stripe_customer_id, payment_intent_id)

    try:
        await db.commit()
    except IntegrityError:
        # A concurrent delivery created the account first
        await db.rollback()
        account = await get_billing_account(db, person_id, program)
        if account is None:
            raise
        _apply_capture(account, stripe_customer_id, payment_intent_id)
        await db.commit()

    logger.info(
        "Captured payment method for person %s (%s)",
        person_id,
        program.value,
        extra={
            "extra_fields": {
                "person_id": str(person_id),
                "program": program.value,
                "stripe_customer_id": stripe_customer_id,
            }
        },
    )
    return account


async def _latest_active_subscription(
    db: AsyncSession,
    person_id: uuid.UUID,
    program: Program,
    stripe_customer_id: Optional[str],
) -> Optional[Subscription]:
    funded = (
        select(BillingAssignment.subscription_id)
        .join(ProgramProfile, ProgramProfile.id == BillingAssignment.program_profile_id)
        .where(
            ProgramProfile.person_id == person_id,
            ProgramProfile.program == program,
            BillingAssignment.is_active.is_(True),
        )
    )
    owned = [Subscription.id.in_(funded)]
    if stripe_customer_id:
        owned.append(Subscription.stripe_customer_id == stripe_customer_id)

    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.program == program,
            Subscription.status.in_(ACTIVE_STATUSES),
            or_(*owned),
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_billing_status_by_email(
    db: AsyncSession, email: str, program: Program
) -> Optional[BillingStatus]:
    """Billing status of the person owning ``email``; None when nobody does.

    When a shared email belongs to several people, the one holding a billing
    account for the program wins, then the earliest created.
    """
    normalized = normalize_email(email)
    if normalized is None:
        return None

    persons = await find_persons_by_contact(db, email=normalized)
    if not persons:
        return None

    person, account = persons[0], None
    for candidate in persons:
        candidate_account = await get_billing_account(db, candidate.id, program)
        if candidate_account is not None:
            person, account = candidate, candidate_account
            break

    stripe_customer_id = account.stripe_customer_id if account else None
    subscription = await _latest_active_subscription(
        db, person.id, program, stripe_customer_id
    )
    return BillingStatus(
        person_id=person.id,
        program=program,
        has_payment_method=bool(account and account.payment_method_captured),
        has_active_subscription=subscription is not None,
        stripe_customer_id=stripe_customer_id,
        subscription_status=subscription.status.value if subscription else None,
        paid_until=subscription.paid_until if subscription else None,
        current_period_start=subscription.current_period_start if subscription else None,
        current_period_end=subscription.current_period_end if subscription else None,
    )


async def get_billing_status_for_profiles(
    db: AsyncSession, profile_ids: Iterable[uuid.UUID]
) -> list[ProfileBillingStatus]:
    profile_ids = list(dict.fromkeys(profile_ids))
    active = await find_active_assignments_by_profiles(db, profile_ids)
    return [
        ProfileBillingStatus(
            program_profile_id=pid,
            has_subscription=pid in active,
            amount=active[pid].amount if pid in active else None,
        )
        for pid in profile_ids
    ]
