"""Billing assignment writes: atomic linking of profiles to subscriptions.

This module is the only writer of ``billing_assignments``. Every call is one
transaction:

1. Lock the target profile rows (SELECT ... FOR UPDATE, id order)
2. Get or create the subscription row
3. Per profile: keep an identical active link, otherwise deactivate the
   current link and flush before inserting the new one
4. Commit

The partial unique index on (program_profile_id) WHERE is_active backs the
locks up. If a concurrent delivery wins the race the commit fails with an
IntegrityError; the call then re-reads and either reports an idempotent
replay or raises AssignmentConflictError for the provider to retry.
"""

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.billing_service.exceptions import (
    AssignmentConflictError,
    IneligibleProfileError,
    ProfileNotFoundError,
    ProgramMismatchError,
    SubscriptionNotFoundError,
)
from services.billing_service.models import (
    BillingAssignment,
    EnrollmentStatus,
    Program,
    ProgramProfile,
    Subscription,
    SubscriptionStatus,
)
from services.billing_service.services.queries import (
    find_active_assignments_by_profiles,
    get_subscription_by_stripe_id,
)
from services.billing_service.services.tuition import calculate_split_amounts
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    subscription: Subscription
    created: list[BillingAssignment] = field(default_factory=list)
    updated: list[uuid.UUID] = field(default_factory=list)
    unchanged: list[uuid.UUID] = field(default_factory=list)
    deactivated: list[uuid.UUID] = field(default_factory=list)
    replayed: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deactivated)


def _dedupe(profile_ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
    seen: dict[uuid.UUID, None] = {}
    for pid in profile_ids:
        seen.setdefault(uuid.UUID(str(pid)), None)
    return list(seen)


async def _lock_profiles(
    db: AsyncSession, profile_ids: list[uuid.UUID]
) -> dict[uuid.UUID, ProgramProfile]:
    # Sorted lock order so concurrent family links cannot deadlock
    result = await db.execute(
        select(ProgramProfile)
        .where(ProgramProfile.id.in_(profile_ids))
        .order_by(ProgramProfile.id)
        .with_for_update()
    )
    return {p.id: p for p in result.scalars().all()}


async def _get_or_create_subscription(
    db: AsyncSession,
    *,
    stripe_subscription_id: str,
    program: Program,
    amount: int,
    stripe_customer_id: Optional[str],
    status: Optional[SubscriptionStatus],
) -> Subscription:
    subscription = await get_subscription_by_stripe_id(db, stripe_subscription_id)
    if subscription is not None and subscription.program != program:
        raise ProgramMismatchError(
            f"Subscription {stripe_subscription_id} belongs to "
            f"{subscription.program.value}, not {program.value}"
        )
    if subscription is None:
        subscription = Subscription(
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id=stripe_customer_id,
            program=program,
            status=status or SubscriptionStatus.INCOMPLETE,
            amount=amount,
        )
        db.add(subscription)
        await db.flush()
        return subscription

    if stripe_customer_id and not subscription.stripe_customer_id:
        subscription.stripe_customer_id = stripe_customer_id
    if status is not None:
        subscription.status = status
    return subscription


async def reconcile_assignments(
    db: AsyncSession,
    *,
    stripe_subscription_id: str,
    profile_ids: Iterable[uuid.UUID],
    amount: int,
    program: Program,
    stripe_customer_id: Optional[str] = None,
    status: Optional[SubscriptionStatus] = None,
    link_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> ReconcileResult:
    """Make ``profile_ids`` the active assignments of one subscription.

    ``amount`` is the subscription total in cents; with several profiles
    (family billing) it is split across them in profile id order, remainder
    on the last share, so the same family always gets the same shares.
    Replaying the same call is a no-op. All-or-nothing across profiles.

    Raises ProfileNotFoundError for unknown ids, ProgramMismatchError when a
    profile or an existing subscription is in another program, and
    IneligibleProfileError for withdrawn profiles.
    """
    ids = sorted(_dedupe(profile_ids))
    if not ids:
        raise ValueError("At least one profile id is required")

    try:
        profiles = await _lock_profiles(db, ids)
        missing = [pid for pid in ids if pid not in profiles]
        if missing:
            await db.rollback()
            raise ProfileNotFoundError(missing)

        wrong_program = [pid for pid in ids if profiles[pid].program != program]
        if wrong_program:
            await db.rollback()
            raise ProgramMismatchError(
                f"Profiles not enrolled in {program.value}: "
                f"{', '.join(map(str, wrong_program))}",
                profile_ids=wrong_program,
            )

        withdrawn = [
            pid for pid in ids if profiles[pid].status == EnrollmentStatus.WITHDRAWN
        ]
        if withdrawn:
            await db.rollback()
            raise IneligibleProfileError(
                f"Withdrawn profiles cannot be billed: {', '.join(map(str, withdrawn))}",
                profile_ids=withdrawn,
            )

        try:
            subscription = await _get_or_create_subscription(
                db,
                stripe_subscription_id=stripe_subscription_id,
                program=program,
                amount=amount,
                stripe_customer_id=stripe_customer_id,
                status=status,
            )
        except ProgramMismatchError:
            await db.rollback()
            raise
        result = ReconcileResult(subscription=subscription)

        shares = dict(zip(ids, calculate_split_amounts(amount, len(ids))))
        current = await find_active_assignments_by_profiles(db, ids)
        to_insert: list[uuid.UUID] = []

        for pid in ids:
            existing = current.get(pid)
            if existing is not None and existing.subscription_id == subscription.id:
                if existing.amount != shares[pid]:
                    existing.amount = shares[pid]
                    result.updated.append(pid)
                else:
                    result.unchanged.append(pid)
                continue

            if existing is not None:
                existing.is_active = False
                existing.end_date = utc_now()
                result.deactivated.append(existing.id)
            to_insert.append(pid)

        # Deactivations must hit the table before the new active rows
        await db.flush()

        for pid in to_insert:
            assignment = BillingAssignment(
                subscription_id=subscription.id,
                program_profile_id=pid,
                amount=shares[pid],
                percentage=(
                    round(shares[pid] / amount * 100, 4)
                    if len(ids) > 1 and amount
                    else None
                ),
                is_active=True,
                link_method=link_method,
                notes=notes,
            )
            db.add(assignment)
            result.created.append(assignment)

        await db.commit()
    except IntegrityError:
        await db.rollback()
        return await _resolve_conflict(db, stripe_subscription_id, ids)

    logger.info(
        "Reconciled subscription %s: %d created, %d updated, %d unchanged, %d deactivated",
        stripe_subscription_id,
        len(result.created),
        len(result.updated),
        len(result.unchanged),
        len(result.deactivated),
        extra={
            "extra_fields": {
                "stripe_subscription_id": stripe_subscription_id,
                "profile_ids": [str(pid) for pid in ids],
                "created": [str(pid) for pid in to_insert],
                "deactivated": [str(a) for a in result.deactivated],
                "link_method": link_method,
            }
        },
    )
    return result


async def _resolve_conflict(
    db: AsyncSession, stripe_subscription_id: str, ids: list[uuid.UUID]
) -> ReconcileResult:
    """A concurrent writer committed first; succeed only if it wrote our state."""
    subscription = await get_subscription_by_stripe_id(db, stripe_subscription_id)
    if subscription is not None:
        current = await find_active_assignments_by_profiles(db, ids)
        if all(
            pid in current and current[pid].subscription_id == subscription.id
            for pid in ids
        ):
            logger.info(
                "Idempotent replay for subscription %s after concurrent write",
                stripe_subscription_id,
                extra={
                    "extra_fields": {
                        "stripe_subscription_id": stripe_subscription_id,
                        "profile_ids": [str(pid) for pid in ids],
                    }
                },
            )
            return ReconcileResult(
                subscription=subscription, unchanged=list(ids), replayed=True
            )

    logger.warning(
        "Concurrent billing write conflict for subscription %s",
        stripe_subscription_id,
        extra={
            "extra_fields": {
                "stripe_subscription_id": stripe_subscription_id,
                "profile_ids": [str(pid) for pid in ids],
            }
        },
    )
    raise AssignmentConflictError(
        f"Concurrent billing write for subscription {stripe_subscription_id}",
        profile_ids=ids,
    )


async def deactivate_subscription_assignments(
    db: AsyncSession,
    stripe_subscription_id: str,
    *,
    notes: Optional[str] = None,
) -> int:
    """Unlink every profile from a subscription; returns how many were active."""
    subscription = await get_subscription_by_stripe_id(db, stripe_subscription_id)
    if subscription is None:
        raise SubscriptionNotFoundError(stripe_subscription_id)

    result = await db.execute(
        select(BillingAssignment)
        .where(
            BillingAssignment.subscription_id == subscription.id,
            BillingAssignment.is_active.is_(True),
        )
        .with_for_update()
    )
    assignments = list(result.scalars().all())
    now = utc_now()
    for assignment in assignments:
        assignment.is_active = False
        assignment.end_date = now
        if notes:
            assignment.notes = notes

    await db.commit()

    logger.info(
        "Deactivated %d assignments for subscription %s",
        len(assignments),
        stripe_subscription_id,
        extra={
            "extra_fields": {
                "stripe_subscription_id": stripe_subscription_id,
                "assignment_ids": [str(a.id) for a in assignments],
            }
        },
    )
    return len(assignments)
