"""Read-side queries used by matching and reconciliation.

These are the only places the billing core reads identity and billing rows;
the reconciler is the only writer of billing assignments.
"""

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from libs.common.logging import get_logger
from services.billing_service.models import (
    BillingAssignment,
    ContactPoint,
    ContactType,
    EnrollmentStatus,
    Person,
    Program,
    ProgramProfile,
    Subscription,
)
from services.billing_service.services.contacts import normalize_email, normalize_phone
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

PHONE_CONTACT_TYPES = (ContactType.PHONE, ContactType.WHATSAPP)


@dataclass
class PersonLookupResult:
    person: Person
    profiles: list[ProgramProfile] = field(default_factory=list)


async def find_persons_by_contact(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> list[Person]:
    """Return every person owning an active contact point matching either input.

    Inputs must already be normalized. Several persons can come back when a
    household shares a phone or email.
    """
    conditions = []
    if email:
        conditions.append(
            and_(ContactPoint.type == ContactType.EMAIL, ContactPoint.value == email)
        )
    if phone:
        conditions.append(
            and_(ContactPoint.type.in_(PHONE_CONTACT_TYPES), ContactPoint.value == phone)
        )
    if not conditions:
        return []

    owners = select(ContactPoint.person_id).where(
        ContactPoint.is_active.is_(True), or_(*conditions)
    )
    result = await db.execute(
        select(Person)
        .where(Person.id.in_(owners))
        .order_by(Person.created_at, Person.id)
    )
    return list(result.scalars().all())


async def find_profiles_by_person_and_program(
    db: AsyncSession,
    person_ids: Iterable[uuid.UUID],
    program: Program,
    *,
    include_withdrawn: bool = False,
) -> list[ProgramProfile]:
    person_ids = list(person_ids)
    if not person_ids:
        return []

    query = select(ProgramProfile).where(
        ProgramProfile.person_id.in_(person_ids),
        ProgramProfile.program == program,
    )
    if not include_withdrawn:
        query = query.where(ProgramProfile.status != EnrollmentStatus.WITHDRAWN)
    result = await db.execute(query.order_by(ProgramProfile.created_at, ProgramProfile.id))
    return list(result.scalars().all())


async def find_active_assignments_by_profile(
    db: AsyncSession, profile_id: uuid.UUID
) -> list[BillingAssignment]:
    result = await db.execute(
        select(BillingAssignment).where(
            BillingAssignment.program_profile_id == profile_id,
            BillingAssignment.is_active.is_(True),
        )
    )
    return list(result.scalars().all())


async def find_active_assignments_by_profiles(
    db: AsyncSession, profile_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, BillingAssignment]:
    """Batch form of ``find_active_assignments_by_profile`` keyed by profile id."""
    profile_ids = list(profile_ids)
    if not profile_ids:
        return {}

    result = await db.execute(
        select(BillingAssignment).where(
            BillingAssignment.program_profile_id.in_(profile_ids),
            BillingAssignment.is_active.is_(True),
        )
    )
    return {a.program_profile_id: a for a in result.scalars().all()}


async def find_assignments_by_profile(
    db: AsyncSession, profile_id: uuid.UUID
) -> list[BillingAssignment]:
    """Full billing history of a profile, newest first."""
    result = await db.execute(
        select(BillingAssignment)
        .where(BillingAssignment.program_profile_id == profile_id)
        .order_by(BillingAssignment.created_at.desc())
    )
    return list(result.scalars().all())


async def find_family_profiles(
    db: AsyncSession, family_reference_id: str, program: Program
) -> list[ProgramProfile]:
    """Non-withdrawn siblings sharing a family reference in one program."""
    result = await db.execute(
        select(ProgramProfile)
        .where(
            ProgramProfile.family_reference_id == family_reference_id,
            ProgramProfile.program == program,
            ProgramProfile.status != EnrollmentStatus.WITHDRAWN,
        )
        .order_by(ProgramProfile.created_at, ProgramProfile.id)
    )
    return list(result.scalars().all())


async def get_subscription_by_stripe_id(
    db: AsyncSession, stripe_subscription_id: str
) -> Optional[Subscription]:
    result = await db.execute(
        select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
    )
    return result.scalar_one_or_none()


async def lookup_people(
    db: AsyncSession,
    *,
    program: Program,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> list[PersonLookupResult]:
    """Resolve a contact to persons and their profiles in ``program``.

    Raw input is normalized first; invalid contacts resolve to nothing.
    Ambiguity is returned as-is for the caller to handle.
    """
    email = normalize_email(email) if email else None
    phone = normalize_phone(phone) if phone else None
    if not email and not phone:
        return []

    persons = await find_persons_by_contact(db, email=email, phone=phone)
    if not persons:
        return []

    profiles = await find_profiles_by_person_and_program(
        db, [p.id for p in persons], program
    )
    by_person: dict[uuid.UUID, list[ProgramProfile]] = {}
    for profile in profiles:
        by_person.setdefault(profile.person_id, []).append(profile)

    if len(persons) > 1:
        logger.debug(
            "Contact resolved to %d persons",
            len(persons),
            extra={"extra_fields": {"person_ids": [str(p.id) for p in persons]}},
        )
    return [PersonLookupResult(person=p, profiles=by_person.get(p.id, [])) for p in persons]
