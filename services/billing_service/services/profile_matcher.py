"""Match an inbound payment to exactly one unlinked program profile.

Strategies run in order of trust and the first unique hit wins:

1. Student email from the checkout custom field
2. Student phone from the checkout custom field (digits only)
3. Payer email from the customer details (often a parent shared by siblings)

A profile that already has an active billing assignment is never a
candidate. When a strategy finds several unlinked candidates it is treated
as a miss rather than a guess; billing the wrong child is worse than leaving
the payment for manual review.
"""

import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from libs.common.logging import get_logger
from services.billing_service.models import MatchMethod, ProgramProfile
from services.billing_service.schemas.events import PaymentEvent
from services.billing_service.services.contacts import normalize_email, normalize_phone
from services.billing_service.services.queries import (
    find_active_assignments_by_profiles,
    lookup_people,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchStrategy:
    method: MatchMethod
    contact_kind: str  # "email" or "phone"
    extract: Callable[[PaymentEvent], Optional[str]]

    def normalized_contact(self, event: PaymentEvent) -> Optional[str]:
        raw = self.extract(event)
        if self.contact_kind == "phone":
            return normalize_phone(raw)
        return normalize_email(raw)


DEFAULT_STRATEGIES: tuple[MatchStrategy, ...] = (
    MatchStrategy(MatchMethod.STUDENT_EMAIL, "email", lambda e: e.student_email),
    MatchStrategy(MatchMethod.STUDENT_PHONE, "phone", lambda e: e.student_phone),
    MatchStrategy(MatchMethod.PAYER_EMAIL, "email", lambda e: e.payer_email),
)


@dataclass
class ProfileMatchResult:
    """Outcome of matching; ``profile`` is None when no unique match exists."""

    profile: Optional[ProgramProfile] = None
    match_method: Optional[MatchMethod] = None
    # Kept for manual linking even when nothing matched
    validated_email: Optional[str] = None
    ambiguous: dict[MatchMethod, list[uuid.UUID]] = field(default_factory=dict)

    @property
    def matched(self) -> bool:
        return self.profile is not None

    @property
    def requires_manual_review(self) -> bool:
        return self.profile is None


class ProfileMatcher:
    """Runs the matching strategies against the database."""

    def __init__(self, strategies: tuple[MatchStrategy, ...] = DEFAULT_STRATEGIES):
        self.strategies = strategies

    async def find_by_payment_event(
        self, db: AsyncSession, event: PaymentEvent
    ) -> ProfileMatchResult:
        result = ProfileMatchResult(validated_email=normalize_email(event.payer_email))

        for strategy in self.strategies:
            contact = strategy.normalized_contact(event)
            if contact is None:
                continue

            candidates = await self._unlinked_candidates(db, strategy, contact, event)

            if len(candidates) == 1:
                profile = candidates[0]
                result.profile = profile
                result.match_method = strategy.method
                if strategy.contact_kind == "email":
                    result.validated_email = contact
                logger.info(
                    "Matched payment %s to profile %s by %s",
                    event.event_id,
                    profile.id,
                    strategy.method.value,
                    extra={
                        "extra_fields": {
                            "event_id": event.event_id,
                            "profile_id": str(profile.id),
                            "match_method": strategy.method.value,
                            "program": event.program.value,
                        }
                    },
                )
                return result

            if len(candidates) > 1:
                candidate_ids = [c.id for c in candidates]
                result.ambiguous[strategy.method] = candidate_ids
                logger.warning(
                    "Ambiguous %s match for payment %s: %d unlinked profiles",
                    strategy.method.value,
                    event.event_id,
                    len(candidates),
                    extra={
                        "extra_fields": {
                            "event_id": event.event_id,
                            "match_method": strategy.method.value,
                            "candidate_ids": [str(c) for c in candidate_ids],
                        }
                    },
                )

        return result

    async def _unlinked_candidates(
        self,
        db: AsyncSession,
        strategy: MatchStrategy,
        contact: str,
        event: PaymentEvent,
    ) -> list[ProgramProfile]:
        lookup_kwargs = {strategy.contact_kind: contact}
        people = await lookup_people(db, program=event.program, **lookup_kwargs)
        profiles = [profile for found in people for profile in found.profiles]
        if not profiles:
            return []

        linked = await find_active_assignments_by_profiles(db, [p.id for p in profiles])
        return [p for p in profiles if p.id not in linked]

    def log_no_match_found(self, event: PaymentEvent) -> None:
        """Record every identifier that was tried so staff can link by hand."""
        identifiers = event.attempted_identifiers()
        logger.warning(
            "No unique unlinked profile for subscription %s (student email=%r, "
            "phone=%r, payer email=%r). Manual review required.",
            event.stripe_subscription_id or "no-subscription",
            identifiers["student_email"] or "N/A",
            identifiers["student_phone"] or "N/A",
            identifiers["payer_email"] or "N/A",
            extra={
                "extra_fields": {
                    "event_id": event.event_id,
                    "program": event.program.value,
                    "stripe_subscription_id": event.stripe_subscription_id,
                    "attempted_identifiers": identifiers,
                }
            },
        )


profile_matcher = ProfileMatcher()
