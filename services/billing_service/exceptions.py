"""Domain errors raised by the billing core.

Matching ambiguity and "no match" are results, not errors; only conditions the
caller has to act on are raised.
"""

from typing import Optional


class BillingError(Exception):
    """Base class for billing domain errors."""


class AssignmentConflictError(BillingError):
    """A concurrent writer left a profile linked to a different subscription.

    Transient: the webhook answers with a retryable status so the provider
    redelivers once the competing transaction has settled.
    """

    def __init__(self, message: str, profile_ids: Optional[list] = None):
        super().__init__(message)
        self.profile_ids = profile_ids or []


class RateMismatchError(BillingError):
    """Stripe is charging a different amount than the calculated tuition."""

    def __init__(self, message: str, *, expected: int, actual: Optional[int], context=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.context = context or {}


class SubscriptionNotFoundError(BillingError):
    """No local subscription row for a Stripe subscription id."""

    def __init__(self, stripe_subscription_id: str):
        super().__init__(f"Subscription {stripe_subscription_id} not found")
        self.stripe_subscription_id = stripe_subscription_id


class ProfileNotFoundError(BillingError):
    """One or more program profiles referenced for linking do not exist."""

    def __init__(self, missing_ids: list):
        super().__init__(f"Program profiles not found: {', '.join(map(str, missing_ids))}")
        self.missing_ids = missing_ids


class InvalidLinkError(BillingError):
    """A requested linkage is not allowed for the profiles or subscription given."""

    def __init__(self, message: str, profile_ids: Optional[list] = None):
        super().__init__(message)
        self.profile_ids = profile_ids or []


class ProgramMismatchError(InvalidLinkError):
    """Profiles or the subscription belong to a different program."""


class IneligibleProfileError(InvalidLinkError):
    """Withdrawn profiles cannot take on a new billing linkage."""
