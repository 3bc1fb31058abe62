"""Inbound Stripe payload shapes and the normalized payment event.

Only the fields the billing core reads are modelled; everything else in the
provider payload is ignored.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from services.billing_service.models import Program


class StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CustomFieldText(StripeObject):
    value: Optional[str] = None


class CheckoutCustomField(StripeObject):
    key: str
    text: Optional[CustomFieldText] = None
    numeric: Optional[CustomFieldText] = None

    @property
    def value(self) -> Optional[str]:
        for holder in (self.text, self.numeric):
            if holder is not None and holder.value:
                return holder.value
        return None


class CustomerDetails(StripeObject):
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None


class CheckoutSession(StripeObject):
    id: str
    mode: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None
    payment_intent: Optional[str] = None
    amount_total: Optional[int] = None
    customer_details: Optional[CustomerDetails] = None
    custom_fields: list[CheckoutCustomField] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)

    def custom_field(self, key: str) -> Optional[str]:
        for custom in self.custom_fields:
            if custom.key == key:
                return custom.value
        return None


class RecurringPrice(StripeObject):
    interval: str = "month"
    interval_count: int = 1


class Price(StripeObject):
    unit_amount: Optional[int] = None
    recurring: Optional[RecurringPrice] = None


class SubscriptionItem(StripeObject):
    price: Optional[Price] = None
    quantity: Optional[int] = 1
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None


class SubscriptionItemList(StripeObject):
    data: list[SubscriptionItem] = Field(default_factory=list)


class StripeSubscription(StripeObject):
    id: str
    customer: Optional[str] = None
    status: str = "incomplete"
    currency: Optional[str] = "usd"
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)
    metadata: dict[str, str] = Field(default_factory=dict)
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None

    @property
    def first_item(self) -> Optional[SubscriptionItem]:
        return self.items.data[0] if self.items.data else None

    @property
    def amount(self) -> Optional[int]:
        """Per-cycle amount in cents, summed over items."""
        total = None
        for item in self.items.data:
            if item.price is None or item.price.unit_amount is None:
                continue
            total = (total or 0) + item.price.unit_amount * (item.quantity or 1)
        return total

    @property
    def period_bounds(self) -> tuple[Optional[int], Optional[int]]:
        # Newer API versions moved the period onto the subscription item
        item = self.first_item
        start = self.current_period_start or (item.current_period_start if item else None)
        end = self.current_period_end or (item.current_period_end if item else None)
        return start, end

    @property
    def profile_ids(self) -> list[str]:
        raw = self.metadata.get("profileIds") or self.metadata.get("profileId") or ""
        return [part.strip() for part in raw.split(",") if part.strip()]


class StripeInvoice(StripeObject):
    id: Optional[str] = None
    subscription: Optional[str] = None
    amount_paid: Optional[int] = None
    amount_due: Optional[int] = None
    attempt_count: Optional[int] = None
    status_transitions: dict[str, Any] = Field(default_factory=dict)
    period_end: Optional[int] = None
    lines: dict[str, Any] = Field(default_factory=dict)


class StripeEvent(StripeObject):
    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def object(self) -> dict[str, Any]:
        return self.data.get("object") or {}


class PaymentEvent(BaseModel):
    """What the matcher needs to know about one inbound payment."""

    event_id: str
    event_type: str
    program: Program
    payer_email: Optional[str] = None
    student_email: Optional[str] = None
    student_phone: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    amount: Optional[int] = None

    def attempted_identifiers(self) -> dict[str, Optional[str]]:
        return {
            "student_email": self.student_email,
            "student_phone": self.student_phone,
            "payer_email": self.payer_email,
        }
