import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.billing_service.models import (
    BillingType,
    GraduationStatus,
    PaymentFrequency,
    Program,
    ReviewReason,
)


class BillingAssignmentResponse(BaseModel):
    id: uuid.UUID
    subscription_id: uuid.UUID
    program_profile_id: uuid.UUID
    amount: int  # cents
    percentage: Optional[float] = None
    is_active: bool
    start_date: datetime
    end_date: Optional[datetime] = None
    link_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentReviewItemResponse(BaseModel):
    id: uuid.UUID
    event_id: str
    event_type: str
    program: Program
    reason: ReviewReason
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    amount: Optional[int] = None
    attempted_identifiers: Optional[dict] = None
    validated_email: Optional[str] = None
    details: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResolveReviewItemRequest(BaseModel):
    profile_ids: list[uuid.UUID] = Field(..., min_length=1)
    # Defaults to the amount Stripe reported on the event
    amount: Optional[int] = Field(default=None, ge=0)
    note: Optional[str] = None


class LinkSubscriptionRequest(BaseModel):
    program: Program
    profile_ids: list[uuid.UUID] = Field(..., min_length=1)
    amount: int = Field(..., ge=0)  # subscription total in cents
    stripe_customer_id: Optional[str] = None
    notes: Optional[str] = None


class ReconcileResponse(BaseModel):
    stripe_subscription_id: str
    subscription_id: uuid.UUID
    created: list[uuid.UUID] = Field(default_factory=list)
    updated: list[uuid.UUID] = Field(default_factory=list)
    unchanged: list[uuid.UUID] = Field(default_factory=list)
    deactivated: list[uuid.UUID] = Field(default_factory=list)
    replayed: bool = False


class UnlinkResponse(BaseModel):
    stripe_subscription_id: str
    deactivated: int


class MahadRateQuote(BaseModel):
    graduation_status: Optional[GraduationStatus] = None
    payment_frequency: Optional[PaymentFrequency] = None
    billing_type: Optional[BillingType] = None
    amount: int  # cents per billing cycle
    display: str
    description: str
    interval: str
    interval_count: int
    requires_subscription: bool


class DugsiRateQuote(BaseModel):
    child_count: int
    first_two: int
    third: int
    fourth_plus: int
    total: int
    display: str


class WebhookAck(BaseModel):
    received: bool = True
    outcome: Optional[str] = None


class BillingStatusResponse(BaseModel):
    person_id: uuid.UUID
    program: Program
    has_payment_method: bool
    has_active_subscription: bool
    stripe_customer_id: Optional[str] = None
    subscription_status: Optional[str] = None
    paid_until: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProfileBillingStatusResponse(BaseModel):
    program_profile_id: uuid.UUID
    has_subscription: bool
    amount: Optional[int] = None  # cents

    model_config = ConfigDict(from_attributes=True)
