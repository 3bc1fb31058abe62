"""Billing Service schemas package."""

from services.billing_service.schemas.events import (
    CheckoutSession,
    PaymentEvent,
    StripeEvent,
    StripeInvoice,
    StripeSubscription,
)
from services.billing_service.schemas.main import (
    BillingAssignmentResponse,
    BillingStatusResponse,
    DugsiRateQuote,
    LinkSubscriptionRequest,
    MahadRateQuote,
    PaymentReviewItemResponse,
    ProfileBillingStatusResponse,
    ReconcileResponse,
    ResolveReviewItemRequest,
    UnlinkResponse,
    WebhookAck,
)

__all__ = [
    "BillingAssignmentResponse",
    "BillingStatusResponse",
    "CheckoutSession",
    "DugsiRateQuote",
    "LinkSubscriptionRequest",
    "MahadRateQuote",
    "PaymentEvent",
    "PaymentReviewItemResponse",
    "ProfileBillingStatusResponse",
    "ReconcileResponse",
    "ResolveReviewItemRequest",
    "StripeEvent",
    "StripeInvoice",
    "StripeSubscription",
    "UnlinkResponse",
    "WebhookAck",
]
