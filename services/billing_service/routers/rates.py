"""Public tuition quote endpoints."""

from typing import Optional

from fastapi import APIRouter, Query
from services.billing_service.models import BillingType, GraduationStatus, PaymentFrequency
from services.billing_service.schemas import DugsiRateQuote, MahadRateQuote
from services.billing_service.services.tuition import (
    billing_interval,
    calculate_mahad_rate,
    describe_billing_type,
    format_rate_display,
    get_dugsi_rate_breakdown,
    should_create_subscription,
)

router = APIRouter(prefix="/billing/rates", tags=["billing-rates"])


@router.get("/mahad", response_model=MahadRateQuote)
async def quote_mahad_rate(
    graduation_status: Optional[GraduationStatus] = None,
    payment_frequency: Optional[PaymentFrequency] = None,
    billing_type: Optional[BillingType] = None,
):
    amount = calculate_mahad_rate(graduation_status, payment_frequency, billing_type)
    interval, interval_count = billing_interval(payment_frequency)
    return MahadRateQuote(
        graduation_status=graduation_status,
        payment_frequency=payment_frequency,
        billing_type=billing_type,
        amount=amount,
        display=format_rate_display(amount, payment_frequency),
        description=describe_billing_type(billing_type),
        interval=interval,
        interval_count=interval_count,
        requires_subscription=should_create_subscription(billing_type),
    )


@router.get("/dugsi", response_model=DugsiRateQuote)
async def quote_dugsi_rate(child_count: int = Query(1, ge=0, le=20)):
    """Monthly family rate with the per-child tier breakdown."""
    breakdown = get_dugsi_rate_breakdown(child_count)
    return DugsiRateQuote(
        child_count=child_count,
        display=format_rate_display(breakdown["total"], PaymentFrequency.MONTHLY),
        **breakdown,
    )
