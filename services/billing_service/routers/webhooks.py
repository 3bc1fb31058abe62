"""Stripe webhook endpoints, one per program account."""

import json

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from pydantic import ValidationError
from services.billing_service.exceptions import AssignmentConflictError
from services.billing_service.models import Program
from services.billing_service.schemas import StripeEvent, WebhookAck
from services.billing_service.services.webhook_ops import process_stripe_event
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/billing", tags=["billing-webhooks"])
logger = get_logger(__name__)


def _webhook_secret(program: Program) -> str:
    settings = get_settings()
    if program == Program.DUGSI_PROGRAM:
        return settings.STRIPE_WEBHOOK_SECRET_DUGSI
    return settings.STRIPE_WEBHOOK_SECRET_MAHAD


async def _verified_event(request: Request, program: Program) -> StripeEvent:
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature"
        )

    try:
        raw = body.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Rejected %s webhook with undecodable body", program.value)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed event payload"
        )

    try:
        stripe.WebhookSignature.verify_header(
            raw,
            signature,
            _webhook_secret(program),
            tolerance=get_settings().STRIPE_WEBHOOK_TOLERANCE,
        )
    except stripe.SignatureVerificationError:
        logger.warning("Rejected %s webhook with invalid signature", program.value)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    try:
        return StripeEvent.model_validate(json.loads(raw or "{}"))
    except (ValueError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed event payload"
        )


async def _handle(request: Request, db: AsyncSession, program: Program) -> WebhookAck:
    event = await _verified_event(request, program)
    try:
        outcome = await process_stripe_event(db, event, program)
    except AssignmentConflictError as exc:
        # Non-2xx makes Stripe redeliver after the competing write settles
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        )
    return WebhookAck(received=True, outcome=outcome)


@router.post("/webhooks/stripe/mahad", response_model=WebhookAck)
async def stripe_webhook_mahad(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
):
    """Stripe webhook for the Mahad account (no auth; verified by stripe-signature)."""
    return await _handle(request, db, Program.MAHAD_PROGRAM)


@router.post("/webhooks/stripe/dugsi", response_model=WebhookAck)
async def stripe_webhook_dugsi(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
):
    """Stripe webhook for the Dugsi account (no auth; verified by stripe-signature)."""
    return await _handle(request, db, Program.DUGSI_PROGRAM)
