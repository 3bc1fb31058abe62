"""Admin endpoints for manual billing linkage and the payment review queue."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.billing_service.exceptions import (
    AssignmentConflictError,
    InvalidLinkError,
    ProfileNotFoundError,
    SubscriptionNotFoundError,
)
from services.billing_service.models import PaymentReviewItem, Program, ProgramProfile
from services.billing_service.schemas import (
    BillingAssignmentResponse,
    BillingStatusResponse,
    LinkSubscriptionRequest,
    PaymentReviewItemResponse,
    ProfileBillingStatusResponse,
    ReconcileResponse,
    ResolveReviewItemRequest,
    UnlinkResponse,
)
from services.billing_service.services.billing_accounts import (
    get_billing_status_by_email,
    get_billing_status_for_profiles,
)
from services.billing_service.services.queries import find_assignments_by_profile
from services.billing_service.services.reconciler import (
    ReconcileResult,
    deactivate_subscription_assignments,
    reconcile_assignments,
)
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/billing/admin", tags=["admin-billing"])


def _to_response(stripe_subscription_id: str, result: ReconcileResult) -> ReconcileResponse:
    return ReconcileResponse(
        stripe_subscription_id=stripe_subscription_id,
        subscription_id=result.subscription.id,
        created=[a.program_profile_id for a in result.created],
        updated=result.updated,
        unchanged=result.unchanged,
        deactivated=result.deactivated,
        replayed=result.replayed,
    )


async def _reconcile_or_raise(db: AsyncSession, **kwargs) -> ReconcileResult:
    try:
        return await reconcile_assignments(db, **kwargs)
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except InvalidLinkError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except AssignmentConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------


@router.get("/review-items", response_model=list[PaymentReviewItemResponse])
async def list_review_items(
    unresolved_only: bool = True,
    program: Optional[Program] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """List payments that could not be linked automatically."""
    query = select(PaymentReviewItem)
    if unresolved_only:
        query = query.where(PaymentReviewItem.resolved_at.is_(None))
    if program:
        query = query.where(PaymentReviewItem.program == program)

    result = await db.execute(
        query.order_by(desc(PaymentReviewItem.created_at)).offset(skip).limit(limit)
    )
    return list(result.scalars().all())


@router.post("/review-items/{item_id}/link", response_model=ReconcileResponse)
async def resolve_review_item(
    item_id: uuid.UUID,
    body: ResolveReviewItemRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Link the subscription behind a review item to the chosen profiles."""
    item = await db.get(PaymentReviewItem, item_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Review item not found"
        )
    if item.resolved_at is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Review item is already resolved",
        )
    if not item.stripe_subscription_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Review item has no subscription to link",
        )

    stripe_subscription_id = item.stripe_subscription_id
    amount = body.amount if body.amount is not None else item.amount or 0

    result = await _reconcile_or_raise(
        db,
        stripe_subscription_id=stripe_subscription_id,
        profile_ids=body.profile_ids,
        amount=amount,
        program=item.program,
        stripe_customer_id=item.stripe_customer_id,
        link_method="manual",
        notes=body.note or f"Resolved review item {item_id}",
    )

    item = await db.get(PaymentReviewItem, item_id)
    item.resolved_at = utc_now()
    item.resolved_by = admin.user_id
    item.resolution_note = body.note
    await db.commit()

    logger.info(
        "Admin %s resolved review item %s",
        admin.user_id,
        item_id,
        extra={
            "extra_fields": {
                "review_item_id": str(item_id),
                "stripe_subscription_id": stripe_subscription_id,
                "profile_ids": [str(pid) for pid in body.profile_ids],
            }
        },
    )
    return _to_response(stripe_subscription_id, result)


# ---------------------------------------------------------------------------
# Subscription linkage
# ---------------------------------------------------------------------------


@router.post(
    "/subscriptions/{stripe_subscription_id}/link", response_model=ReconcileResponse
)
async def link_subscription(
    stripe_subscription_id: str,
    body: LinkSubscriptionRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Manually link one or more profiles (a family) to a subscription."""
    result = await _reconcile_or_raise(
        db,
        stripe_subscription_id=stripe_subscription_id,
        profile_ids=body.profile_ids,
        amount=body.amount,
        program=body.program,
        stripe_customer_id=body.stripe_customer_id,
        link_method="manual",
        notes=body.notes,
    )
    logger.info(
        "Admin %s linked %d profiles to subscription %s",
        admin.user_id,
        len(body.profile_ids),
        stripe_subscription_id,
    )
    return _to_response(stripe_subscription_id, result)


@router.post(
    "/subscriptions/{stripe_subscription_id}/unlink", response_model=UnlinkResponse
)
async def unlink_subscription(
    stripe_subscription_id: str,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Deactivate every active assignment of a subscription."""
    try:
        count = await deactivate_subscription_assignments(
            db, stripe_subscription_id, notes=f"Unlinked by {admin.user_id}"
        )
    except SubscriptionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return UnlinkResponse(stripe_subscription_id=stripe_subscription_id, deactivated=count)


@router.get(
    "/profiles/{profile_id}/assignments",
    response_model=list[BillingAssignmentResponse],
)
async def list_profile_assignments(
    profile_id: uuid.UUID,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Assignment history for a profile, newest first."""
    if await db.get(ProgramProfile, profile_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Program profile not found"
        )
    return await find_assignments_by_profile(db, profile_id)


# ---------------------------------------------------------------------------
# Billing status
# ---------------------------------------------------------------------------


@router.get("/billing-status", response_model=BillingStatusResponse)
async def billing_status_by_email(
    email: str,
    program: Program,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Payment method and active subscription for the person owning an email."""
    billing_status = await get_billing_status_by_email(db, email, program)
    if billing_status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No person found with this email address",
        )
    return billing_status


@router.get(
    "/billing-status/profiles", response_model=list[ProfileBillingStatusResponse]
)
async def billing_status_for_profiles(
    profile_ids: list[uuid.UUID] = Query(...),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Whether each profile currently has an active billing assignment."""
    return await get_billing_status_for_profiles(db, profile_ids)
