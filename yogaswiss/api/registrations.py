"""
Booking endpoints: registrations, check-in and the waitlist.
"""

import logging
from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheKeyBuilder, CacheTTL, cache
from ..database import get_db
from ..models.organization import Permission
from ..models.registration import RegistrationStatus
from ..schemas.registration import (
    PromotionTickResponse,
    RegistrationCancel,
    RegistrationCreate,
    RegistrationListResponse,
    RegistrationResponse,
)
from ..services.registration_service import RegistrationService
from ..utils.dependencies import OrgContext, require_permission

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/registrations", tags=["registrations"])

can_schedule = require_permission(Permission.SCHEDULE)


@router.post("", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def create_registration(
    data: RegistrationCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Book a customer into a class; a full class puts them on the waitlist.

    A repeated ``Idempotency-Key`` returns the original registration instead
    of booking again.

    Raises:
        ClassNotBookableError: Class is cancelled, completed or already started
        AlreadyRegisteredError: Customer already holds a seat or waitlist spot
        InsufficientCreditsError: Not enough credits in the customer's wallet
    """
    cache_key = None
    if idempotency_key:
        cache_key = CacheKeyBuilder.idempotent_booking(str(ctx.org_id), idempotency_key)
        cached = await cache.get(cache_key)
        if cached:
            logger.info(f"Replaying cached booking response for key {idempotency_key}")
            return RegistrationResponse.model_validate(cached)

    registration = await RegistrationService(db).book(
        ctx.org_id,
        data.occurrence_id,
        data.customer_id,
        payment_method=data.payment_method,
        idempotency_key=idempotency_key,
        notes=data.notes,
        booked_by=ctx.user.id,
    )
    response = RegistrationResponse.model_validate(registration)

    if cache_key:
        await cache.set(cache_key, response.model_dump(mode="json"), ttl=CacheTTL.IDEMPOTENCY)
    return response


@router.get("", response_model=RegistrationListResponse)
async def list_registrations(
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    customer_id: Optional[UUID] = None,
    occurrence_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    registrations, total = await RegistrationService(db).list_registrations(
        ctx.org_id,
        status=status_filter,
        customer_id=customer_id,
        occurrence_id=occurrence_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return RegistrationListResponse(
        registrations=[RegistrationResponse.model_validate(r) for r in registrations],
        total=total,
    )


@router.post("/waitlist/promote-tick", response_model=PromotionTickResponse)
async def promote_waitlists(
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Run one waitlist promotion pass immediately instead of waiting for the scheduler."""
    promoted = await RegistrationService(db).promote_waitlists_tick()
    return PromotionTickResponse(promoted=promoted)


@router.get("/{registration_id}", response_model=RegistrationResponse)
async def get_registration(
    registration_id: UUID,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    registration = await RegistrationService(db).get_registration(ctx.org_id, registration_id)
    return RegistrationResponse.model_validate(registration)


@router.post("/{registration_id}/cancel", response_model=RegistrationResponse)
async def cancel_registration(
    registration_id: UUID,
    data: Optional[RegistrationCancel] = None,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Cancel a registration.

    Raises:
        CancellationWindowError: Customer cancellation inside the window
    """
    data = data or RegistrationCancel()
    registration = await RegistrationService(db).cancel(
        ctx.org_id,
        registration_id,
        reason=data.reason,
        by_staff=data.by_staff,
        initiated_by=ctx.user.id,
    )
    return RegistrationResponse.model_validate(registration)


@router.post("/{registration_id}/checkin", response_model=RegistrationResponse)
async def check_in(
    registration_id: UUID,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    registration = await RegistrationService(db).check_in(ctx.org_id, registration_id)
    return RegistrationResponse.model_validate(registration)


@router.post("/{registration_id}/no-show", response_model=RegistrationResponse)
async def mark_no_show(
    registration_id: UUID,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    registration = await RegistrationService(db).mark_no_show(ctx.org_id, registration_id)
    return RegistrationResponse.model_validate(registration)


@router.post("/{registration_id}/promote", response_model=RegistrationResponse)
async def promote_registration(
    registration_id: UUID,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    registration = await RegistrationService(db).promote(ctx.org_id, registration_id, initiated_by=ctx.user.id)
    return RegistrationResponse.model_validate(registration)
