"""
Refund endpoints.
"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.organization import Permission
from ..models.payment import RefundStatus
from ..schemas.order import ProcessRefundRequest, RefundListResponse, RefundResponse
from ..services.payment_providers import StripeClient, TwintSandbox
from ..services.refund_service import RefundService
from ..utils.dependencies import OrgContext, get_stripe_client, get_twint_sandbox, require_permission

router = APIRouter(prefix="/refunds", tags=["refunds"])

can_manage_finance = require_permission(Permission.FINANCE)


def _service(
    db: AsyncSession = Depends(get_db),
    stripe: StripeClient = Depends(get_stripe_client),
    twint: TwintSandbox = Depends(get_twint_sandbox)
) -> RefundService:
    return RefundService(db, stripe=stripe, twint=twint)


@router.get("", response_model=RefundListResponse)
async def list_refunds(
    order_id: Optional[UUID] = None,
    status_filter: Optional[RefundStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(can_manage_finance),
    service: RefundService = Depends(_service)
) -> Any:
    refunds, total = await service.list_refunds(
        ctx.org_id, order_id=order_id, status=status_filter, limit=limit, offset=offset
    )
    return RefundListResponse(refunds=[RefundResponse.model_validate(r) for r in refunds], total=total)


@router.post("/process", response_model=RefundResponse)
async def process_refund(
    data: ProcessRefundRequest,
    ctx: OrgContext = Depends(can_manage_finance),
    service: RefundService = Depends(_service)
) -> Any:
    """
    Refund part or all of an order through the original payment method.

    Raises:
        RefundAmountError: Amount exceeds what is still refundable
    """
    refund = await service.process_refund(
        ctx.org,
        data.order_id,
        data.amount_cents,
        data.reason,
        payment_id=data.payment_id,
        reason_code=data.reason_code,
        notes=data.notes,
        initiated_by=ctx.user.id,
    )
    return RefundResponse.model_validate(refund)
