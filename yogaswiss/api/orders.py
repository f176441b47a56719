"""
Order endpoints.
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.order import OrderStatus
from ..models.organization import Permission
from ..schemas.order import (
    OrderCancelRequest,
    OrderCreate,
    OrderDetailResponse,
    OrderListResponse,
    OrderResponse,
    PaymentResponse,
    RefundResponse,
)
from ..services.order_service import OrderService
from ..utils.dependencies import OrgContext, require_permission

router = APIRouter(prefix="/orders", tags=["orders"])

can_manage_finance = require_permission(Permission.FINANCE)


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    data: OrderCreate,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Create an order; VAT is computed per line at the organization's rate
    unless the line carries its own.
    """
    order = await OrderService(db).create_order(ctx.org, data, created_by=ctx.user.id)
    return OrderResponse.model_validate(order)


@router.get("", response_model=OrderListResponse)
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    customer_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    orders, total = await OrderService(db).list_orders(
        ctx.org_id,
        status=status_filter,
        customer_id=customer_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: UUID,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Order with its items, payments and refunds."""
    order, payments, refunds = await OrderService(db).get_order_details(ctx.org_id, order_id)
    response = OrderDetailResponse.model_validate(order)
    response.payments = [PaymentResponse.model_validate(p) for p in payments]
    response.refunds = [RefundResponse.model_validate(r) for r in refunds]
    return response


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    data: Optional[OrderCancelRequest] = None,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Cancel an unpaid order.

    Raises:
        InvalidStateError: The order is not pending or has captured payments
    """
    order = await OrderService(db).cancel_order(ctx.org_id, order_id, reason=data.reason if data else None)
    return OrderResponse.model_validate(order)
