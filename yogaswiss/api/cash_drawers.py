"""
Cash drawer endpoints for the front desk till.
"""

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.cash_drawer import DrawerStatus
from ..models.organization import Permission
from ..schemas.finance import (
    CashTransactionCreate,
    CashTransactionResponse,
    CashTransactionResult,
    DrawerClose,
    DrawerOpen,
    DrawerResponse,
    ZReport,
)
from ..services.cash_drawer_service import CashDrawerService
from ..utils.dependencies import OrgContext, require_permission

router = APIRouter(prefix="/cash-drawers", tags=["cash-drawers"])

can_manage_finance = require_permission(Permission.FINANCE)


@router.get("", response_model=List[DrawerResponse])
async def list_drawers(
    location_id: Optional[UUID] = None,
    status_filter: Optional[DrawerStatus] = Query(None, alias="status"),
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    drawers = await CashDrawerService(db).list_drawers(ctx.org_id, location_id=location_id, status=status_filter)
    return [DrawerResponse.model_validate(d) for d in drawers]


@router.post("", response_model=DrawerResponse, status_code=status.HTTP_201_CREATED)
async def open_drawer(
    data: DrawerOpen,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    drawer = await CashDrawerService(db).open_drawer(ctx.org_id, data, operator_id=ctx.user.id)
    return DrawerResponse.model_validate(drawer)


@router.post("/{drawer_id}/transactions", response_model=CashTransactionResult, status_code=status.HTTP_201_CREATED)
async def record_transaction(
    drawer_id: UUID,
    data: CashTransactionCreate,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Book a sale, refund, payout or deposit. Sales and refunds are rounded
    to 5 Rappen.

    Raises:
        DrawerClosedError: The drawer was already closed
    """
    drawer, transaction = await CashDrawerService(db).record_transaction(
        ctx.org_id, drawer_id, data, created_by=ctx.user.id
    )
    return CashTransactionResult(
        drawer=DrawerResponse.model_validate(drawer),
        transaction=CashTransactionResponse.model_validate(transaction),
    )


@router.post("/{drawer_id}/close", response_model=ZReport)
async def close_drawer(
    drawer_id: UUID,
    data: DrawerClose,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Close the drawer with the counted cash and return its Z report."""
    _, report = await CashDrawerService(db).close_drawer(
        ctx.org_id, drawer_id, data.counted_cash_cents, closed_by=ctx.user.id
    )
    return report
