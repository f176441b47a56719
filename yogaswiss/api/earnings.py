"""
Instructor earnings endpoints.
"""

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.earnings import EarningsStatus
from ..models.organization import Permission
from ..schemas.finance import EarningsCalculate, EarningsMarkPaid, EarningsResponse
from ..services.earnings_service import EarningsService
from ..utils.dependencies import OrgContext, require_permission

router = APIRouter(prefix="/earnings", tags=["earnings"])

can_manage_finance = require_permission(Permission.FINANCE)


@router.get("", response_model=List[EarningsResponse])
async def list_earnings(
    instructor_id: Optional[UUID] = None,
    status_filter: Optional[EarningsStatus] = Query(None, alias="status"),
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    records = await EarningsService(db).list_earnings(ctx.org_id, instructor_id=instructor_id, status=status_filter)
    return [EarningsResponse.model_validate(r) for r in records]


@router.post("/calculate", response_model=EarningsResponse)
async def calculate_earnings(
    data: EarningsCalculate,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Compute (or recompute while pending) an instructor's pay for a period."""
    record = await EarningsService(db).calculate(
        ctx.org_id,
        data.instructor_id,
        data.period_start,
        data.period_end,
        adjustments_cents=data.adjustments_cents,
        deductions_cents=data.deductions_cents,
    )
    return EarningsResponse.model_validate(record)


@router.post("/{earnings_id}/approve", response_model=EarningsResponse)
async def approve_earnings(
    earnings_id: UUID,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    record = await EarningsService(db).approve(ctx.org_id, earnings_id, ctx.user.id)
    return EarningsResponse.model_validate(record)


@router.post("/{earnings_id}/mark-paid", response_model=EarningsResponse)
async def mark_earnings_paid(
    earnings_id: UUID,
    data: Optional[EarningsMarkPaid] = None,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    data = data or EarningsMarkPaid()
    record = await EarningsService(db).mark_paid(
        ctx.org_id, earnings_id, data.payment_method, payment_reference=data.payment_reference
    )
    return EarningsResponse.model_validate(record)
