"""
Financial and booking reports.
"""

from datetime import date, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.organization import Permission
from ..schemas.finance import BookingAnalytics, FinancialSummary
from ..services.report_service import ReportService
from ..utils.clock import utcnow
from ..utils.dependencies import OrgContext, require_permission

router = APIRouter(prefix="/reports", tags=["reports"])

can_view_analytics = require_permission(Permission.ANALYTICS)


@router.get("/summary", response_model=FinancialSummary)
async def financial_summary(
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    ctx: OrgContext = Depends(can_view_analytics),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Revenue, payments, refunds and liabilities for a period (default: last 30 days).

    When the finance tables cannot be read the response is a zeroed summary
    with ``metadata.is_fallback`` set.
    """
    period_end = period_end or utcnow().date()
    period_start = period_start or period_end - timedelta(days=29)
    return await ReportService(db).financial_summary(ctx.org, period_start, period_end)


@router.get("/bookings", response_model=BookingAnalytics)
async def booking_analytics(
    period: str = Query("30d", pattern=r"^\d+d$"),
    ctx: OrgContext = Depends(can_view_analytics),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Booking counts and rates for the last 7, 30 or 90 days."""
    return await ReportService(db).booking_analytics(ctx.org_id, int(period[:-1]))
