"""
Financial and booking reports for the studio dashboard.
"""

import logging
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheKeyBuilder, CacheTTL, cache
from ..config import get_settings
from ..models.class_schedule import ClassOccurrence
from ..models.order import Order, OrderItem, OrderStatus
from ..models.organization import Organization
from ..models.payment import CAPTURED_STATUSES, Payment, Refund, RefundStatus
from ..models.registration import Registration, RegistrationStatus
from ..models.wallet import CustomerWallet
from ..schemas.finance import (
    BookingAnalytics,
    CategoryCount,
    DailyRevenue,
    FinancialSummary,
    PaymentMethodStat,
    SummaryMetadata,
)
from ..utils.clock import day_bounds, utcnow
from ..utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

ANALYTICS_PERIODS = (7, 30, 90)


class ReportService:
    """Service for reporting operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def financial_summary(self, org: Organization, period_start: date, period_end: date) -> FinancialSummary:
        """
        Revenue, payments, refunds and wallet liabilities for a period.

        Results are cached briefly. A database failure yields a zeroed summary
        flagged ``is_fallback`` instead of an error.
        """
        if period_end < period_start:
            raise ValidationError("period_end must not be before period_start")

        # Rollback expires ``org``; read what the fallback needs up front
        org_id, currency = org.id, org.currency
        key = CacheKeyBuilder.financial_summary(str(org_id), period_start.isoformat(), period_end.isoformat())
        cached = await cache.get(key)
        if cached:
            return FinancialSummary.model_validate(cached)

        try:
            summary = await self._compute_summary(org, period_start, period_end)
        except SQLAlchemyError as e:
            logger.warning(f"Financial summary for org {org_id} fell back to zeros: {e}")
            await self.db.rollback()
            return FinancialSummary(
                period_start=period_start,
                period_end=period_end,
                currency=currency,
                metadata=SummaryMetadata(
                    orders_available=False,
                    payments_available=False,
                    wallets_available=False,
                    is_fallback=True,
                ),
            )

        await cache.set(
            key,
            summary.model_dump(mode="json"),
            ttl=self.settings.summary_cache_ttl_seconds or CacheTTL.FINANCIAL_SUMMARY
        )
        return summary

    async def booking_analytics(self, org_id: UUID, period_days: int = 30) -> BookingAnalytics:
        """
        Booking counts and rates over the last ``period_days`` days.

        Raises:
            ValidationError: Period other than 7, 30 or 90 days
        """
        if period_days not in ANALYTICS_PERIODS:
            raise ValidationError(
                "period must be one of 7d, 30d or 90d",
                field_errors={"period": [f"unsupported: {period_days}"]}
            )

        key = CacheKeyBuilder.booking_analytics(str(org_id), period_days)
        cached = await cache.get(key)
        if cached:
            return BookingAnalytics.model_validate(cached)

        now = utcnow()
        since = now - timedelta(days=period_days)

        counts = (await self.db.execute(
            select(
                func.count(Registration.id).label("total"),
                func.count(case((Registration.status == RegistrationStatus.CONFIRMED, 1))).label("confirmed"),
                func.count(case((Registration.status == RegistrationStatus.ATTENDED, 1))).label("attended"),
                func.count(case((Registration.status == RegistrationStatus.CANCELLED, 1))).label("cancelled"),
                func.count(case((Registration.status == RegistrationStatus.NO_SHOW, 1))).label("no_shows"),
                func.count(case((Registration.status == RegistrationStatus.WAITLISTED, 1))).label("waitlisted"),
            ).where(Registration.org_id == org_id, Registration.booked_at >= since)
        )).first()

        total = counts.total or 0
        confirmed = counts.confirmed or 0
        attended = counts.attended or 0
        cancelled = counts.cancelled or 0
        no_shows = counts.no_shows or 0

        seated = confirmed + attended + no_shows
        attendance_rate = round(attended / seated * 100, 1) if seated else 0.0
        cancellation_rate = round(cancelled / total * 100, 1) if total else 0.0

        week_start = now.date() - timedelta(days=6)
        lower, _ = day_bounds(week_start, now.date())
        daily_rows = await self.db.execute(
            select(func.date(Registration.booked_at).label("day"), func.count(Registration.id))
            .where(Registration.org_id == org_id, Registration.booked_at >= lower)
            .group_by(func.date(Registration.booked_at))
        )
        per_day = {str(day): count for day, count in daily_rows.all()}
        daily_bookings = [
            {"date": (week_start + timedelta(days=offset)).isoformat(),
             "count": per_day.get((week_start + timedelta(days=offset)).isoformat(), 0)}
            for offset in range(7)
        ]

        category = func.coalesce(ClassOccurrence.category, "uncategorized")
        category_rows = await self.db.execute(
            select(category.label("category"), func.count(Registration.id).label("count"))
            .join(ClassOccurrence, ClassOccurrence.id == Registration.occurrence_id)
            .where(Registration.org_id == org_id, Registration.booked_at >= since)
            .group_by(category)
            .order_by(func.count(Registration.id).desc())
        )

        analytics = BookingAnalytics(
            period_days=period_days,
            total_bookings=total,
            confirmed=confirmed,
            attended=attended,
            cancelled=cancelled,
            no_shows=no_shows,
            waitlisted=counts.waitlisted or 0,
            attendance_rate=attendance_rate,
            cancellation_rate=cancellation_rate,
            daily_bookings=daily_bookings,
            by_category=[CategoryCount(category=row.category, count=row.count) for row in category_rows.all()],
        )
        await cache.set(key, analytics.model_dump(mode="json"), ttl=CacheTTL.BOOKING_ANALYTICS)
        return analytics

    async def _compute_summary(self, org: Organization, period_start: date, period_end: date) -> FinancialSummary:
        lower, upper = day_bounds(period_start, period_end)

        orders = (await self.db.execute(
            select(
                func.count(Order.id).label("count"),
                func.coalesce(func.sum(Order.total_cents), 0).label("revenue"),
            ).where(
                Order.org_id == org.id,
                Order.status == OrderStatus.COMPLETED,
                Order.created_at >= lower,
                Order.created_at <= upper,
            )
        )).first()

        payments = (await self.db.execute(
            select(
                func.count(Payment.id).label("count"),
                func.coalesce(func.sum(Payment.captured_cents), 0).label("captured"),
                func.coalesce(func.sum(Payment.fee_amount_cents), 0).label("fees"),
            ).where(
                Payment.org_id == org.id,
                Payment.status.in_(CAPTURED_STATUSES),
                Payment.captured_at >= lower,
                Payment.captured_at <= upper,
            )
        )).first()

        method_rows = await self.db.execute(
            select(
                Payment.method,
                func.count(Payment.id),
                func.coalesce(func.sum(Payment.captured_cents), 0),
            )
            .where(
                Payment.org_id == org.id,
                Payment.status.in_(CAPTURED_STATUSES),
                Payment.captured_at >= lower,
                Payment.captured_at <= upper,
            )
            .group_by(Payment.method)
            .order_by(func.sum(Payment.captured_cents).desc())
        )

        refunds_total = await self.db.scalar(
            select(func.coalesce(func.sum(Refund.amount_cents), 0)).where(
                Refund.org_id == org.id,
                Refund.status == RefundStatus.COMPLETED,
                Refund.processed_at >= lower,
                Refund.processed_at <= upper,
            )
        )

        wallets = (await self.db.execute(
            select(
                func.coalesce(func.sum(CustomerWallet.balance_cents), 0).label("balance"),
                func.coalesce(func.sum(CustomerWallet.total_credits - CustomerWallet.used_credits), 0).label("credits"),
            ).where(CustomerWallet.org_id == org.id)
        )).first()

        item_rows = await self.db.execute(
            select(OrderItem.item_type, func.coalesce(func.sum(OrderItem.total_price_cents), 0))
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                Order.org_id == org.id,
                Order.status == OrderStatus.COMPLETED,
                Order.created_at >= lower,
                Order.created_at <= upper,
            )
            .group_by(OrderItem.item_type)
        )

        day = func.date(Order.created_at)
        daily_rows = await self.db.execute(
            select(day.label("day"), func.coalesce(func.sum(Order.total_cents), 0))
            .where(
                Order.org_id == org.id,
                Order.status == OrderStatus.COMPLETED,
                Order.created_at >= lower,
                Order.created_at <= upper,
            )
            .group_by(day)
            .order_by(day)
        )

        order_count = orders.count or 0
        revenue = int(orders.revenue or 0)
        captured = int(payments.captured or 0)
        fees = int(payments.fees or 0)
        refunds_total = int(refunds_total or 0)

        return FinancialSummary(
            period_start=period_start,
            period_end=period_end,
            currency=org.currency,
            total_revenue_cents=revenue,
            total_payments_cents=captured,
            total_fees_cents=fees,
            net_revenue_cents=captured - fees - refunds_total,
            total_refunds_cents=refunds_total,
            wallet_liability_cents=int(wallets.balance or 0),
            credit_liability=int(wallets.credits or 0),
            order_count=order_count,
            payment_count=payments.count or 0,
            average_order_value_cents=revenue // order_count if order_count else 0,
            payment_methods=[
                PaymentMethodStat(method=method.value, count=count, amount_cents=int(amount))
                for method, count, amount in method_rows.all()
            ],
            revenue_by_item_type={item_type.value: int(amount) for item_type, amount in item_rows.all()},
            daily_revenue=[DailyRevenue(date=str(d), amount_cents=int(amount)) for d, amount in daily_rows.all()],
            metadata=SummaryMetadata(),
        )
