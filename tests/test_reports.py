"""Tests for the financial summary and booking analytics."""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from yogaswiss.models.order import OrderItemType
from yogaswiss.models.payment import PaymentMethod
from yogaswiss.models.registration import RegistrationPaymentMethod
from yogaswiss.schemas.order import OrderCreate, OrderItemCreate
from yogaswiss.services.order_service import OrderService
from yogaswiss.services.payment_service import PaymentService
from yogaswiss.services.refund_service import RefundService
from yogaswiss.services.registration_service import RegistrationService
from yogaswiss.services.report_service import ReportService
from yogaswiss.services.wallet_service import WalletService
from yogaswiss.utils.clock import utcnow
from yogaswiss.utils.exceptions import ValidationError

CASH = RegistrationPaymentMethod.CASH


async def test_financial_summary(db, org, customer):
    order = await OrderService(db).create_order(
        org,
        OrderCreate(
            customer_id=customer.id,
            items=[OrderItemCreate(item_type=OrderItemType.REGISTRATION, name="Drop-in", unit_price_cents=5000)],
        ),
    )
    await PaymentService(db).process_payment(org, order.id, PaymentMethod.CASH, 5000)
    await RefundService(db).process_refund(org, order.id, 1000, reason="goodwill")
    wallets = WalletService(db)
    wallet = await wallets.get_or_create_wallet(org.id, customer.id)
    await wallets.add_funds(org.id, wallet.id, amount_cents=1000, credits=2)
    today = utcnow().date()

    summary = await ReportService(db).financial_summary(org, today, today)

    assert summary.total_revenue_cents == 5000
    assert summary.total_payments_cents == 5000
    assert summary.total_refunds_cents == 1000
    assert summary.net_revenue_cents == 4000
    assert summary.wallet_liability_cents == 1000
    assert summary.credit_liability == 2
    assert summary.order_count == 1
    assert summary.average_order_value_cents == 5000
    assert [(m.method, m.count, m.amount_cents) for m in summary.payment_methods] == [("cash", 1, 5000)]
    assert summary.revenue_by_item_type == {"registration": 5000}
    assert [(d.date, d.amount_cents) for d in summary.daily_revenue] == [(today.isoformat(), 5000)]
    assert summary.metadata.is_fallback is False


async def test_empty_period(db, org):
    today = utcnow().date()

    summary = await ReportService(db).financial_summary(org, today, today)

    assert summary.total_revenue_cents == 0
    assert summary.average_order_value_cents == 0
    assert summary.payment_methods == []


async def test_period_end_before_start(db, org):
    today = utcnow().date()

    with pytest.raises(ValidationError):
        await ReportService(db).financial_summary(org, today, today.replace(year=today.year - 1))


async def test_database_failure_yields_a_flagged_fallback(db, org, monkeypatch):
    async def broken(self, org, period_start, period_end):
        raise SQLAlchemyError("finance tables unavailable")

    monkeypatch.setattr(ReportService, "_compute_summary", broken)
    today = utcnow().date()

    summary = await ReportService(db).financial_summary(org, today, today)

    assert summary.metadata.is_fallback is True
    assert summary.metadata.orders_available is False
    assert summary.currency == "CHF"
    assert summary.total_revenue_cents == 0


async def test_booking_analytics(db, org, schedule, customer, other_customer):
    occurrence = await schedule()
    registrations = RegistrationService(db)
    attending = await registrations.book(org.id, occurrence.id, customer.id, payment_method=CASH)
    await registrations.book(org.id, occurrence.id, other_customer.id, payment_method=CASH)
    await registrations.check_in(org.id, attending.id)
    later = await schedule(days_ahead=5)
    leaving = await registrations.book(org.id, later.id, customer.id, payment_method=CASH)
    await registrations.cancel(org.id, leaving.id)

    analytics = await ReportService(db).booking_analytics(org.id, 7)

    assert analytics.total_bookings == 3
    assert (analytics.confirmed, analytics.attended, analytics.cancelled) == (1, 1, 1)
    assert analytics.attendance_rate == 50.0
    assert analytics.cancellation_rate == 33.3
    assert len(analytics.daily_bookings) == 7
    assert analytics.daily_bookings[-1] == {"date": utcnow().date().isoformat(), "count": 3}
    assert [(c.category, c.count) for c in analytics.by_category] == [("vinyasa", 3)]


async def test_booking_analytics_only_supports_fixed_periods(db, org):
    with pytest.raises(ValidationError):
        await ReportService(db).booking_analytics(org.id, 14)
