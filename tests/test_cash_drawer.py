"""Tests for cash drawers and Z reports."""

import pytest

from yogaswiss.models.cash_drawer import CashTransactionType, DrawerStatus
from yogaswiss.schemas.finance import CashTransactionCreate, DrawerOpen
from yogaswiss.services.cash_drawer_service import CashDrawerService
from yogaswiss.utils.exceptions import DrawerClosedError, ValidationError


def cash(transaction_type, amount_cents, **kwargs):
    return CashTransactionCreate(transaction_type=transaction_type, amount_cents=amount_cents, **kwargs)


async def test_day_at_the_front_desk(db, org, owner):
    service = CashDrawerService(db)
    drawer = await service.open_drawer(org.id, DrawerOpen(name="Front desk", opening_float_cents=10000), owner.id)

    drawer, sale = await service.record_transaction(
        org.id, drawer.id, cash(CashTransactionType.SALE, 1234, customer_name="Lena Keller")
    )
    assert (sale.amount_cents, sale.rounding_adjustment_cents) == (1235, 1)

    drawer, refund = await service.record_transaction(org.id, drawer.id, cash(CashTransactionType.REFUND, 1238))
    assert (refund.amount_cents, refund.rounding_adjustment_cents) == (1240, 2)

    await service.record_transaction(org.id, drawer.id, cash(CashTransactionType.PAYOUT, 500, description="flowers"))
    drawer, _ = await service.record_transaction(org.id, drawer.id, cash(CashTransactionType.DEPOSIT, 2000))

    assert drawer.current_balance_cents == 10000 + 1235 - 1240 - 500 + 2000
    assert drawer.total_rounding_cents == -1
    assert drawer.transaction_count == 4

    drawer, report = await service.close_drawer(org.id, drawer.id, counted_cash_cents=11500, closed_by=owner.id)

    assert drawer.status == DrawerStatus.CLOSED
    assert report.z_report_number == "Z-1"
    assert report.expected_cash_cents == 11495
    assert report.variance_cents == 5
    assert report.total_sales_cents == 1235
    assert report.total_refunds_cents == 1240
    assert report.total_payouts_cents == 500
    assert report.total_deposits_cents == 2000


async def test_z_numbers_increase_per_org(db, org):
    service = CashDrawerService(db)
    first = await service.open_drawer(org.id, DrawerOpen(name="Desk A"))
    second = await service.open_drawer(org.id, DrawerOpen(name="Desk B"))

    _, report_a = await service.close_drawer(org.id, first.id, 0)
    _, report_b = await service.close_drawer(org.id, second.id, 0)

    assert (report_a.z_report_number, report_b.z_report_number) == ("Z-1", "Z-2")


async def test_same_drawer_cannot_be_open_twice(db, org):
    service = CashDrawerService(db)
    drawer = await service.open_drawer(org.id, DrawerOpen(name="Front desk"))

    with pytest.raises(ValidationError):
        await service.open_drawer(org.id, DrawerOpen(name="Front desk"))

    await service.close_drawer(org.id, drawer.id, 0)
    reopened = await service.open_drawer(org.id, DrawerOpen(name="Front desk"))
    assert reopened.id != drawer.id


async def test_closed_drawer_rejects_transactions(db, org):
    service = CashDrawerService(db)
    drawer = await service.open_drawer(org.id, DrawerOpen(name="Front desk"))
    await service.close_drawer(org.id, drawer.id, 0)

    with pytest.raises(DrawerClosedError):
        await service.record_transaction(org.id, drawer.id, cash(CashTransactionType.SALE, 1000))
    with pytest.raises(DrawerClosedError):
        await service.close_drawer(org.id, drawer.id, 0)


async def test_drawer_cannot_go_negative(db, org):
    service = CashDrawerService(db)
    drawer = await service.open_drawer(org.id, DrawerOpen(name="Front desk", opening_float_cents=1000))

    with pytest.raises(ValidationError):
        await service.record_transaction(org.id, drawer.id, cash(CashTransactionType.PAYOUT, 1500))


async def test_sale_rounding_to_zero_is_rejected(db, org):
    service = CashDrawerService(db)
    drawer = await service.open_drawer(org.id, DrawerOpen(name="Front desk"))

    with pytest.raises(ValidationError):
        await service.record_transaction(org.id, drawer.id, cash(CashTransactionType.SALE, 2))


async def test_list_open_drawers(db, org):
    service = CashDrawerService(db)
    open_drawer = await service.open_drawer(org.id, DrawerOpen(name="Desk A"))
    closed = await service.open_drawer(org.id, DrawerOpen(name="Desk B"))
    await service.close_drawer(org.id, closed.id, 0)

    drawers = await service.list_drawers(org.id, status=DrawerStatus.OPEN)

    assert [d.id for d in drawers] == [open_drawer.id]
