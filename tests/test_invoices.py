"""Tests for invoice numbering, references, QR-bills and the invoice lifecycle."""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import STUDIO_QR_IBAN
from yogaswiss.models.invoice import InvoiceStatus, TaxMode
from yogaswiss.models.order import OrderItemType
from yogaswiss.schemas.order import OrderCreate, OrderItemCreate
from yogaswiss.services.invoice_service import InvoiceService
from yogaswiss.services.order_service import OrderService
from yogaswiss.utils.clock import utcnow
from yogaswiss.utils.exceptions import InvalidStateError, ValidationError
from yogaswiss.utils.qr_bill import validate_creditor_reference, validate_qr_reference


async def order_for(db, org, customer, *items):
    items = items or (OrderItemCreate(item_type=OrderItemType.PASS, name="10er Abo", unit_price_cents=20000),)
    return await OrderService(db).create_order(org, OrderCreate(customer_id=customer.id, items=list(items)))


async def test_invoice_numbers_follow_the_org_sequence(db, org, customer):
    service = InvoiceService(db)
    year = utcnow().year

    first = await service.generate_invoice(org, (await order_for(db, org, customer)).id)
    second = await service.generate_invoice(org, (await order_for(db, org, customer)).id, due_days=10)

    assert first.invoice_number == f"INV-{year}-000001"
    assert second.invoice_number == f"INV-{year}-000002"
    assert second.due_date == second.invoice_date + timedelta(days=10)
    assert first.status == InvoiceStatus.DRAFT


async def test_an_order_keeps_its_invoice(db, org, customer):
    service = InvoiceService(db)
    order = await order_for(db, org, customer)

    first = await service.generate_invoice(org, order.id)
    again = await service.generate_invoice(org, order.id)

    assert again.id == first.id


async def test_plain_iban_gets_a_creditor_reference(db, org, customer):
    invoice = await InvoiceService(db).generate_invoice(org, (await order_for(db, org, customer)).id)

    assert invoice.qr_reference_type == "SCOR"
    assert invoice.qr_reference.startswith("RF")
    assert validate_creditor_reference(invoice.qr_reference)


async def test_qr_iban_gets_a_qr_reference(db, org, customer):
    org.iban = STUDIO_QR_IBAN
    await db.flush()

    invoice = await InvoiceService(db).generate_invoice(org, (await order_for(db, org, customer)).id)

    assert invoice.qr_reference_type == "QRR"
    assert len(invoice.qr_reference) == 27
    assert validate_qr_reference(invoice.qr_reference)


async def test_without_iban_no_qr_bill_can_be_built(db, org, customer):
    org.iban = None
    await db.flush()
    service = InvoiceService(db)

    invoice = await service.generate_invoice(org, (await order_for(db, org, customer)).id)

    assert invoice.qr_reference_type == "NON"
    assert invoice.qr_reference is None
    with pytest.raises(ValidationError):
        service.build_qr_bill(org, invoice)


async def test_qr_bill_carries_creditor_debtor_and_amount(db, org, customer):
    service = InvoiceService(db)
    invoice = await service.generate_invoice(org, (await order_for(db, org, customer)).id)

    lines = service.build_qr_bill(org, invoice).payload().split("\n")

    assert lines[3] == "CH9300762011623852957"
    assert lines[5] == "Zen Studio Zürich"
    assert lines[18:20] == ["200.00", "CHF"]
    assert lines[21] == "Lena Keller"
    assert lines[24:26] == ["8002", "Zürich"]
    assert lines[27] == "SCOR"
    assert lines[29] == f"Invoice {invoice.invoice_number}"


async def test_tax_breakdown_groups_lines_by_rate(db, org, customer):
    order = await order_for(
        db, org, customer,
        OrderItemCreate(item_type=OrderItemType.REGISTRATION, name="Drop-in", unit_price_cents=10000),
        OrderItemCreate(
            item_type=OrderItemType.RETAIL,
            name="Tea",
            unit_price_cents=1000,
            tax_rate=Decimal("2.6"),
            tax_inclusive=False,
        ),
    )

    invoice = await InvoiceService(db).generate_invoice(org, order.id)

    assert invoice.tax_mode == TaxMode.EXCLUSIVE
    assert invoice.tax_breakdown == [
        {"rate": 8.1, "basis_cents": 9251, "tax_cents": 749},
        {"rate": 2.6, "basis_cents": 1000, "tax_cents": 26},
    ]
    assert invoice.total_cents == order.total_cents == 11026


async def test_lifecycle(db, org, customer):
    service = InvoiceService(db)
    invoice = await service.generate_invoice(org, (await order_for(db, org, customer)).id)

    with pytest.raises(InvalidStateError):
        await service.mark_paid(org.id, invoice.id)

    invoice = await service.send_invoice(org.id, invoice.id)
    assert invoice.status == InvoiceStatus.SENT
    assert invoice.sent_at is not None

    assert await service.mark_overdue_invoices(today=invoice.due_date) == 0
    assert await service.mark_overdue_invoices(today=invoice.due_date + timedelta(days=1)) == 1
    assert invoice.status == InvoiceStatus.OVERDUE

    invoice = await service.mark_paid(org.id, invoice.id)
    assert invoice.status == InvoiceStatus.PAID
    with pytest.raises(InvalidStateError):
        await service.cancel_invoice(org.id, invoice.id)


async def test_cancelled_invoice_is_replaced(db, org, customer):
    service = InvoiceService(db)
    order = await order_for(db, org, customer)
    first = await service.generate_invoice(org, order.id)

    await service.cancel_invoice(org.id, first.id)
    replacement = await service.generate_invoice(org, order.id)

    assert replacement.id != first.id
    assert replacement.sequence == first.sequence + 1


async def test_list_invoices_by_status(db, org, customer):
    service = InvoiceService(db)
    sent = await service.generate_invoice(org, (await order_for(db, org, customer)).id)
    await service.generate_invoice(org, (await order_for(db, org, customer)).id)
    await service.send_invoice(org.id, sent.id)

    invoices, total = await service.list_invoices(org.id, status=InvoiceStatus.SENT)

    assert total == 1
    assert invoices[0].id == sent.id
