"""
Invoice service: numbered invoices with Swiss QR-bill payment parts.
"""

import logging
from collections import OrderedDict
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.invoice import Invoice, InvoiceStatus, TaxMode
from ..models.order import Order, OrderStatus
from ..models.organization import Organization
from ..utils.clock import utcnow
from ..utils.exceptions import InvalidStateError, ResourceNotFoundError, ValidationError
from ..utils.logging_config import log_business_event
from ..utils.qr_bill import (
    REFERENCE_NONE,
    REFERENCE_QRR,
    REFERENCE_SCOR,
    QRBill,
    QRBillAddress,
    build_creditor_reference,
    build_qr_reference,
    is_qr_iban,
)

logger = logging.getLogger(__name__)


class InvoiceService:
    """Service class for invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def generate_invoice(
        self,
        org: Organization,
        order_id: UUID,
        due_days: int = 30,
        notes: Optional[str] = None
    ) -> Invoice:
        """
        Issue the invoice for an order.

        The number is ``INV-<year>-<6 digit sequence>``, drawn from the
        organization's counter under a row lock. The payment reference is a
        QRR for QR-IBANs, a creditor reference (SCOR) for plain IBANs and
        none when the organization has no IBAN.

        Returns:
            The new invoice, or the order's existing non-cancelled one
        """
        order = await self.db.get(Order, order_id)
        if order is None or order.org_id != org.id:
            raise ResourceNotFoundError("order", order_id)
        if order.status == OrderStatus.CANCELLED:
            raise InvalidStateError("order", order.id, order.status.value, ["pending", "processing", "completed"])

        existing = await self.find_for_order(org.id, order.id)
        if existing:
            return existing

        locked_org = await self._lock_org(org.id)
        locked_org.invoice_sequence += 1
        sequence = locked_org.invoice_sequence

        today = utcnow().date()
        invoice_number = f"INV-{today.year}-{sequence:06d}"
        reference_type, reference = self._reference_for(locked_org, invoice_number, sequence)

        invoice = Invoice(
            org_id=org.id,
            order_id=order.id,
            customer_id=order.customer_id,
            invoice_number=invoice_number,
            sequence=sequence,
            invoice_date=today,
            due_date=today + timedelta(days=due_days),
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_address=order.billing_address,
            subtotal_cents=order.subtotal_cents,
            tax_total_cents=order.tax_total_cents,
            total_cents=order.total_cents,
            currency=order.currency,
            tax_mode=self._tax_mode(order),
            tax_breakdown=self._tax_breakdown(order),
            qr_reference_type=reference_type,
            qr_reference=reference or None,
            status=InvoiceStatus.DRAFT,
            notes=notes,
        )
        self.db.add(invoice)
        await self.db.flush()

        log_business_event(
            "invoice_generated",
            {"invoice_id": str(invoice.id), "invoice_number": invoice_number, "total_cents": invoice.total_cents}
        )
        return invoice

    async def get_invoice(self, org_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = await self.db.get(Invoice, invoice_id)
        if invoice is None or invoice.org_id != org_id:
            raise ResourceNotFoundError("invoice", invoice_id)
        return invoice

    async def find_for_order(self, org_id: UUID, order_id: UUID) -> Optional[Invoice]:
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.org_id == org_id,
                Invoice.order_id == order_id,
                Invoice.status != InvoiceStatus.CANCELLED,
            )
            .order_by(Invoice.sequence.desc())
        )
        return result.scalars().first()

    async def list_invoices(
        self,
        org_id: UUID,
        customer_id: Optional[UUID] = None,
        status: Optional[InvoiceStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Invoice], int]:
        query = select(Invoice).where(Invoice.org_id == org_id)
        if customer_id:
            query = query.where(Invoice.customer_id == customer_id)
        if status:
            query = query.where(Invoice.status == status)
        if date_from:
            query = query.where(Invoice.invoice_date >= date_from)
        if date_to:
            query = query.where(Invoice.invoice_date <= date_to)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(query.order_by(Invoice.sequence.desc()).limit(limit).offset(offset))
        return list(result.scalars().all()), total or 0

    async def send_invoice(self, org_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = await self.get_invoice(org_id, invoice_id)
        self._require_status(invoice, (InvoiceStatus.DRAFT,))

        invoice.status = InvoiceStatus.SENT
        invoice.sent_at = utcnow()
        await self.db.flush()
        logger.info(f"Invoice {invoice.invoice_number} sent")
        return invoice

    async def mark_paid(self, org_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = await self.get_invoice(org_id, invoice_id)
        self._require_status(invoice, (InvoiceStatus.SENT, InvoiceStatus.OVERDUE))
        return await self._set_paid(invoice)

    async def mark_paid_for_order(self, org_id: UUID, order_id: UUID) -> Optional[Invoice]:
        """Settle the order's open invoice after the order was paid some other way."""
        invoice = await self.find_for_order(org_id, order_id)
        if invoice is None or invoice.status == InvoiceStatus.PAID:
            return invoice
        return await self._set_paid(invoice)

    async def cancel_invoice(self, org_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = await self.get_invoice(org_id, invoice_id)
        self._require_status(invoice, (InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE))

        invoice.status = InvoiceStatus.CANCELLED
        await self.db.flush()
        logger.info(f"Invoice {invoice.invoice_number} cancelled")
        return invoice

    async def mark_overdue_invoices(self, today: Optional[date] = None) -> int:
        """Flag sent invoices whose due date has passed. Returns the count."""
        today = today or utcnow().date()
        result = await self.db.execute(
            select(Invoice).where(Invoice.status == InvoiceStatus.SENT, Invoice.due_date < today)
        )
        invoices = list(result.scalars().all())
        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE

        await self.db.flush()
        if invoices:
            logger.info(f"Marked {len(invoices)} invoices overdue")
        return len(invoices)

    def build_qr_bill(self, org: Organization, invoice: Invoice) -> QRBill:
        """
        Assemble the QR-bill for an invoice from the organization's creditor data.

        Raises:
            ValidationError: No IBAN on the organization, or the bill data is invalid
        """
        if not org.iban:
            raise ValidationError(
                "The organization has no IBAN; QR-bills cannot be issued",
                field_errors={"iban": ["required for QR-bills"]}
            )

        creditor = QRBillAddress(
            name=org.name,
            street=org.street or "",
            building_number=org.building_number or "",
            postal_code=org.postal_code or "",
            town=org.city or "",
            country=org.country,
        )

        debtor = None
        address = invoice.customer_address or {}
        if address.get("postal_code") and address.get("town"):
            debtor = QRBillAddress(
                name=address.get("name") or invoice.customer_name or "",
                street=address.get("street") or "",
                building_number=address.get("building_number") or "",
                postal_code=address["postal_code"],
                town=address["town"],
                country=address.get("country") or "CH",
            )

        bill = QRBill(
            account=org.iban,
            creditor=creditor,
            amount_cents=invoice.total_cents or None,
            currency=invoice.currency,
            debtor=debtor,
            reference_type=invoice.qr_reference_type,
            reference=invoice.qr_reference or "",
            message=f"Invoice {invoice.invoice_number}",
        )
        bill.validate()
        return bill

    # Internals

    async def _set_paid(self, invoice: Invoice) -> Invoice:
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = utcnow()
        await self.db.flush()
        log_business_event("invoice_paid", {"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number})
        return invoice

    async def _lock_org(self, org_id: UUID) -> Organization:
        result = await self.db.execute(
            select(Organization)
            .where(Organization.id == org_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    def _reference_for(self, org: Organization, invoice_number: str, sequence: int) -> Tuple[str, str]:
        if not org.iban:
            return REFERENCE_NONE, ""
        if is_qr_iban(org.iban):
            return REFERENCE_QRR, build_qr_reference(org.customer_number, sequence)
        return REFERENCE_SCOR, build_creditor_reference(invoice_number)

    def _tax_mode(self, order: Order) -> TaxMode:
        if all(item.tax_inclusive for item in order.items):
            return TaxMode.INCLUSIVE
        return TaxMode.EXCLUSIVE

    def _tax_breakdown(self, order: Order) -> List[dict]:
        groups = OrderedDict()
        for item in order.items:
            rate = Decimal(str(item.tax_rate))
            group = groups.setdefault(rate, {"basis_cents": 0, "tax_cents": 0})
            group["basis_cents"] += item.net_cents
            group["tax_cents"] += item.tax_amount_cents
        return [
            {"rate": float(rate), "basis_cents": group["basis_cents"], "tax_cents": group["tax_cents"]}
            for rate, group in sorted(groups.items(), reverse=True)
        ]

    def _require_status(self, invoice: Invoice, allowed) -> None:
        if invoice.status not in allowed:
            raise InvalidStateError(
                "invoice", invoice.invoice_number, invoice.status.value, [s.value for s in allowed]
            )
