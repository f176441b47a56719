"""
Invoice and QR-bill endpoints.
"""

from dataclasses import asdict
from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.invoice import InvoiceStatus
from ..models.organization import Permission
from ..schemas.invoice import InvoiceGenerate, InvoiceListResponse, InvoiceResponse, QRBillResponse
from ..services.invoice_service import InvoiceService
from ..utils.dependencies import OrgContext, require_permission
from ..utils.money import format_amount
from ..utils.qr_bill import REFERENCE_QRR, format_qr_reference

router = APIRouter(prefix="/invoices", tags=["invoices"])

can_manage_finance = require_permission(Permission.FINANCE)


def _formatted_reference(reference_type: str, reference: str) -> str:
    if not reference:
        return ""
    if reference_type == REFERENCE_QRR:
        return format_qr_reference(reference)
    return " ".join(reference[i:i + 4] for i in range(0, len(reference), 4))


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    customer_id: Optional[UUID] = None,
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    invoices, total = await InvoiceService(db).list_invoices(
        ctx.org_id,
        customer_id=customer_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return InvoiceListResponse(invoices=[InvoiceResponse.model_validate(i) for i in invoices], total=total)


@router.post("/generate", response_model=InvoiceResponse)
async def generate_invoice(
    data: InvoiceGenerate,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Issue the invoice for an order, or return the one already issued.

    The invoice number comes from the organization's counter and carries a
    QR reference when the organization banks with a QR-IBAN.
    """
    invoice = await InvoiceService(db).generate_invoice(ctx.org, data.order_id, due_days=data.due_days, notes=data.notes)
    return InvoiceResponse.model_validate(invoice)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: UUID,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    invoice = await InvoiceService(db).get_invoice(ctx.org_id, invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(
    invoice_id: UUID,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    invoice = await InvoiceService(db).send_invoice(ctx.org_id, invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceResponse)
async def mark_invoice_paid(
    invoice_id: UUID,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    invoice = await InvoiceService(db).mark_paid(ctx.org_id, invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: UUID,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    invoice = await InvoiceService(db).cancel_invoice(ctx.org_id, invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.get("/{invoice_id}/qr-bill", response_model=QRBillResponse)
async def get_qr_bill(
    invoice_id: UUID,
    ctx: OrgContext = Depends(can_manage_finance),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Swiss QR-bill payment part for an invoice.

    Raises:
        ValidationError: The organization has no IBAN or the bill data is invalid
    """
    service = InvoiceService(db)
    invoice = await service.get_invoice(ctx.org_id, invoice_id)
    bill = service.build_qr_bill(ctx.org, invoice)
    return QRBillResponse(
        invoice_id=invoice.id,
        payload=bill.payload(),
        account=bill.account,
        creditor=asdict(bill.creditor),
        debtor=asdict(bill.debtor) if bill.debtor else None,
        amount=format_amount(bill.amount_cents) if bill.amount_cents is not None else None,
        currency=bill.currency,
        reference_type=bill.reference_type,
        reference=bill.reference,
        formatted_reference=_formatted_reference(bill.reference_type, bill.reference),
        message=bill.message,
    )
