"""
Invoice and QR-bill schemas.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.invoice import InvoiceStatus, TaxMode


class InvoiceGenerate(BaseModel):
    order_id: UUID
    due_days: int = Field(30, ge=0, le=365)
    notes: Optional[str] = None


class InvoiceResponse(BaseModel):
    id: UUID
    org_id: UUID
    order_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    invoice_number: str
    invoice_date: date
    due_date: date
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    subtotal_cents: int
    tax_total_cents: int
    total_cents: int
    currency: str
    tax_mode: TaxMode
    tax_breakdown: List[Dict[str, Any]]
    qr_reference_type: str
    qr_reference: Optional[str] = None
    status: InvoiceStatus
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceResponse]
    total: int


class QRBillResponse(BaseModel):
    """Swiss Payments Code text plus the fields printed on the payment part."""
    invoice_id: UUID
    payload: str
    account: str
    creditor: Dict[str, Any]
    debtor: Optional[Dict[str, Any]] = None
    amount: Optional[str] = None
    currency: str
    reference_type: str
    reference: str
    formatted_reference: str
    message: str
