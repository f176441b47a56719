"""
Invoice model with Swiss QR-bill reference data.
"""

import enum
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Date, ForeignKey, Integer, JSON, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, UTCDateTime, str_enum


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class TaxMode(str, enum.Enum):
    INCLUSIVE = "inclusive"
    EXCLUSIVE = "exclusive"


class Invoice(OrgScoped, Base):
    """Invoice issued for an order, payable through a QR-bill."""

    __tablename__ = "invoices"

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_address: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)
    tax_mode: Mapped[TaxMode] = mapped_column(str_enum(TaxMode), default=TaxMode.INCLUSIVE, nullable=False)
    tax_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    qr_reference_type: Mapped[str] = mapped_column(String(4), default="NON", nullable=False)
    qr_reference: Mapped[Optional[str]] = mapped_column(String(27), nullable=True)

    status: Mapped[InvoiceStatus] = mapped_column(
        str_enum(InvoiceStatus), default=InvoiceStatus.DRAFT, nullable=False, index=True
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("org_id", "invoice_number", name="uq_invoices_org_number"),
    )
