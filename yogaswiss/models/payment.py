"""
Payment and refund models.
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, UTCDateTime, str_enum


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    TWINT = "twint"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"
    GIFT_CARD = "gift_card"
    QR_BILL = "qr_bill"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    PARTIALLY_CAPTURED = "partially_captured"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


CAPTURED_STATUSES = (
    PaymentStatus.CAPTURED,
    PaymentStatus.PARTIALLY_CAPTURED,
    PaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED,
)


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Payment(OrgScoped, Base):
    """A payment attempt against an order."""

    __tablename__ = "payments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    method: Mapped[PaymentMethod] = mapped_column(str_enum(PaymentMethod), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    provider_intent_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    captured_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fee_amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    net_amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refunded_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        str_enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True
    )
    authorized_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    captured_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    extra: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "captured_cents >= 0 AND captured_cents <= amount_cents",
            name="ck_payments_captured_within_amount"
        ),
        CheckConstraint(
            "refunded_cents >= 0 AND refunded_cents <= captured_cents",
            name="ck_payments_refunded_within_captured"
        ),
        CheckConstraint("fee_amount_cents >= 0", name="ck_payments_fee_non_negative"),
    )

    @property
    def refundable_cents(self) -> int:
        return self.captured_cents - self.refunded_cents


class Refund(OrgScoped, Base):
    """Money returned to a customer through the original payment method."""

    __tablename__ = "refunds"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    refund_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    reason_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[RefundStatus] = mapped_column(
        str_enum(RefundStatus), default=RefundStatus.PENDING, nullable=False
    )
    provider_refund_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    initiated_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_refunds_amount_positive"),
    )
