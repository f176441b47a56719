"""
Registration model: a customer's spot (or waitlist entry) in a class occurrence.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, UTCDateTime, str_enum


class RegistrationStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"
    ATTENDED = "attended"
    NO_SHOW = "no_show"


class RegistrationPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    WAIVED = "waived"


class RegistrationPaymentMethod(str, enum.Enum):
    CREDITS = "credits"
    WALLET = "wallet"
    CARD = "card"
    TWINT = "twint"
    INVOICE = "invoice"
    CASH = "cash"
    NONE = "none"


ACTIVE_REGISTRATION_STATUSES = (RegistrationStatus.CONFIRMED, RegistrationStatus.WAITLISTED)


class Registration(OrgScoped, Base):
    """Booking of one customer into one class occurrence."""

    __tablename__ = "registrations"

    occurrence_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("class_occurrences.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )

    status: Mapped[RegistrationStatus] = mapped_column(
        str_enum(RegistrationStatus), nullable=False, index=True
    )
    waitlist_position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    payment_status: Mapped[RegistrationPaymentStatus] = mapped_column(
        str_enum(RegistrationPaymentStatus),
        default=RegistrationPaymentStatus.PENDING,
        nullable=False
    )
    payment_method: Mapped[RegistrationPaymentMethod] = mapped_column(
        str_enum(RegistrationPaymentMethod),
        default=RegistrationPaymentMethod.NONE,
        nullable=False
    )
    credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amount_paid_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    wallet_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    booked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    check_in_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("org_id", "idempotency_key", name="uq_registrations_idempotency_key"),
        CheckConstraint(
            "waitlist_position IS NULL OR waitlist_position > 0",
            name="ck_registrations_waitlist_position_positive"
        ),
        CheckConstraint("credits_used >= 0", name="ck_registrations_credits_non_negative"),
        CheckConstraint("amount_paid_cents >= 0", name="ck_registrations_amount_non_negative"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_REGISTRATION_STATUSES
