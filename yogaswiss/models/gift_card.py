"""
Gift card model.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, UTCDateTime, str_enum


class GiftCardStatus(str, enum.Enum):
    ACTIVE = "active"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class GiftCard(OrgScoped, Base):
    """Prepaid stored value identified by a printable code."""

    __tablename__ = "gift_cards"

    code: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    initial_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_balance_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)

    purchaser_customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True
    )
    recipient_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    recipient_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[GiftCardStatus] = mapped_column(
        str_enum(GiftCardStatus), default=GiftCardStatus.ACTIVE, nullable=False, index=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    first_use_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_use_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("org_id", "code", name="uq_gift_cards_org_code"),
        CheckConstraint("initial_amount_cents > 0", name="ck_gift_cards_initial_positive"),
        CheckConstraint(
            "current_balance_cents >= 0 AND current_balance_cents <= initial_amount_cents",
            name="ck_gift_cards_balance_within_initial"
        ),
    )
