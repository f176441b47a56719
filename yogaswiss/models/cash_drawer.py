"""
Point-of-sale cash drawer sessions and their transactions.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, UTCDateTime, str_enum


class DrawerStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class CashTransactionType(str, enum.Enum):
    SALE = "sale"
    REFUND = "refund"
    PAYOUT = "payout"
    DEPOSIT = "deposit"


class CashDrawer(OrgScoped, Base):
    """One till session from opening float to Z report."""

    __tablename__ = "cash_drawers"

    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    operator_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[DrawerStatus] = mapped_column(
        str_enum(DrawerStatus), default=DrawerStatus.OPEN, nullable=False, index=True
    )

    opening_float_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_sales_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_refunds_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_payouts_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_deposits_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_rounding_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    opened_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    counted_cash_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    variance_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    z_report_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    __table_args__ = (
        CheckConstraint("opening_float_cents >= 0", name="ck_cash_drawers_float_non_negative"),
        CheckConstraint("current_balance_cents >= 0", name="ck_cash_drawers_balance_non_negative"),
    )


class CashTransaction(OrgScoped, Base):
    __tablename__ = "cash_transactions"

    drawer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cash_drawers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    transaction_type: Mapped[CashTransactionType] = mapped_column(
        str_enum(CashTransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    rounding_adjustment_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_cash_transactions_amount_positive"),
    )
