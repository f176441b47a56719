"""
Instructor earnings per pay period.
"""

import enum
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Date, ForeignKey, Integer, JSON, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, UTCDateTime, str_enum


class EarningsStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class InstructorEarnings(OrgScoped, Base):
    __tablename__ = "instructor_earnings"

    instructor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    total_classes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    base_earnings_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bonus_earnings_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    adjustments_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deductions_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    gross_earnings_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    payment_status: Mapped[EarningsStatus] = mapped_column(
        str_enum(EarningsStatus), default=EarningsStatus.PENDING, nullable=False, index=True
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    calculated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "org_id", "instructor_id", "period_start", "period_end",
            name="uq_instructor_earnings_period"
        ),
    )
