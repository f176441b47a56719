"""
Class templates, recurring series and dated class occurrences.
"""

import enum
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, UTCDateTime, str_enum


class ClassType(str, enum.Enum):
    CLASS = "class"
    WORKSHOP = "workshop"
    COURSE = "course"
    PRIVATE = "private"


class OccurrenceStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ClassTemplate(OrgScoped, Base):
    """Reusable definition of a class offering (e.g. "Vinyasa Flow 60")."""

    __tablename__ = "class_templates"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    class_type: Mapped[ClassType] = mapped_column(
        str_enum(ClassType), default=ClassType.CLASS, nullable=False
    )
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    default_capacity: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credits_required: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    vat_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_class_templates_duration_positive"),
        CheckConstraint("default_capacity > 0", name="ck_class_templates_capacity_positive"),
        CheckConstraint("price_cents >= 0", name="ck_class_templates_price_non_negative"),
        CheckConstraint("credits_required >= 0", name="ck_class_templates_credits_non_negative"),
    )


class RecurringSeries(OrgScoped, Base):
    """Weekly pattern that materializes into occurrences."""

    __tablename__ = "recurring_series"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("class_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    instructor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    weekdays: Mapped[List[int]] = mapped_column(JSON, nullable=False)
    start_time_of_day: Mapped[time] = mapped_column(Time, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ClassOccurrence(OrgScoped, Base):
    """One dated instance of a class that customers register for."""

    __tablename__ = "class_occurrences"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("class_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    series_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("recurring_series.id", ondelete="SET NULL"), nullable=True, index=True
    )
    instructor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credits_required: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    status: Mapped[OccurrenceStatus] = mapped_column(
        str_enum(OccurrenceStatus), default=OccurrenceStatus.SCHEDULED, nullable=False, index=True
    )
    booked_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    waitlist_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_class_occurrences_capacity_positive"),
        CheckConstraint(
            "booked_count >= 0 AND booked_count <= capacity",
            name="ck_class_occurrences_booked_within_capacity"
        ),
        CheckConstraint("waitlist_count >= 0", name="ck_class_occurrences_waitlist_non_negative"),
        CheckConstraint("end_time > start_time", name="ck_class_occurrences_time_order"),
        UniqueConstraint("series_id", "start_time", name="uq_class_occurrences_series_start"),
    )

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.booked_count)

    @property
    def is_full(self) -> bool:
        return self.booked_count >= self.capacity
