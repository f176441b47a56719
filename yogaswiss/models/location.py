"""
Studio locations.
"""

import enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, str_enum


class LocationKind(str, enum.Enum):
    STUDIO = "studio"
    OUTDOOR = "outdoor"
    ONLINE = "online"


class Location(OrgScoped, Base):
    """A room, park or online space where classes take place."""

    __tablename__ = "locations"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[LocationKind] = mapped_column(
        str_enum(LocationKind), default=LocationKind.STUDIO, nullable=False
    )
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    street: Mapped[Optional[str]] = mapped_column(String(70), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(35), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity > 0", name="ck_locations_capacity_positive"),
    )
