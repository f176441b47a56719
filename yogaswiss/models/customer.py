"""
Studio customers.
"""

from typing import Optional

from sqlalchemy import Boolean, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped


class Customer(OrgScoped, Base):
    """A client of a studio. Distinct from staff users."""

    __tablename__ = "customers"

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    street: Mapped[Optional[str]] = mapped_column(String(70), nullable=True)
    building_number: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(35), nullable=True)
    country: Mapped[str] = mapped_column(String(2), default="CH", nullable=False)

    marketing_consent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_customers_org_email"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
