"""
Organization (tenant) and membership models.
"""

import enum
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, str_enum


class OrgRole(str, enum.Enum):
    OWNER = "owner"
    MANAGER = "manager"
    FRONT_DESK = "front_desk"
    INSTRUCTOR = "instructor"
    ACCOUNTANT = "accountant"
    MARKETER = "marketer"


class MemberStatus(str, enum.Enum):
    ACTIVE = "active"
    INVITED = "invited"
    DISABLED = "disabled"


class Permission(str, enum.Enum):
    SCHEDULE = "schedule"
    CUSTOMERS = "customers"
    FINANCE = "finance"
    MARKETING = "marketing"
    SETTINGS = "settings"
    ANALYTICS = "analytics"
    WALLET_MANAGEMENT = "wallet_management"
    USER_MANAGEMENT = "user_management"


ROLE_PERMISSIONS: Dict[OrgRole, frozenset] = {
    OrgRole.OWNER: frozenset(Permission),
    OrgRole.MANAGER: frozenset(Permission) - {Permission.SETTINGS, Permission.USER_MANAGEMENT},
    OrgRole.FRONT_DESK: frozenset({Permission.SCHEDULE, Permission.CUSTOMERS}),
    OrgRole.INSTRUCTOR: frozenset({Permission.SCHEDULE}),
    OrgRole.ACCOUNTANT: frozenset({Permission.FINANCE, Permission.ANALYTICS, Permission.WALLET_MANAGEMENT}),
    OrgRole.MARKETER: frozenset({Permission.CUSTOMERS, Permission.MARKETING, Permission.ANALYTICS}),
}


def role_has_permission(role: OrgRole, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


class Organization(Base):
    """A studio business. Every other record belongs to exactly one organization."""

    __tablename__ = "organizations"

    slug: Mapped[str] = mapped_column(String(63), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("7.7"), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="Europe/Zurich", nullable=False)
    cancellation_window_hours: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    # QR-bill creditor data
    iban: Mapped[Optional[str]] = mapped_column(String(34), nullable=True)
    street: Mapped[Optional[str]] = mapped_column(String(70), nullable=True)
    building_number: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(35), nullable=True)
    country: Mapped[str] = mapped_column(String(2), default="CH", nullable=False)
    customer_number: Mapped[str] = mapped_column(String(10), default="", nullable=False)

    # Per-org document counters, incremented under a row lock
    invoice_sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    z_report_sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    settings: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("vat_rate >= 0 AND vat_rate < 100", name="ck_organizations_vat_rate"),
        CheckConstraint("cancellation_window_hours >= 0", name="ck_organizations_cancel_window"),
    )


class OrgMember(OrgScoped, Base):
    """A user's role inside one organization."""

    __tablename__ = "org_members"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role: Mapped[OrgRole] = mapped_column(str_enum(OrgRole), nullable=False)
    status: Mapped[MemberStatus] = mapped_column(
        str_enum(MemberStatus), default=MemberStatus.ACTIVE, nullable=False
    )
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Instructor pay rules
    rate_per_class_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rate_per_student_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_org_members_org_user"),
        CheckConstraint("rate_per_class_cents >= 0", name="ck_org_members_class_rate"),
        CheckConstraint("rate_per_student_cents >= 0", name="ck_org_members_student_rate"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    def has_permission(self, permission: Permission) -> bool:
        return self.is_active and role_has_permission(self.role, permission)
