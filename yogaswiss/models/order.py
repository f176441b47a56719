"""
Order and order item models.
"""

import enum
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, OrgScoped, str_enum


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderChannel(str, enum.Enum):
    WEB = "web"
    MOBILE = "mobile"
    POS = "pos"
    ADMIN = "admin"
    API = "api"


class OrderItemType(str, enum.Enum):
    REGISTRATION = "registration"
    RETAIL = "retail"
    MEMBERSHIP = "membership"
    PASS = "pass"
    FEE = "fee"
    GIFT_CARD = "gift_card"
    SERVICE = "service"


class Order(OrgScoped, Base):
    """A purchase by a customer. Amounts are integer cents."""

    __tablename__ = "orders"

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    channel: Mapped[OrderChannel] = mapped_column(
        str_enum(OrderChannel), default=OrderChannel.WEB, nullable=False
    )
    status: Mapped[OrderStatus] = mapped_column(
        str_enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True
    )
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)

    subtotal_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tax_total_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    paid_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refunded_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    billing_address: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    extra: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.position",
    )

    __table_args__ = (
        CheckConstraint("total_cents >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint("paid_cents >= 0", name="ck_orders_paid_non_negative"),
        CheckConstraint(
            "refunded_cents >= 0 AND refunded_cents <= paid_cents",
            name="ck_orders_refunded_within_paid"
        ),
    )

    @property
    def outstanding_cents(self) -> int:
        return max(0, self.total_cents - self.paid_cents)

    @property
    def refundable_cents(self) -> int:
        return self.paid_cents - self.refunded_cents


class OrderItem(Base):
    """A line on an order with its own VAT treatment."""

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    item_type: Mapped[OrderItemType] = mapped_column(str_enum(OrderItemType), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    tax_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_inclusive: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    occurrence_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("class_occurrences.id", ondelete="SET NULL"), nullable=True
    )
    instructor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price_cents >= 0", name="ck_order_items_unit_price_non_negative"),
    )

    @property
    def net_cents(self) -> int:
        if self.tax_inclusive:
            return self.total_price_cents - self.tax_amount_cents
        return self.total_price_cents

    @property
    def gross_cents(self) -> int:
        if self.tax_inclusive:
            return self.total_price_cents
        return self.total_price_cents + self.tax_amount_cents
