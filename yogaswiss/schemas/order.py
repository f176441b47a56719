"""
Order, payment and refund schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from ..models.order import OrderChannel, OrderItemType, OrderStatus
from ..models.payment import PaymentMethod, PaymentStatus, RefundStatus
from .common import ListResponse


class OrderItemCreate(BaseModel):
    item_type: OrderItemType
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    sku: Optional[str] = Field(None, max_length=64)
    quantity: int = Field(1, ge=1)
    unit_price_cents: int = Field(..., ge=0)
    tax_rate: Optional[Decimal] = Field(None, ge=0, lt=100)
    tax_inclusive: bool = True
    occurrence_id: Optional[UUID] = None
    instructor_id: Optional[UUID] = None


class OrderCreate(BaseModel):
    customer_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    channel: OrderChannel = OrderChannel.WEB
    items: List[OrderItemCreate] = Field(default_factory=list)
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_email: Optional[str] = Field(None, max_length=255)
    billing_address: Optional[Dict[str, Any]] = None
    notes: Optional[str] = Field(None, max_length=1000)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class OrderItemResponse(BaseModel):
    id: UUID
    position: int
    item_type: OrderItemType
    name: str
    description: Optional[str] = None
    sku: Optional[str] = None
    quantity: int
    unit_price_cents: int
    total_price_cents: int
    tax_rate: float
    tax_amount_cents: int
    tax_inclusive: bool
    occurrence_id: Optional[UUID] = None
    instructor_id: Optional[UUID] = None

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: UUID
    order_id: UUID
    method: PaymentMethod
    provider: str
    provider_payment_id: Optional[str] = None
    provider_intent_id: Optional[str] = None
    amount_cents: int
    captured_cents: int
    fee_amount_cents: int
    net_amount_cents: int
    refunded_cents: int
    currency: str
    status: PaymentStatus
    authorized_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("extra", "metadata"))
    created_at: datetime

    model_config = {"from_attributes": True}


class RefundResponse(BaseModel):
    id: UUID
    order_id: UUID
    payment_id: UUID
    refund_number: str
    amount_cents: int
    currency: str
    reason: str
    reason_code: Optional[str] = None
    status: RefundStatus
    provider_refund_id: Optional[str] = None
    initiated_by: Optional[UUID] = None
    notes: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: UUID
    org_id: UUID
    customer_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    order_number: str
    channel: OrderChannel
    status: OrderStatus
    currency: str
    subtotal_cents: int
    tax_total_cents: int
    total_cents: int
    paid_cents: int
    refunded_cents: int
    outstanding_cents: int
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("extra", "metadata"))
    items: List[OrderItemResponse] = Field(default_factory=list)
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderDetailResponse(OrderResponse):
    payments: List[PaymentResponse] = Field(default_factory=list)
    refunds: List[RefundResponse] = Field(default_factory=list)


class OrderListResponse(ListResponse):
    orders: List[OrderResponse]


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ProcessPaymentRequest(BaseModel):
    order_id: UUID
    method: PaymentMethod
    amount_cents: int = Field(..., gt=0)
    fee_amount_cents: int = Field(0, ge=0)
    gift_card_code: Optional[str] = None
    return_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProcessPaymentResponse(BaseModel):
    """Payment plus whatever the client needs to finish it (QR URL, client secret, QR-bill)."""
    payment: PaymentResponse
    order: OrderResponse
    next_action: Optional[Dict[str, Any]] = None


class CapturePaymentRequest(BaseModel):
    amount_cents: Optional[int] = Field(None, gt=0)


class TwintConfirmRequest(BaseModel):
    success: bool = True


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]
    total: int


class PaymentMethodsResponse(BaseModel):
    methods: List[str]
    currency: str
    vat_rate: float


class ProcessRefundRequest(BaseModel):
    order_id: UUID
    amount_cents: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=500)
    reason_code: Optional[str] = Field(None, max_length=50)
    payment_id: Optional[UUID] = None
    notes: Optional[str] = Field(None, max_length=1000)


class RefundListResponse(BaseModel):
    refunds: List[RefundResponse]
    total: int
