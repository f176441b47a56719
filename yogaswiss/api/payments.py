"""
Payment endpoints, including the Stripe webhook.
"""

import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.organization import Permission
from ..models.payment import PaymentMethod, PaymentStatus
from ..schemas.order import (
    CapturePaymentRequest,
    OrderResponse,
    PaymentListResponse,
    PaymentMethodsResponse,
    PaymentResponse,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
    TwintConfirmRequest,
)
from ..services.order_service import OrderService
from ..services.payment_providers import StripeClient, TwintSandbox
from ..services.payment_service import PaymentService
from ..utils.dependencies import (
    OrgContext,
    get_org_context,
    get_stripe_client,
    get_twint_sandbox,
    require_permission,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])

can_manage_finance = require_permission(Permission.FINANCE)


def _service(
    db: AsyncSession = Depends(get_db),
    stripe: StripeClient = Depends(get_stripe_client),
    twint: TwintSandbox = Depends(get_twint_sandbox)
) -> PaymentService:
    return PaymentService(db, stripe=stripe, twint=twint)


@router.get("", response_model=PaymentListResponse)
async def list_payments(
    order_id: Optional[UUID] = None,
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    method: Optional[PaymentMethod] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(can_manage_finance),
    service: PaymentService = Depends(_service)
) -> Any:
    payments, total = await service.list_payments(
        ctx.org_id, order_id=order_id, status=status_filter, method=method, limit=limit, offset=offset
    )
    return PaymentListResponse(payments=[PaymentResponse.model_validate(p) for p in payments], total=total)


@router.get("/methods", response_model=PaymentMethodsResponse)
async def get_payment_methods(
    ctx: OrgContext = Depends(get_org_context),
    service: PaymentService = Depends(_service)
) -> Any:
    """Payment methods the studio accepts, with its currency and VAT rate."""
    return PaymentMethodsResponse(**await service.get_payment_methods(ctx.org))


@router.post("/process", response_model=ProcessPaymentResponse)
async def process_payment(
    data: ProcessPaymentRequest,
    ctx: OrgContext = Depends(can_manage_finance),
    service: PaymentService = Depends(_service),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Take a payment against an order.

    Cash, bank transfer, wallet and gift card payments settle at once. Card
    and TWINT payments return a ``next_action`` and settle later through the
    webhook or the TWINT confirmation; QR-bill payments return the bill.

    Raises:
        PaymentAmountError: Amount exceeds the outstanding balance
        PaymentServiceError: The card provider rejected the request
    """
    payment, next_action = await service.process_payment(
        ctx.org,
        data.order_id,
        data.method,
        data.amount_cents,
        fee_amount_cents=data.fee_amount_cents,
        gift_card_code=data.gift_card_code,
        return_url=data.return_url,
        metadata=data.metadata,
        initiated_by=ctx.user.id,
    )
    order = await OrderService(db).get_order(ctx.org_id, payment.order_id)
    return ProcessPaymentResponse(
        payment=PaymentResponse.model_validate(payment),
        order=OrderResponse.model_validate(order),
        next_action=next_action,
    )


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    service: PaymentService = Depends(_service)
) -> Any:
    """
    Receive Stripe events. Authenticated by the signature header, not a token.

    Raises:
        WebhookSignatureError: Missing, stale or mismatched signature
    """
    payload = await request.body()
    return await service.handle_stripe_webhook(payload, stripe_signature)


@router.post("/{payment_id}/capture", response_model=PaymentResponse)
async def capture_payment(
    payment_id: UUID,
    data: Optional[CapturePaymentRequest] = None,
    ctx: OrgContext = Depends(can_manage_finance),
    service: PaymentService = Depends(_service)
) -> Any:
    payment = await service.capture_payment(ctx.org_id, payment_id, amount_cents=data.amount_cents if data else None)
    return PaymentResponse.model_validate(payment)


@router.post("/{payment_id}/twint/confirm", response_model=PaymentResponse)
async def confirm_twint(
    payment_id: UUID,
    data: Optional[TwintConfirmRequest] = None,
    ctx: OrgContext = Depends(can_manage_finance),
    service: PaymentService = Depends(_service)
) -> Any:
    """Sandbox callback: settle or decline a pending TWINT payment."""
    payment = await service.confirm_twint(ctx.org_id, payment_id, success=data.success if data else True)
    return PaymentResponse.model_validate(payment)
