"""
Refund service: returns money through the payment method it came in with.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheInvalidator
from ..models.order import OrderStatus
from ..models.organization import Organization
from ..models.payment import CAPTURED_STATUSES, Payment, PaymentMethod, PaymentStatus, Refund, RefundStatus
from ..utils.clock import utcnow
from ..utils.exceptions import RefundAmountError, ResourceNotFoundError, ValidationError
from ..utils.logging_config import log_business_event
from ..utils.money import generate_refund_number
from .order_service import OrderService
from .payment_providers import StripeClient, TwintSandbox

logger = logging.getLogger(__name__)


class RefundService:
    """Service class for refunds."""

    def __init__(self, db: AsyncSession, stripe: Optional[StripeClient] = None, twint: Optional[TwintSandbox] = None):
        self.db = db
        self.orders = OrderService(db)
        self.stripe = stripe or StripeClient()
        self.twint = twint or TwintSandbox()

    async def process_refund(
        self,
        org: Organization,
        order_id: UUID,
        amount_cents: int,
        reason: str,
        payment_id: Optional[UUID] = None,
        reason_code: Optional[str] = None,
        notes: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> Refund:
        """
        Refund part or all of an order.

        Without ``payment_id`` the most recent captured payment that can
        cover the amount is used.

        Raises:
            RefundAmountError: Amount exceeds what the order or payment can refund
        """
        order = await self.orders.lock_order(org.id, order_id)
        if amount_cents <= 0 or amount_cents > order.refundable_cents:
            raise RefundAmountError(amount_cents, order.refundable_cents)

        payment = await self._pick_payment(org.id, order.id, amount_cents, payment_id)

        refund = Refund(
            org_id=org.id,
            order_id=order.id,
            payment_id=payment.id,
            refund_number=generate_refund_number(),
            amount_cents=amount_cents,
            currency=order.currency,
            reason=reason,
            reason_code=reason_code,
            status=RefundStatus.PROCESSING,
            initiated_by=initiated_by,
            notes=notes,
        )
        self.db.add(refund)
        await self.db.flush()

        refund.provider_refund_id = await self._return_funds(payment, order, refund, initiated_by)
        refund.status = RefundStatus.COMPLETED
        refund.processed_at = utcnow()

        payment.refunded_cents += amount_cents
        if payment.refunded_cents >= payment.captured_cents:
            payment.status = PaymentStatus.REFUNDED
        else:
            payment.status = PaymentStatus.PARTIALLY_REFUNDED

        order.refunded_cents += amount_cents
        if order.refunded_cents >= order.total_cents:
            order.status = OrderStatus.REFUNDED

        await self.db.flush()
        await CacheInvalidator.invalidate_org_reports(str(org.id))

        log_business_event(
            "refund_processed",
            {
                "refund_id": str(refund.id),
                "refund_number": refund.refund_number,
                "order_id": str(order.id),
                "payment_id": str(payment.id),
                "method": payment.method.value,
                "amount_cents": amount_cents,
            },
            str(initiated_by) if initiated_by else None
        )
        return refund

    async def list_refunds(
        self,
        org_id: UUID,
        order_id: Optional[UUID] = None,
        status: Optional[RefundStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Refund], int]:
        query = select(Refund).where(Refund.org_id == org_id)
        if order_id:
            query = query.where(Refund.order_id == order_id)
        if status:
            query = query.where(Refund.status == status)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(query.order_by(Refund.created_at.desc()).limit(limit).offset(offset))
        return list(result.scalars().all()), total or 0

    async def _pick_payment(
        self,
        org_id: UUID,
        order_id: UUID,
        amount_cents: int,
        payment_id: Optional[UUID]
    ) -> Payment:
        if payment_id:
            result = await self.db.execute(
                select(Payment)
                .where(Payment.id == payment_id, Payment.org_id == org_id, Payment.order_id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            payment = result.scalar_one_or_none()
            if payment is None:
                raise ResourceNotFoundError("payment", payment_id)
            if payment.status not in CAPTURED_STATUSES or amount_cents > payment.refundable_cents:
                raise RefundAmountError(amount_cents, payment.refundable_cents if payment.status in CAPTURED_STATUSES else 0)
            return payment

        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.org_id == org_id,
                Payment.order_id == order_id,
                Payment.status.in_(CAPTURED_STATUSES),
            )
            .order_by(Payment.captured_at.desc(), Payment.created_at.desc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        for payment in result.scalars().all():
            if payment.refundable_cents >= amount_cents:
                return payment
        raise RefundAmountError(amount_cents, 0)

    async def _return_funds(self, payment: Payment, order, refund: Refund, initiated_by: Optional[UUID]) -> Optional[str]:
        """Send the money back; returns the provider's refund id where there is one."""
        method = payment.method

        if method == PaymentMethod.WALLET:
            from .wallet_service import WalletService

            if order.customer_id is None:
                raise ValidationError("Wallet refund needs an order with a customer")
            wallets = WalletService(self.db)
            wallet = await wallets.get_or_create_wallet(order.org_id, order.customer_id)
            _, entry = await wallets.refund_to_wallet(
                order.org_id,
                wallet.id,
                amount_cents=refund.amount_cents,
                reference_id=str(refund.id),
                description=f"Refund {refund.refund_number}",
                initiated_by=initiated_by,
            )
            return str(entry.id)

        if method == PaymentMethod.GIFT_CARD:
            from .gift_card_service import GiftCardService

            card = await GiftCardService(self.db).restore(order.org_id, payment.provider_payment_id, refund.amount_cents)
            return card.code

        if method == PaymentMethod.CARD:
            response = await self.stripe.create_refund(
                payment.provider_intent_id,
                refund.amount_cents,
                idempotency_key=f"refund-{refund.id}",
            )
            return response.get("id")

        if method == PaymentMethod.TWINT:
            return self.twint.create_refund(payment.provider_payment_id, refund.amount_cents)

        # cash, bank transfer and QR-bill refunds are paid out by hand
        return None
