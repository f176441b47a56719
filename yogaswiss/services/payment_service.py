"""
Payment service: collects money for orders through every supported method.

Cash, bank transfer, wallet and gift card payments settle immediately.
Card (Stripe), TWINT and QR-bill payments stay pending until a webhook,
callback or manual capture settles them.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheInvalidator, CacheKeyBuilder, CacheTTL, cache
from ..config import get_settings
from ..models.order import Order, OrderStatus
from ..models.organization import Organization
from ..models.payment import Payment, PaymentMethod, PaymentStatus
from ..models.wallet import LedgerReferenceType
from ..utils.clock import as_utc, utcnow
from ..utils.exceptions import (
    InvalidStateError,
    PaymentAmountError,
    ResourceNotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from ..utils.logging_config import log_business_event, log_security_event
from .order_service import OrderService
from .payment_providers import STRIPE, StripeClient, TwintSandbox, verify_stripe_signature

logger = logging.getLogger(__name__)

IMMEDIATE_METHODS = frozenset({
    PaymentMethod.CASH,
    PaymentMethod.BANK_TRANSFER,
    PaymentMethod.WALLET,
    PaymentMethod.GIFT_CARD,
})

DEFAULT_PAYMENT_METHODS = ["card", "twint", "cash", "wallet", "gift_card", "qr_bill"]

PROVIDERS = {
    PaymentMethod.CARD: STRIPE,
    PaymentMethod.TWINT: "twint",
    PaymentMethod.CASH: "cash",
    PaymentMethod.BANK_TRANSFER: "bank",
    PaymentMethod.WALLET: "wallet",
    PaymentMethod.GIFT_CARD: "gift_card",
    PaymentMethod.QR_BILL: "qr_bill",
}

CAPTURABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, PaymentStatus.PARTIALLY_CAPTURED)
CLOSED_ORDER_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


class PaymentService:
    """Service class for payments."""

    def __init__(self, db: AsyncSession, stripe: Optional[StripeClient] = None, twint: Optional[TwintSandbox] = None):
        self.db = db
        self.settings = get_settings()
        self.orders = OrderService(db)
        self.stripe = stripe or StripeClient()
        self.twint = twint or TwintSandbox()

    async def process_payment(
        self,
        org: Organization,
        order_id: UUID,
        method: PaymentMethod,
        amount_cents: int,
        fee_amount_cents: int = 0,
        gift_card_code: Optional[str] = None,
        return_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        initiated_by: Optional[UUID] = None,
    ) -> Tuple[Payment, Optional[Dict[str, Any]]]:
        """
        Take a payment against an order.

        Args:
            org: Organization the order belongs to
            order_id: Order being paid
            method: Payment method
            amount_cents: Amount to collect, at most the order's outstanding amount
            fee_amount_cents: Provider fee kept out of the net amount
            gift_card_code: Required for gift card payments

        Returns:
            Tuple of (payment, next action for the client or None)

        Raises:
            InvalidStateError: Order is cancelled or refunded
            PaymentAmountError: Amount is not within (0, outstanding]
        """
        order = await self._lock_open_order(org.id, order_id)

        outstanding = order.outstanding_cents
        if amount_cents <= 0 or amount_cents > outstanding:
            raise PaymentAmountError(amount_cents, outstanding)

        payment = Payment(
            org_id=org.id,
            order_id=order.id,
            method=method,
            provider=PROVIDERS[method],
            amount_cents=amount_cents,
            captured_cents=0,
            refunded_cents=0,
            fee_amount_cents=fee_amount_cents,
            net_amount_cents=0,
            currency=order.currency,
            status=PaymentStatus.PENDING,
            extra=dict(metadata or {}),
        )
        self.db.add(payment)
        await self.db.flush()

        next_action = None
        if method in (PaymentMethod.CASH, PaymentMethod.BANK_TRANSFER):
            await self._capture(payment, order, amount_cents)
        elif method == PaymentMethod.WALLET:
            await self._pay_from_wallet(payment, order, initiated_by)
        elif method == PaymentMethod.GIFT_CARD:
            await self._pay_with_gift_card(payment, order, gift_card_code)
        elif method == PaymentMethod.CARD:
            next_action = await self._start_card_payment(payment, order, return_url)
        elif method == PaymentMethod.TWINT:
            transaction = self.twint.create_transaction(amount_cents, order.currency, order.order_number)
            payment.provider_payment_id = transaction.transaction_id
            payment.expires_at = transaction.expires_at
            next_action = transaction.as_next_action()
        elif method == PaymentMethod.QR_BILL:
            next_action = await self._issue_qr_bill(org, payment, order)

        await self.db.flush()
        log_business_event(
            "payment_processed",
            {
                "payment_id": str(payment.id),
                "order_id": str(order.id),
                "method": method.value,
                "amount_cents": amount_cents,
                "status": payment.status.value,
            },
            str(initiated_by) if initiated_by else None
        )
        return payment, next_action

    async def capture_payment(self, org_id: UUID, payment_id: UUID, amount_cents: Optional[int] = None) -> Payment:
        """
        Capture a pending or authorized payment, fully or in part.

        Raises:
            InvalidStateError: Payment cannot be captured, or its order is cancelled or refunded
            PaymentAmountError: Amount exceeds what is left to capture
        """
        payment = await self._lock_payment(org_id, payment_id)
        if payment.status not in CAPTURABLE_STATUSES:
            raise InvalidStateError(
                "payment", payment.id, payment.status.value, [s.value for s in CAPTURABLE_STATUSES]
            )

        remaining = payment.amount_cents - payment.captured_cents
        amount = remaining if amount_cents is None else amount_cents
        if amount <= 0 or amount > remaining:
            raise PaymentAmountError(amount, remaining)

        order = await self._lock_open_order(org_id, payment.order_id)
        if amount > order.outstanding_cents:
            raise PaymentAmountError(amount, order.outstanding_cents)

        await self._capture(payment, order, amount)
        await self.db.flush()
        return payment

    async def confirm_twint(self, org_id: UUID, payment_id: UUID, success: bool = True) -> Payment:
        """Sandbox callback: settle or fail a pending TWINT payment."""
        payment = await self._lock_payment(org_id, payment_id)
        if payment.method != PaymentMethod.TWINT:
            raise ValidationError("Payment is not a TWINT payment", details={"method": payment.method.value})
        if payment.status != PaymentStatus.PENDING:
            raise InvalidStateError("payment", payment.id, payment.status.value, [PaymentStatus.PENDING.value])

        expires_at = as_utc(payment.expires_at)
        if expires_at is not None and expires_at < utcnow():
            self._fail(payment, "expired")
        elif success:
            order = await self._lock_open_order(org_id, payment.order_id)
            await self._capture(payment, order, payment.amount_cents)
        else:
            self._fail(payment, "declined")

        await self.db.flush()
        return payment

    async def handle_stripe_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Apply a signed Stripe event.

        ``payment_intent.succeeded`` captures the matching payment and settles
        the order's invoice; ``payment_intent.payment_failed`` fails it.
        Other event types are acknowledged without action.
        """
        try:
            event = verify_stripe_signature(
                payload,
                signature,
                self.settings.stripe_webhook_secret,
                self.settings.stripe_webhook_tolerance_seconds,
            )
        except WebhookSignatureError as e:
            log_security_event("webhook_signature_rejected", {"provider": "stripe", "reason": e.message})
            raise
        event_type = event.get("type", "")
        intent = (event.get("data") or {}).get("object") or {}

        if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            logger.info(f"Ignoring Stripe event {event_type}")
            return {"received": True, "event_type": event_type, "handled": False}

        payment = await self._payment_for_intent(intent.get("id"))
        if payment is None:
            logger.warning(f"Stripe event {event_type} for unknown intent {intent.get('id')}")
            return {"received": True, "event_type": event_type, "handled": False}

        if payment.status not in CAPTURABLE_STATUSES:
            return {"received": True, "event_type": event_type, "handled": False}

        if event_type == "payment_intent.succeeded":
            from .invoice_service import InvoiceService

            order = await self.orders.lock_order(payment.org_id, payment.order_id)
            if order.status in CLOSED_ORDER_STATUSES:
                logger.warning(
                    f"Stripe charged intent {intent.get('id')} for {order.status.value} order "
                    f"{order.order_number}; refund it from the Stripe dashboard"
                )
                return {"received": True, "event_type": event_type, "handled": False}
            received = intent.get("amount_received") or payment.amount_cents
            amount = min(received, payment.amount_cents) - payment.captured_cents
            if amount > 0:
                payment.provider_payment_id = intent.get("latest_charge") or payment.provider_payment_id
                await self._capture(payment, order, amount)
            await InvoiceService(self.db).mark_paid_for_order(payment.org_id, order.id)
        else:
            error = intent.get("last_payment_error") or {}
            self._fail(payment, error.get("message") or "payment failed")

        await self.db.flush()
        return {"received": True, "event_type": event_type, "handled": True, "payment_id": str(payment.id)}

    async def get_payment(self, org_id: UUID, payment_id: UUID) -> Payment:
        payment = await self.db.get(Payment, payment_id)
        if payment is None or payment.org_id != org_id:
            raise ResourceNotFoundError("payment", payment_id)
        return payment

    async def list_payments(
        self,
        org_id: UUID,
        order_id: Optional[UUID] = None,
        status: Optional[PaymentStatus] = None,
        method: Optional[PaymentMethod] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Payment], int]:
        query = select(Payment).where(Payment.org_id == org_id)
        if order_id:
            query = query.where(Payment.order_id == order_id)
        if status:
            query = query.where(Payment.status == status)
        if method:
            query = query.where(Payment.method == method)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(query.order_by(Payment.created_at.desc()).limit(limit).offset(offset))
        return list(result.scalars().all()), total or 0

    async def expire_stale_payments(self, now: Optional[datetime] = None) -> int:
        """Fail pending TWINT payments whose QR code has expired."""
        now = now or utcnow()
        result = await self.db.execute(
            select(Payment).where(
                Payment.method == PaymentMethod.TWINT,
                Payment.status == PaymentStatus.PENDING,
                Payment.expires_at.is_not(None),
                Payment.expires_at < now,
            )
        )
        payments = list(result.scalars().all())
        for payment in payments:
            self._fail(payment, "expired")

        await self.db.flush()
        if payments:
            logger.info(f"Expired {len(payments)} TWINT payments")
        return len(payments)

    async def get_payment_methods(self, org: Organization) -> Dict[str, Any]:
        """Enabled methods, currency and VAT rate; cached per organization."""
        key = CacheKeyBuilder.payment_methods(str(org.id))
        cached = await cache.get(key)
        if cached:
            return cached

        configured = (org.settings or {}).get("payment_methods")
        methods = [m for m in (configured or DEFAULT_PAYMENT_METHODS) if m in {member.value for member in PaymentMethod}]
        result = {"methods": methods, "currency": org.currency, "vat_rate": float(org.vat_rate)}
        await cache.set(key, result, ttl=CacheTTL.PAYMENT_METHODS)
        return result

    # Method handlers

    async def _pay_from_wallet(self, payment: Payment, order: Order, initiated_by: Optional[UUID]) -> None:
        from .wallet_service import WalletService

        if order.customer_id is None:
            raise ValidationError("Wallet payments need an order with a customer")

        wallets = WalletService(self.db)
        wallet = await wallets.get_or_create_wallet(order.org_id, order.customer_id)
        _, entry = await wallets.debit(
            order.org_id,
            wallet.id,
            payment.amount_cents,
            reference_type=LedgerReferenceType.ORDER,
            reference_id=str(order.id),
            description=f"Order {order.order_number}",
            initiated_by=initiated_by,
        )
        payment.provider_payment_id = str(entry.id)
        payment.extra = {**payment.extra, "wallet_id": str(wallet.id)}
        await self._capture(payment, order, payment.amount_cents)

    async def _pay_with_gift_card(self, payment: Payment, order: Order, code: Optional[str]) -> None:
        from .gift_card_service import GiftCardService

        if not code:
            raise ValidationError("gift_card_code is required", field_errors={"gift_card_code": ["required"]})

        card = await GiftCardService(self.db).redeem(order.org_id, code, payment.amount_cents)
        payment.provider_payment_id = card.code
        await self._capture(payment, order, payment.amount_cents)

    async def _start_card_payment(self, payment: Payment, order: Order, return_url: Optional[str]) -> Dict[str, Any]:
        intent = await self.stripe.create_payment_intent(
            payment.amount_cents,
            order.currency,
            metadata={"order_id": str(order.id), "order_number": order.order_number, "payment_id": str(payment.id)},
            idempotency_key=f"payment-{payment.id}",
        )
        payment.provider_intent_id = intent["id"]
        if intent.get("status") == "requires_capture":
            payment.status = PaymentStatus.AUTHORIZED
            payment.authorized_at = utcnow()
        return {"type": "stripe", "client_secret": intent.get("client_secret"), "return_url": return_url}

    async def _issue_qr_bill(self, org: Organization, payment: Payment, order: Order) -> Dict[str, Any]:
        from .invoice_service import InvoiceService

        invoices = InvoiceService(self.db)
        invoice = await invoices.generate_invoice(org, order.id)
        bill = invoices.build_qr_bill(org, invoice)
        payment.provider_payment_id = invoice.invoice_number
        payment.extra = {**payment.extra, "invoice_id": str(invoice.id)}
        return {
            "type": "qr_bill",
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "reference": invoice.qr_reference,
            "payload": bill.payload(),
        }

    # Settlement

    async def _capture(self, payment: Payment, order: Order, amount_cents: int) -> None:
        now = utcnow()
        payment.captured_cents += amount_cents
        payment.net_amount_cents = max(0, payment.captured_cents - payment.fee_amount_cents)
        payment.captured_at = now
        payment.authorized_at = payment.authorized_at or now
        if payment.captured_cents >= payment.amount_cents:
            payment.status = PaymentStatus.CAPTURED
        else:
            payment.status = PaymentStatus.PARTIALLY_CAPTURED

        order.paid_cents += amount_cents
        if order.paid_cents >= order.total_cents:
            order.status = OrderStatus.COMPLETED
        else:
            order.status = OrderStatus.PROCESSING

        await CacheInvalidator.invalidate_org_reports(str(order.org_id))
        logger.info(f"Captured {amount_cents} on payment {payment.id} (order {order.order_number})")

    def _fail(self, payment: Payment, reason: str) -> None:
        payment.status = PaymentStatus.FAILED
        payment.failed_at = utcnow()
        payment.failure_reason = reason
        logger.info(f"Payment {payment.id} failed: {reason}")

    async def _lock_open_order(self, org_id: UUID, order_id: UUID) -> Order:
        order = await self.orders.lock_order(org_id, order_id)
        if order.status in CLOSED_ORDER_STATUSES:
            raise InvalidStateError(
                "order", order.id, order.status.value,
                [OrderStatus.PENDING.value, OrderStatus.PROCESSING.value]
            )
        return order

    async def _lock_payment(self, org_id: UUID, payment_id: UUID) -> Payment:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.org_id == org_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise ResourceNotFoundError("payment", payment_id)
        return payment

    async def _payment_for_intent(self, intent_id: Optional[str]) -> Optional[Payment]:
        if not intent_id:
            return None
        result = await self.db.execute(
            select(Payment)
            .where(Payment.provider_intent_id == intent_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
