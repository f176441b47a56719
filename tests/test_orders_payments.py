"""Tests for orders, payments across methods, Stripe webhooks and refunds."""

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import FakeStripe, stripe_signature_header
from yogaswiss.config import get_settings
from yogaswiss.models.order import OrderItemType, OrderStatus
from yogaswiss.models.payment import PaymentMethod, PaymentStatus, RefundStatus
from yogaswiss.schemas.gift_card import GiftCardCreate
from yogaswiss.schemas.order import OrderCreate, OrderItemCreate
from yogaswiss.services.gift_card_service import GiftCardService
from yogaswiss.services.order_service import OrderService
from yogaswiss.services.payment_service import PaymentService
from yogaswiss.services.refund_service import RefundService
from yogaswiss.services.wallet_service import WalletService
from yogaswiss.utils.clock import utcnow
from yogaswiss.utils.exceptions import (
    InvalidStateError,
    PaymentAmountError,
    RefundAmountError,
    ValidationError,
    WebhookSignatureError,
)

WEBHOOK_SECRET = "whsec_unit"


async def make_order(db, org, customer, price_cents=5000, quantity=1):
    return await OrderService(db).create_order(
        org,
        OrderCreate(
            customer_id=customer.id,
            items=[OrderItemCreate(
                item_type=OrderItemType.REGISTRATION,
                name="Drop-in Vinyasa",
                unit_price_cents=price_cents,
                quantity=quantity,
            )],
        ),
    )


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(get_settings(), "stripe_webhook_secret", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


def stripe_event(event_type, intent):
    payload = json.dumps({"id": "evt_unit", "type": event_type, "data": {"object": intent}}).encode()
    return payload, stripe_signature_header(payload, WEBHOOK_SECRET)


class TestOrders:

    async def test_totals_are_summed_from_taxed_lines(self, db, org, customer):
        order = await OrderService(db).create_order(
            org,
            OrderCreate(
                customer_id=customer.id,
                items=[
                    OrderItemCreate(item_type=OrderItemType.PASS, name="10er Abo", unit_price_cents=10000),
                    OrderItemCreate(
                        item_type=OrderItemType.RETAIL,
                        name="Yoga book",
                        unit_price_cents=500,
                        quantity=2,
                        tax_rate=Decimal("2.6"),
                        tax_inclusive=False,
                    ),
                ],
                metadata={"source": "front desk"},
            ),
        )

        assert order.order_number.startswith("YS-")
        assert order.status == OrderStatus.PENDING
        assert [item.tax_amount_cents for item in order.items] == [749, 26]
        assert order.subtotal_cents == 9251 + 1000
        assert order.tax_total_cents == 775
        assert order.total_cents == 11026
        assert order.outstanding_cents == 11026
        assert order.customer_name == "Lena Keller"
        assert order.billing_address["postal_code"] == "8002"
        assert order.extra == {"source": "front desk"}

    async def test_order_needs_items(self, db, org, customer):
        with pytest.raises(ValidationError):
            await OrderService(db).create_order(org, OrderCreate(customer_id=customer.id))

    async def test_cancel_pending_order(self, db, org, customer):
        order = await make_order(db, org, customer)

        order = await OrderService(db).cancel_order(org.id, order.id, reason="changed mind")

        assert order.status == OrderStatus.CANCELLED
        assert order.extra["cancellation_reason"] == "changed mind"
        with pytest.raises(InvalidStateError):
            await PaymentService(db).process_payment(org, order.id, PaymentMethod.CASH, 5000)

    async def test_paid_order_cannot_be_cancelled(self, db, org, customer):
        order = await make_order(db, org, customer)
        await PaymentService(db).process_payment(org, order.id, PaymentMethod.CASH, 1000)

        with pytest.raises(InvalidStateError):
            await OrderService(db).cancel_order(org.id, order.id)

    async def test_list_orders_filters_by_status(self, db, org, customer):
        paid = await make_order(db, org, customer)
        await make_order(db, org, customer)
        await PaymentService(db).process_payment(org, paid.id, PaymentMethod.CASH, 5000)

        orders, total = await OrderService(db).list_orders(org.id, status=OrderStatus.COMPLETED)

        assert total == 1
        assert orders[0].id == paid.id


class TestPayments:

    async def test_cash_settles_the_order(self, db, org, customer):
        order = await make_order(db, org, customer)

        payment, next_action = await PaymentService(db).process_payment(org, order.id, PaymentMethod.CASH, 5000)

        assert next_action is None
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.captured_cents == 5000
        assert payment.provider == "cash"
        assert order.status == OrderStatus.COMPLETED
        assert order.paid_cents == 5000

    async def test_partial_payments_keep_the_order_processing(self, db, org, customer):
        order = await make_order(db, org, customer)
        service = PaymentService(db)

        await service.process_payment(org, order.id, PaymentMethod.CASH, 2000)
        assert order.status == OrderStatus.PROCESSING
        assert order.outstanding_cents == 3000

        with pytest.raises(PaymentAmountError) as exc_info:
            await service.process_payment(org, order.id, PaymentMethod.BANK_TRANSFER, 3001)
        assert exc_info.value.details["outstanding_cents"] == 3000

        await service.process_payment(org, order.id, PaymentMethod.BANK_TRANSFER, 3000)
        assert order.status == OrderStatus.COMPLETED

    async def test_zero_amount_is_rejected(self, db, org, customer):
        order = await make_order(db, org, customer)

        with pytest.raises(PaymentAmountError):
            await PaymentService(db).process_payment(org, order.id, PaymentMethod.CASH, 0)

    async def test_wallet_payment_debits_the_wallet(self, db, org, customer):
        wallets = WalletService(db)
        wallet = await wallets.get_or_create_wallet(org.id, customer.id)
        await wallets.add_funds(org.id, wallet.id, amount_cents=8000)
        order = await make_order(db, org, customer)

        payment, _ = await PaymentService(db).process_payment(org, order.id, PaymentMethod.WALLET, 5000)

        wallet = await wallets.get_wallet(org.id, wallet.id)
        assert wallet.balance_cents == 3000
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.extra["wallet_id"] == str(wallet.id)

    async def test_gift_card_payment(self, db, org, customer):
        await GiftCardService(db).create_gift_card(org, GiftCardCreate(amount_cents=3000, code="zen-gift"))
        order = await make_order(db, org, customer)

        payment, _ = await PaymentService(db).process_payment(
            org, order.id, PaymentMethod.GIFT_CARD, 3000, gift_card_code="zen-gift"
        )

        card = await GiftCardService(db).get_by_code(org.id, "ZEN-GIFT")
        assert payment.provider_payment_id == "ZEN-GIFT"
        assert card.current_balance_cents == 0
        assert order.status == OrderStatus.PROCESSING

    async def test_gift_card_payment_needs_a_code(self, db, org, customer):
        order = await make_order(db, org, customer)

        with pytest.raises(ValidationError):
            await PaymentService(db).process_payment(org, order.id, PaymentMethod.GIFT_CARD, 1000)

    async def test_card_payment_waits_for_the_webhook(self, db, org, customer, fake_stripe, webhook_secret):
        order = await make_order(db, org, customer)
        service = PaymentService(db, stripe=fake_stripe)

        payment, next_action = await service.process_payment(
            org, order.id, PaymentMethod.CARD, 5000, fee_amount_cents=170, return_url="https://studio-zen.ch/done"
        )

        assert payment.status == PaymentStatus.PENDING
        assert payment.provider_intent_id == "pi_test_1"
        assert next_action == {
            "type": "stripe",
            "client_secret": "pi_test_1_secret",
            "return_url": "https://studio-zen.ch/done",
        }
        assert fake_stripe.intents[0]["metadata"]["order_id"] == str(order.id)

        payload, signature = stripe_event(
            "payment_intent.succeeded",
            {"id": "pi_test_1", "amount_received": 5000, "latest_charge": "ch_unit"},
        )
        result = await service.handle_stripe_webhook(payload, signature)

        payment = await service.get_payment(org.id, payment.id)
        order = await OrderService(db).get_order(org.id, order.id)
        assert result["handled"] is True
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.provider_payment_id == "ch_unit"
        assert payment.net_amount_cents == 4830
        assert order.status == OrderStatus.COMPLETED

        # redelivery of the same event changes nothing
        again = await service.handle_stripe_webhook(*stripe_event("payment_intent.succeeded", {"id": "pi_test_1"}))
        assert again["handled"] is False

    async def test_failed_card_payment(self, db, org, customer, fake_stripe, webhook_secret):
        order = await make_order(db, org, customer)
        service = PaymentService(db, stripe=fake_stripe)
        payment, _ = await service.process_payment(org, order.id, PaymentMethod.CARD, 5000)

        await service.handle_stripe_webhook(*stripe_event(
            "payment_intent.payment_failed",
            {"id": payment.provider_intent_id, "last_payment_error": {"message": "card_declined"}},
        ))

        payment = await service.get_payment(org.id, payment.id)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "card_declined"
        assert order.status == OrderStatus.PENDING

    async def test_webhook_with_bad_signature(self, db, webhook_secret):
        payload, _ = stripe_event("payment_intent.succeeded", {"id": "pi_x"})

        with pytest.raises(WebhookSignatureError):
            await PaymentService(db).handle_stripe_webhook(payload, "t=1,v1=deadbeef")

    async def test_unrelated_events_are_acknowledged(self, db, webhook_secret):
        result = await PaymentService(db).handle_stripe_webhook(*stripe_event("charge.updated", {"id": "ch_1"}))

        assert result == {"received": True, "event_type": "charge.updated", "handled": False}

    async def test_authorized_card_payment_is_captured_in_parts(self, db, org, customer):
        order = await make_order(db, org, customer)
        service = PaymentService(db, stripe=FakeStripe(intent_status="requires_capture"))
        payment, _ = await service.process_payment(org, order.id, PaymentMethod.CARD, 5000)
        assert payment.status == PaymentStatus.AUTHORIZED

        payment = await service.capture_payment(org.id, payment.id, 2000)
        assert payment.status == PaymentStatus.PARTIALLY_CAPTURED

        with pytest.raises(PaymentAmountError):
            await service.capture_payment(org.id, payment.id, 3500)

        payment = await service.capture_payment(org.id, payment.id)
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.captured_cents == 5000

        with pytest.raises(InvalidStateError):
            await service.capture_payment(org.id, payment.id)

    async def test_twint_confirmation(self, db, org, customer):
        order = await make_order(db, org, customer)
        service = PaymentService(db)

        payment, next_action = await service.process_payment(org, order.id, PaymentMethod.TWINT, 5000)
        assert payment.status == PaymentStatus.PENDING
        assert next_action["type"] == "twint"
        assert payment.provider_payment_id == next_action["transaction_id"]

        payment = await service.confirm_twint(org.id, payment.id, success=True)

        assert payment.status == PaymentStatus.CAPTURED
        order = await OrderService(db).get_order(org.id, order.id)
        assert order.status == OrderStatus.COMPLETED

    async def test_declined_and_expired_twint_payments_fail(self, db, org, customer):
        order = await make_order(db, org, customer)
        service = PaymentService(db)

        declined, _ = await service.process_payment(org, order.id, PaymentMethod.TWINT, 1000)
        declined = await service.confirm_twint(org.id, declined.id, success=False)
        assert declined.status == PaymentStatus.FAILED
        assert declined.failure_reason == "declined"

        stale, _ = await service.process_payment(org, order.id, PaymentMethod.TWINT, 1000)
        expired = await service.expire_stale_payments(now=utcnow() + timedelta(hours=1))

        stale = await service.get_payment(org.id, stale.id)
        assert expired == 1
        assert stale.status == PaymentStatus.FAILED
        assert stale.failure_reason == "expired"
        with pytest.raises(InvalidStateError):
            await service.confirm_twint(org.id, stale.id)

    async def test_cancelled_order_does_not_take_a_late_twint_confirmation(self, db, org, customer):
        order = await make_order(db, org, customer)
        service = PaymentService(db)
        payment, _ = await service.process_payment(org, order.id, PaymentMethod.TWINT, 5000)

        await OrderService(db).cancel_order(org.id, order.id, reason="changed plans")
        with pytest.raises(InvalidStateError):
            await service.confirm_twint(org.id, payment.id, success=True)

        payment = await service.get_payment(org.id, payment.id)
        order = await OrderService(db).get_order(org.id, order.id)
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.captured_cents == 0
        assert order.status == OrderStatus.CANCELLED
        assert order.paid_cents == 0

    async def test_cancelled_order_cannot_capture_an_authorized_card(self, db, org, customer):
        order = await make_order(db, org, customer)
        service = PaymentService(db, stripe=FakeStripe(intent_status="requires_capture"))
        payment, _ = await service.process_payment(org, order.id, PaymentMethod.CARD, 5000)

        await OrderService(db).cancel_order(org.id, order.id)

        with pytest.raises(InvalidStateError):
            await service.capture_payment(org.id, payment.id)
        order = await OrderService(db).get_order(org.id, order.id)
        assert order.status == OrderStatus.CANCELLED

    async def test_late_stripe_success_leaves_a_cancelled_order_alone(
        self, db, org, customer, fake_stripe, webhook_secret
    ):
        order = await make_order(db, org, customer)
        service = PaymentService(db, stripe=fake_stripe)
        payment, _ = await service.process_payment(org, order.id, PaymentMethod.CARD, 5000)
        await OrderService(db).cancel_order(org.id, order.id)

        result = await service.handle_stripe_webhook(*stripe_event(
            "payment_intent.succeeded", {"id": payment.provider_intent_id, "amount_received": 5000}
        ))

        order = await OrderService(db).get_order(org.id, order.id)
        assert result["handled"] is False
        assert order.status == OrderStatus.CANCELLED
        assert order.paid_cents == 0

    async def test_qr_bill_payment_issues_an_invoice(self, db, org, customer):
        order = await make_order(db, org, customer)

        payment, next_action = await PaymentService(db).process_payment(org, order.id, PaymentMethod.QR_BILL, 5000)

        assert payment.status == PaymentStatus.PENDING
        assert next_action["type"] == "qr_bill"
        assert next_action["invoice_number"] == payment.provider_payment_id
        assert next_action["payload"].startswith("SPC\n0200\n1\n")

    async def test_payment_methods_default_list(self, db, org):
        methods = await PaymentService(db).get_payment_methods(org)

        assert methods["methods"] == ["card", "twint", "cash", "wallet", "gift_card", "qr_bill"]
        assert methods["currency"] == "CHF"
        assert methods["vat_rate"] == 8.1

    async def test_list_payments_by_method(self, db, org, customer):
        order = await make_order(db, org, customer)
        service = PaymentService(db)
        await service.process_payment(org, order.id, PaymentMethod.CASH, 1000)
        await service.process_payment(org, order.id, PaymentMethod.TWINT, 1000)

        payments, total = await service.list_payments(org.id, method=PaymentMethod.TWINT)

        assert total == 1
        assert payments[0].method == PaymentMethod.TWINT


class TestRefunds:

    async def test_wallet_payment_is_refunded_to_the_wallet(self, db, org, customer):
        wallets = WalletService(db)
        wallet = await wallets.get_or_create_wallet(org.id, customer.id)
        await wallets.add_funds(org.id, wallet.id, amount_cents=5000)
        order = await make_order(db, org, customer)
        payment, _ = await PaymentService(db).process_payment(org, order.id, PaymentMethod.WALLET, 5000)

        refund = await RefundService(db).process_refund(org, order.id, 2000, reason="class cancelled")

        wallet = await wallets.get_wallet(org.id, wallet.id)
        assert refund.status == RefundStatus.COMPLETED
        assert refund.refund_number.startswith("REF-")
        assert refund.payment_id == payment.id
        assert wallet.balance_cents == 2000
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert order.status == OrderStatus.COMPLETED
        assert order.refunded_cents == 2000

    async def test_full_card_refund(self, db, org, customer, fake_stripe, webhook_secret):
        order = await make_order(db, org, customer)
        payments = PaymentService(db, stripe=fake_stripe)
        payment, _ = await payments.process_payment(org, order.id, PaymentMethod.CARD, 5000)
        await payments.handle_stripe_webhook(*stripe_event("payment_intent.succeeded", {"id": payment.provider_intent_id}))

        refund = await RefundService(db, stripe=fake_stripe).process_refund(org, order.id, 5000, reason="duplicate")

        payment = await payments.get_payment(org.id, payment.id)
        assert refund.provider_refund_id == "re_test_1"
        assert fake_stripe.refunds == [{"id": "re_test_1", "payment_intent": "pi_test_1", "amount": 5000}]
        assert payment.status == PaymentStatus.REFUNDED
        assert order.status == OrderStatus.REFUNDED

    async def test_cash_refund_is_recorded_only(self, db, org, customer):
        order = await make_order(db, org, customer)
        await PaymentService(db).process_payment(org, order.id, PaymentMethod.CASH, 5000)

        refund = await RefundService(db).process_refund(org, order.id, 1500, reason="late cancel goodwill")

        assert refund.provider_refund_id is None
        assert refund.status == RefundStatus.COMPLETED

    async def test_gift_card_refund_restores_the_card(self, db, org, customer):
        cards = GiftCardService(db)
        await cards.create_gift_card(org, GiftCardCreate(amount_cents=5000, code="GIFT-5000"))
        order = await make_order(db, org, customer)
        await PaymentService(db).process_payment(org, order.id, PaymentMethod.GIFT_CARD, 5000, gift_card_code="GIFT-5000")

        await RefundService(db).process_refund(org, order.id, 1000, reason="partial")

        card = await cards.get_by_code(org.id, "GIFT-5000")
        assert card.current_balance_cents == 1000

    async def test_refund_cannot_exceed_what_was_paid(self, db, org, customer):
        order = await make_order(db, org, customer)
        await PaymentService(db).process_payment(org, order.id, PaymentMethod.CASH, 2000)
        service = RefundService(db)

        with pytest.raises(RefundAmountError):
            await service.process_refund(org, order.id, 2500, reason="too much")

        await service.process_refund(org, order.id, 2000, reason="all of it")
        with pytest.raises(RefundAmountError):
            await service.process_refund(org, order.id, 1, reason="again")

    async def test_refund_is_split_across_payments(self, db, org, customer):
        order = await make_order(db, org, customer)
        payments = PaymentService(db)
        first, _ = await payments.process_payment(org, order.id, PaymentMethod.CASH, 3000)
        await payments.process_payment(org, order.id, PaymentMethod.BANK_TRANSFER, 2000)
        service = RefundService(db)

        refund = await service.process_refund(org, order.id, 2500, reason="one payment covers it")
        assert refund.payment_id == first.id

        refunds, total = await service.list_refunds(org.id, order_id=order.id)
        assert total == 1
        assert refunds[0].id == refund.id
