"""Tests for the Stripe client, webhook signatures and the TWINT sandbox."""

import json
import time
from types import SimpleNamespace

import pytest
import stripe

from conftest import stripe_signature_header
from yogaswiss.services.payment_providers import StripeClient, TwintSandbox, verify_stripe_signature
from yogaswiss.utils.exceptions import ExternalServiceError, PaymentServiceError, WebhookSignatureError
from yogaswiss.utils.retry import RetryConfig

SECRET = "whsec_test_secret"
PAYLOAD = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"}).encode()


class TestStripeSignature:

    def test_valid_signature_returns_the_event(self):
        header = stripe_signature_header(PAYLOAD, SECRET)

        event = verify_stripe_signature(PAYLOAD, header, SECRET)

        assert event["type"] == "payment_intent.succeeded"

    def test_any_matching_v1_value_is_accepted(self):
        header = f"{stripe_signature_header(PAYLOAD, SECRET)},v1={'0' * 64}"

        assert verify_stripe_signature(PAYLOAD, header, SECRET)["id"] == "evt_1"

    def test_tampered_payload_is_rejected(self):
        header = stripe_signature_header(PAYLOAD, SECRET)

        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(PAYLOAD + b" ", header, SECRET)

    def test_wrong_secret_is_rejected(self):
        header = stripe_signature_header(PAYLOAD, "whsec_other")

        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(PAYLOAD, header, SECRET)

    def test_stale_timestamp_is_rejected(self):
        header = stripe_signature_header(PAYLOAD, SECRET, timestamp=time.time() - 301)

        with pytest.raises(WebhookSignatureError, match="tolerance"):
            verify_stripe_signature(PAYLOAD, header, SECRET, tolerance_seconds=300)

    def test_signed_body_that_is_not_json(self):
        header = stripe_signature_header(b"not json", SECRET)

        with pytest.raises(WebhookSignatureError, match="JSON"):
            verify_stripe_signature(b"not json", header, SECRET)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc", "t=1700000000"])
    def test_missing_or_malformed_header(self, header):
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(PAYLOAD, header, SECRET)

    def test_unconfigured_secret(self):
        with pytest.raises(WebhookSignatureError, match="not configured"):
            verify_stripe_signature(PAYLOAD, "t=1,v1=abc", None)


class TestStripeClient:

    @pytest.fixture
    def client(self):
        client = StripeClient(secret_key="sk_test_unit")
        client.use_breaker = False
        client.retry_config = RetryConfig(max_attempts=2, base_delay=0, jitter=False)
        return client

    async def test_payment_intent_is_created_with_key_and_idempotency(self, client, monkeypatch):
        calls = []

        def create(**params):
            calls.append(params)
            return SimpleNamespace(id="pi_1", client_secret="pi_1_secret", status="requires_payment_method")

        monkeypatch.setattr(stripe.PaymentIntent, "create", create)

        intent = await client.create_payment_intent(2550, "CHF", metadata={"order": 7}, idempotency_key="ord-7")

        assert intent == {"id": "pi_1", "client_secret": "pi_1_secret", "status": "requires_payment_method"}
        assert calls == [{
            "amount": 2550,
            "currency": "chf",
            "automatic_payment_methods": {"enabled": True},
            "metadata": {"order": "7"},
            "api_key": "sk_test_unit",
            "idempotency_key": "ord-7",
        }]

    async def test_card_decline_is_not_retried(self, client, monkeypatch):
        calls = []

        def create(**params):
            calls.append(params)
            raise stripe.CardError(
                "Your card has insufficient funds.",
                None,
                "card_declined",
                http_status=402,
                json_body={"error": {"code": "card_declined", "decline_code": "insufficient_funds"}},
            )

        monkeypatch.setattr(stripe.PaymentIntent, "create", create)

        with pytest.raises(PaymentServiceError) as exc_info:
            await client.create_payment_intent(2550, "CHF")

        assert len(calls) == 1
        assert exc_info.value.details["stripe_code"] == "card_declined"
        assert exc_info.value.details["decline_code"] == "insufficient_funds"

    async def test_connection_errors_are_retried(self, client, monkeypatch):
        calls = []

        def create(**params):
            calls.append(params)
            if len(calls) == 1:
                raise stripe.APIConnectionError("connection reset")
            return SimpleNamespace(id="re_1", status="succeeded")

        monkeypatch.setattr(stripe.Refund, "create", create)

        refund = await client.create_refund("pi_1", 1000)

        assert refund == {"id": "re_1", "status": "succeeded"}
        assert len(calls) == 2
        assert calls[0]["payment_intent"] == "pi_1"

    async def test_persistent_outage_surfaces_as_external_error(self, client, monkeypatch):
        def create(**params):
            raise stripe.APIError("upstream failure", http_status=503)

        monkeypatch.setattr(stripe.Refund, "create", create)

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.create_refund("pi_1", 1000)

        assert not isinstance(exc_info.value, PaymentServiceError)

    async def test_unconfigured_client_refuses_calls(self):
        client = StripeClient(secret_key="")
        client.secret_key = None

        with pytest.raises(PaymentServiceError):
            await client.create_payment_intent(1000, "CHF")


def test_twint_transaction_links_carry_amount_and_reference():
    sandbox = TwintSandbox(base_url="https://sandbox.example/pay", timeout_minutes=5)

    transaction = sandbox.create_transaction(2550, "CHF", "YS-1-ABCD")
    action = transaction.as_next_action()

    assert transaction.transaction_id.startswith("twint_")
    assert "amount=25.50" in transaction.qr_code_url
    assert "ref=YS-1-ABCD" in transaction.qr_code_url
    assert transaction.deep_link.startswith("twint://pay?transaction=")
    assert action["type"] == "twint"
    assert action["expires_at"] == transaction.expires_at.isoformat()
