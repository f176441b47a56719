"""
Payment provider clients: Stripe through its SDK and the TWINT sandbox.

Stripe calls go through the provider's circuit breaker and are retried on
transient failures (connection errors, rate limits, 5xx). Card declines and
other rejected requests are raised at once as ``PaymentServiceError``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import stripe

from ..config import get_settings
from ..utils.circuit_breaker import get_payment_circuit_breaker
from ..utils.clock import utcnow
from ..utils.exceptions import ExternalServiceError, PaymentServiceError, WebhookSignatureError
from ..utils.money import format_amount, generate_twint_transaction_id
from ..utils.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)

STRIPE = "stripe"
TWINT = "twint"


class StripeClient:
    """Async wrapper around the Stripe SDK for PaymentIntents and refunds."""

    def __init__(self, secret_key: Optional[str] = None):
        settings = get_settings()
        self.secret_key = secret_key or settings.stripe_secret_key
        self.use_breaker = settings.enable_circuit_breakers
        self.retry_config = RetryConfig(
            max_attempts=settings.max_retry_attempts if settings.enable_retry_mechanisms else 1,
            base_delay=0.5,
            max_delay=10.0,
        )

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a PaymentIntent.

        Returns:
            ``id``, ``client_secret`` and ``status`` of the new intent
        """
        intent = await self._call(
            stripe.PaymentIntent.create,
            idempotency_key,
            amount=amount_cents,
            currency=currency.lower(),
            automatic_payment_methods={"enabled": True},
            metadata={key: str(value) for key, value in (metadata or {}).items()},
        )
        return {"id": intent.id, "client_secret": intent.client_secret, "status": intent.status}

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        refund = await self._call(
            stripe.Refund.create,
            idempotency_key,
            payment_intent=payment_intent_id,
            amount=amount_cents,
        )
        return {"id": refund.id, "status": refund.status}

    async def _call(self, operation: Callable, idempotency_key: Optional[str] = None, **params) -> Any:
        if not self.configured:
            raise PaymentServiceError(STRIPE, "Stripe is not configured for this deployment")

        params["api_key"] = self.secret_key
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        async def attempt():
            if self.use_breaker:
                return await get_payment_circuit_breaker(STRIPE).call(self._request, operation, params)
            return await self._request(operation, params)

        return await retry_async(
            attempt,
            self.retry_config,
            retryable_exceptions=(ExternalServiceError,),
            non_retryable_exceptions=(PaymentServiceError,),
        )

    async def _request(self, operation: Callable, params: Dict[str, Any]) -> Any:
        try:
            return await asyncio.to_thread(operation, **params)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise ExternalServiceError(STRIPE, f"transport error: {e}", status_code=e.http_status) from e
        except stripe.APIError as e:
            raise ExternalServiceError(STRIPE, "provider unavailable", status_code=e.http_status) from e
        except stripe.StripeError as e:
            logger.warning(f"Stripe rejected {operation.__qualname__}: {e.code} {e.user_message}")
            raise PaymentServiceError(
                STRIPE,
                e.user_message or "request rejected",
                status_code=e.http_status,
                details={"stripe_code": e.code, "decline_code": getattr(e.error, "decline_code", None)},
            ) from e


def verify_stripe_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    tolerance_seconds: int = 300,
) -> Dict[str, Any]:
    """
    Check a ``Stripe-Signature`` header and decode the event.

    Returns:
        The decoded event

    Raises:
        WebhookSignatureError: Missing or malformed header, stale timestamp,
            no matching signature or a body that is not JSON
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")
    if not signature_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    try:
        return stripe.Webhook.construct_event(payload, signature_header, secret, tolerance=tolerance_seconds)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e
    except ValueError as e:
        raise WebhookSignatureError("Webhook payload is not valid JSON") from e


@dataclass
class TwintTransaction:
    transaction_id: str
    qr_code_url: str
    deep_link: str
    expires_at: datetime

    def as_next_action(self) -> Dict[str, Any]:
        return {
            "type": "twint",
            "transaction_id": self.transaction_id,
            "qr_code_url": self.qr_code_url,
            "deep_link": self.deep_link,
            "expires_at": self.expires_at.isoformat(),
        }


class TwintSandbox:
    """Stand-in for the TWINT merchant API; transactions are confirmed through a callback."""

    def __init__(self, base_url: Optional[str] = None, timeout_minutes: Optional[int] = None):
        settings = get_settings()
        self.base_url = (base_url or settings.twint_sandbox_base_url).rstrip("/")
        self.timeout_minutes = timeout_minutes or settings.twint_payment_timeout_minutes

    def create_transaction(self, amount_cents: int, currency: str, reference: str) -> TwintTransaction:
        transaction_id = generate_twint_transaction_id()
        amount = format_amount(amount_cents)
        return TwintTransaction(
            transaction_id=transaction_id,
            qr_code_url=f"{self.base_url}/qr/{transaction_id}?amount={amount}&currency={currency}&ref={reference}",
            deep_link=f"twint://pay?transaction={transaction_id}&amount={amount}&currency={currency}",
            expires_at=utcnow() + timedelta(minutes=self.timeout_minutes),
        )

    def create_refund(self, transaction_id: str, amount_cents: int) -> str:
        logger.info(f"TWINT sandbox refund of {amount_cents} for {transaction_id}")
        return f"twint_refund_{int(time.time() * 1000)}"
