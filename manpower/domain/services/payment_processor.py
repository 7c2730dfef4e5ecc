"""
Payment Processor - external card processor behind a small interface

PaymentService depends only on BasePaymentProcessor. The Stripe implementation
calls the official SDK in a worker thread, under a circuit breaker and a hard
timeout, and maps SDK errors onto the application's exception hierarchy.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import stripe

from manpower.core.circuit_breaker import CircuitBreaker, get_payment_processor_circuit_breaker
from manpower.core.config import settings
from manpower.core.exceptions import PaymentProcessorError, ServiceTimeoutError
from manpower.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str


class BasePaymentProcessor(ABC):
    """Creates payment intents the client then completes in the browser"""

    @abstractmethod
    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict,
    ) -> PaymentIntent:
        """
        Create an intent for ``amount_minor`` (cents).

        Raises:
            PaymentProcessorError: the processor rejected the request.
            ServiceTimeoutError: no answer within the configured timeout.
            CircuitBreakerOpenError: recent calls kept failing.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name used in logs"""


class StripePaymentProcessor(BasePaymentProcessor):
    """``stripe.PaymentIntent.create`` with a per-request API key"""

    def __init__(
        self,
        secret_key: str,
        circuit_breaker: CircuitBreaker,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._circuit_breaker = circuit_breaker
        self._timeout = timeout_seconds or settings.STRIPE_TIMEOUT_SECONDS

    @property
    def provider_name(self) -> str:
        return "stripe"

    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict,
    ) -> PaymentIntent:
        params = {
            "amount": amount_minor,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": {key: str(value) for key, value in metadata.items()},
        }

        async def _create() -> PaymentIntent:
            # The SDK is blocking; run it off the event loop
            try:
                intent = await asyncio.wait_for(
                    asyncio.to_thread(stripe.PaymentIntent.create, api_key=self._secret_key, **params),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as e:
                raise ServiceTimeoutError("stripe", self._timeout) from e
            except stripe.StripeError as e:
                raise PaymentProcessorError.from_stripe_error("create_payment_intent", e) from e
            return PaymentIntent(id=intent["id"], client_secret=intent["client_secret"])

        intent = await self._circuit_breaker.execute(_create)
        logger.info(
            "Payment intent created",
            extra_data={
                "provider": self.provider_name,
                "intent_id": intent.id,
                "amount_minor": amount_minor,
                "currency": currency,
            },
        )
        return intent


def get_payment_processor() -> Optional[BasePaymentProcessor]:
    """Configured processor, or None when STRIPE_SECRET_KEY is not set"""
    if not settings.STRIPE_SECRET_KEY:
        return None
    return StripePaymentProcessor(
        settings.STRIPE_SECRET_KEY,
        get_payment_processor_circuit_breaker(),
    )
