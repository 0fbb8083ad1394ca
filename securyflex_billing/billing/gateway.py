import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP

import stripe

from securyflex_billing.domain.payments import CaptureResult
from securyflex_billing.errors import GatewayConfigurationError, TransientGatewayError

logger = logging.getLogger(__name__)

PROVIDER_PENDING_STATUSES = ("processing", "requires_action", "requires_confirmation", "requires_capture")


class PaymentGateway(ABC):
    """
    Opaque payment execution capability.

    ``capture`` returns captured / declined / pending. Implementations raise
    ``TransientGatewayError`` for provider outages; the engine treats those
    as pending, never as declines.
    """

    @abstractmethod
    async def capture(self, amount: Decimal, currency: str, payment_method_ref: str,
                      idempotency_key: str) -> CaptureResult:
        raise NotImplementedError


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePaymentGateway(PaymentGateway):
    """Off-session PaymentIntent capture with a provider-side idempotency key."""

    def __init__(self, api_key: str, customer_lookup=None, max_network_retries: int = 0):
        if not api_key:
            raise GatewayConfigurationError("STRIPE_SECRET_KEY is not configured")
        self.api_key = api_key
        self.customer_lookup = customer_lookup
        self.max_network_retries = max_network_retries

    async def capture(self, amount, currency, payment_method_ref, idempotency_key):
        return await asyncio.to_thread(
            self._capture_sync, amount, currency, payment_method_ref, idempotency_key
        )

    def _capture_sync(self, amount, currency, payment_method_ref, idempotency_key):
        params = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "payment_method": payment_method_ref,
            "confirm": True,
            "off_session": True,
        }
        if self.customer_lookup is not None:
            params["customer"] = self.customer_lookup(payment_method_ref)

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.CardError as e:
            logger.info(
                "Card declined",
                extra={"decline_code": getattr(e, "code", None), "idempotency_key": idempotency_key},
            )
            payment_intent = getattr(e.error, "payment_intent", None)
            reference = getattr(payment_intent, "id", None)
            return CaptureResult.declined(e.user_message or str(e), reference=reference)
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            raise TransientGatewayError(f"Stripe unavailable: {e}") from e
        except stripe.AuthenticationError as e:
            raise GatewayConfigurationError(f"Stripe rejected credentials: {e}") from e

        status = intent.status
        if status == "succeeded":
            return CaptureResult.captured(intent.id)
        if status in PROVIDER_PENDING_STATUSES:
            return CaptureResult.pending(f"provider status {status}", reference=intent.id)

        reason = "payment failed"
        last_error = getattr(intent, "last_payment_error", None)
        if last_error is not None:
            reason = getattr(last_error, "message", None) or reason
        return CaptureResult.declined(reason, reference=intent.id)
