from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import stripe

from securyflex_billing.billing.gateway import StripePaymentGateway, to_minor_units
from securyflex_billing.domain.payments import CaptureStatus
from securyflex_billing.errors import GatewayConfigurationError, TransientGatewayError

pytestmark = pytest.mark.payment


@pytest.fixture
def stripe_gateway():
    return StripePaymentGateway("sk_test_mock")


def _intent(status, intent_id="pi_123456789", error_message=None):
    intent = MagicMock()
    intent.status = status
    intent.id = intent_id
    intent.last_payment_error = MagicMock(message=error_message) if error_message else None
    return intent


def _capture(gateway, event_loop, key="sfx_key"):
    return event_loop.run_until_complete(
        gateway.capture(Decimal("24.19"), "EUR", "pm_card_visa", key)
    )


def test_minor_units():
    assert to_minor_units(Decimal("24.19")) == 2419
    assert to_minor_units(Decimal("6.045")) == 605


def test_missing_api_key_rejected():
    with pytest.raises(GatewayConfigurationError):
        StripePaymentGateway(None)


def test_succeeded_intent_is_captured(stripe_gateway, event_loop):
    with patch("stripe.PaymentIntent.create") as mock_create:
        mock_create.return_value = _intent("succeeded")

        result = _capture(stripe_gateway, event_loop)

    assert result.status == CaptureStatus.CAPTURED
    assert result.provider_reference == "pi_123456789"
    mock_create.assert_called_once_with(
        api_key="sk_test_mock",
        idempotency_key="sfx_key",
        amount=2419,
        currency="eur",
        payment_method="pm_card_visa",
        confirm=True,
        off_session=True,
    )


def test_processing_intent_is_pending(stripe_gateway, event_loop):
    with patch("stripe.PaymentIntent.create", return_value=_intent("processing")):
        result = _capture(stripe_gateway, event_loop)

    assert result.status == CaptureStatus.PENDING


def test_failed_intent_is_declined(stripe_gateway, event_loop):
    with patch("stripe.PaymentIntent.create",
               return_value=_intent("requires_payment_method", error_message="Your card was declined")):
        result = _capture(stripe_gateway, event_loop)

    assert result.status == CaptureStatus.DECLINED
    assert result.failure_reason == "Your card was declined"


def test_card_error_is_declined(stripe_gateway, event_loop):
    error = stripe.CardError(message="Your card has insufficient funds", param="card", code="insufficient_funds")

    with patch("stripe.PaymentIntent.create", side_effect=error):
        result = _capture(stripe_gateway, event_loop)

    assert result.status == CaptureStatus.DECLINED
    assert "insufficient" in result.failure_reason.lower()


def test_connection_error_is_transient(stripe_gateway, event_loop):
    with patch("stripe.PaymentIntent.create", side_effect=stripe.APIConnectionError("timeout")):
        with pytest.raises(TransientGatewayError):
            _capture(stripe_gateway, event_loop)


def test_bad_credentials_are_configuration_errors(stripe_gateway, event_loop):
    with patch("stripe.PaymentIntent.create", side_effect=stripe.AuthenticationError("bad key")):
        with pytest.raises(GatewayConfigurationError):
            _capture(stripe_gateway, event_loop)
