class BillingError(Exception):
    """Base class for every error raised by the billing engine."""

    code = "billing_error"

    def __init__(self, message: str = None, **context):
        self.context = context
        super().__init__(message or self.__class__.__doc__)


# Fatal / non-retryable

class SubscriptionNotFoundError(BillingError):
    """Subscription does not exist."""

    code = "subscription_not_found"


class TerminalSubscriptionError(BillingError):
    """Subscription is canceled or expired and cannot be billed."""

    code = "subscription_terminal"


class MissingPaymentMethodError(BillingError):
    """No payment method is configured for the subscription."""

    code = "payment_method_missing"


class AlreadySubscribedError(BillingError):
    """User already holds a non-terminal subscription."""

    code = "already_subscribed"


class InvalidStateError(BillingError):
    """Operation is not legal from the subscription's current status."""

    code = "invalid_state"


class InvalidStateTransition(InvalidStateError):
    """Requested status transition is not part of the lifecycle."""

    code = "invalid_transition"


# Strong customer authentication

class AuthenticationError(BillingError):
    """Strong customer authentication failed."""

    code = "authentication_error"


class ChallengeNotFoundError(AuthenticationError):
    """Authentication challenge does not exist."""

    code = "challenge_not_found"


class ChallengeExpiredError(AuthenticationError):
    """Authentication challenge expired."""

    code = "challenge_expired"


class ChallengeClosedError(AuthenticationError):
    """Authentication challenge no longer accepts responses."""

    code = "challenge_closed"


class NoEnrolledFactorsError(AuthenticationError):
    """User has not enrolled the two factors strong authentication needs."""

    code = "factors_not_enrolled"


# Payment execution

class GatewayError(BillingError):
    """Payment provider call failed."""

    code = "gateway_error"


class TransientGatewayError(GatewayError):
    """Payment provider is temporarily unavailable."""

    code = "gateway_transient"


class GatewayConfigurationError(GatewayError):
    """Payment provider is misconfigured."""

    code = "gateway_misconfigured"


class SubscriptionLockedError(BillingError):
    """Another worker is already billing this subscription."""

    code = "subscription_locked"
