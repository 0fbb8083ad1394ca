import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pyotp
import pytest
from faker import Faker

from securyflex_billing import create_app, get_engine
from securyflex_billing.billing.gateway import PaymentGateway
from securyflex_billing.domain.payments import CaptureResult
from securyflex_billing.domain.subscriptions import (
    PaymentMethodType,
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
)
from securyflex_billing.extensions import db
from securyflex_billing.models import UserSecurityProfile
from securyflex_billing.notifications import LoggingNotifier

# Initialize Faker for generating test data
fake = Faker()


# Custom pytest marks for organizing tests
def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "payment: mark test as payment-related"
    )
    config.addinivalue_line(
        "markers",
        "auth: mark test as authentication-related"
    )


class FakeClock:
    """Controllable clock injected into the engine."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedGateway(PaymentGateway):
    """
    Gateway that replays scripted results in order.

    Entries are CaptureResults, exceptions to raise, or "hang" to never
    answer. Once the script is exhausted every capture succeeds.
    """

    def __init__(self):
        self.script = []
        self.calls = []

    def will(self, *results):
        self.script.extend(results)

    async def capture(self, amount, currency, payment_method_ref, idempotency_key):
        self.calls.append({
            "amount": amount,
            "currency": currency,
            "payment_method": payment_method_ref,
            "idempotency_key": idempotency_key,
        })
        result = self.script.pop(0) if self.script else CaptureResult.captured(f"pi_{len(self.calls)}")
        if result == "hang":
            await asyncio.sleep(60)
        if isinstance(result, Exception):
            raise result
        return result


# Test fixtures for the entire test suite

@pytest.fixture(scope="session")
def event_loop():
    """Create event loop for async tests"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


@pytest.fixture()
def clock():
    return FakeClock(datetime(2026, 3, 10, 9, 0, 0))


@pytest.fixture()
def gateway():
    return ScriptedGateway()


@pytest.fixture()
def notifier():
    return LoggingNotifier()


@pytest.fixture()
def app(clock, gateway, notifier):
    """Application on an in-memory database with a scripted gateway"""
    app = create_app("testing", gateway=gateway, notifier_backend=notifier, clock=clock)

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture()
def engine(app):
    return get_engine(app)


@pytest.fixture()
def make_subscription(engine, clock):
    """Insert a subscription in any state, bypassing the lifecycle."""

    def _make(status=SubscriptionStatus.ACTIVE, tier=SubscriptionTier.ZZP_GUARD, **overrides):
        fields = {
            "id": f"sub_{fake.uuid4()[:12]}",
            "user_id": fake.uuid4(),
            "tier": tier,
            "status": status,
            "start_date": clock.now - timedelta(days=60),
            "monthly_price": tier.plan.monthly_price,
            "next_payment_date": clock.now,
            "payment_method": "pm_card_visa",
            "payment_method_type": PaymentMethodType.CARD,
            "created_at": clock.now - timedelta(days=60),
            "updated_at": clock.now - timedelta(days=60),
        }
        fields.update(overrides)
        return engine.subscriptions.add(Subscription(**fields))

    return _make


@pytest.fixture()
def enrolled_user(engine):
    """A user with SMS, TOTP and biometric factors enrolled."""
    profile = UserSecurityProfile(
        user_id=fake.uuid4(),
        sms_verified=True,
        phone_number="+31612345678",
        totp_secret=pyotp.random_base32(),
        biometric_key=fake.sha256(),
        risk_factor=10,
    )
    return engine.profiles.save(profile)


@pytest.fixture()
def large_amount():
    return Decimal("48.39")
