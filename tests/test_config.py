import pytest

from securyflex_billing import create_app
from securyflex_billing.config import get_config
from securyflex_billing.config.base import ConfigurationError
from securyflex_billing.config.settings import Settings
from securyflex_billing.config.testing import TestingConfig
from securyflex_billing.engine import build_engine
from securyflex_billing.observability import MetricsManager
from securyflex_billing.utils.locks import LocalSubscriptionLocks, RedisSubscriptionLocks


def test_get_config_resolves_names():
    assert get_config("testing") is TestingConfig
    assert get_config("TESTING") is TestingConfig


def test_unknown_config_rejected():
    with pytest.raises(ConfigurationError):
        get_config("staging-42")


def test_app_exposes_engine(app, engine):
    assert app.extensions["billing_engine"] is engine
    assert isinstance(engine.lifecycle.locks, LocalSubscriptionLocks)
    assert engine.lifecycle.capture_timeout == 2.0


def test_engine_requires_signing_key(app):
    config = dict(app.config, SCA_SIGNING_KEY=None)

    with pytest.raises(ConfigurationError):
        build_engine(config)


def test_redis_locks_when_enabled(app, gateway, notifier):
    config = dict(app.config, USE_REDIS_LOCKS=True)

    engine = build_engine(config, gateway=gateway, notifier_backend=notifier)

    assert isinstance(engine.lifecycle.locks, RedisSubscriptionLocks)


def test_unknown_notifier_backend(app, gateway):
    config = dict(app.config, NOTIFIER_BACKEND="pigeon")

    with pytest.raises(ConfigurationError):
        build_engine(config, gateway=gateway)


def test_default_gateway_is_stripe(app, notifier):
    from securyflex_billing.billing.gateway import StripePaymentGateway

    engine = build_engine(dict(app.config), notifier_backend=notifier)

    assert isinstance(engine.lifecycle.gateway, StripePaymentGateway)


def test_create_app_with_defaults():
    app = create_app("testing")
    assert app.config["TESTING"] is True


def test_metrics_disabled_are_no_ops():
    metrics = MetricsManager(enabled=False)

    metrics.record_attempt("captured")
    with metrics.observe_capture():
        pass

    assert metrics.registry is None


def test_metrics_enabled_count_attempts():
    metrics = MetricsManager(enabled=True)

    metrics.record_attempt("captured")
    metrics.record_attempt("captured")
    metrics.record_sca_decision(True, "amount_threshold")

    assert metrics.registry.get_sample_value(
        "billing_payment_attempts_total", {"outcome": "captured"}
    ) == 2.0
    assert metrics.registry.get_sample_value(
        "billing_sca_decisions_total", {"required": "true", "reason": "amount_threshold"}
    ) == 1.0


PRODUCTION_ENV = {
    "APP_ENV": "production",
    "SECRET_KEY": "s3cret",
    "SCA_SIGNING_KEY": "sca-key",
    "STRIPE_SECRET_KEY": "sk_live_x",
    "DATABASE_URL": "postgresql://billing@db/billing",
}


def test_production_settings_require_secrets():
    with pytest.raises(ConfigurationError) as exc:
        Settings(dict(PRODUCTION_ENV, STRIPE_SECRET_KEY=""))

    assert "STRIPE_SECRET_KEY" in str(exc.value)


def test_production_settings_refuse_sqlite():
    production = Settings(dict(PRODUCTION_ENV, DATABASE_URL="sqlite:///billing.db"))

    with pytest.raises(ConfigurationError):
        production.database_url


def test_development_settings_allow_defaults():
    development = Settings({})

    assert development.is_production is False
    assert development.database_url == "sqlite:///billing.db"
    assert development.REDIS_URL == "redis://localhost:6379/0"
