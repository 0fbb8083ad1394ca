from .base import BaseConfig


class TestingConfig(BaseConfig):
    """
    Configuration used by the test suite.
    """

    TESTING = True

    SECRET_KEY = "test-secret-key"
    SCA_SIGNING_KEY = "test-sca-signing-key"

    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"

    USE_REDIS_LOCKS = False
    STRIPE_SECRET_KEY = "sk_test_mock"
    NOTIFIER_BACKEND = "log"
    BATCH_ITEM_DELAY_SECONDS = 0
    PAYMENT_CAPTURE_TIMEOUT = 2.0
