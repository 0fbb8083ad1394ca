import os
from decimal import Decimal


class ConfigurationError(Exception):
    """
    Raised when an invalid or unsupported configuration is requested.
    """
    pass


class BaseConfig:
    """
    Base configuration shared by all environments.
    """

    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = None

    # Application
    APP_NAME = "SecuryFlex Billing Engine"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///billing.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis (locks, Celery broker)
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    USE_REDIS_LOCKS = True
    SUBSCRIPTION_LOCK_TTL = 120

    # Payment provider
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    PAYMENT_CAPTURE_TIMEOUT = float(os.getenv("PAYMENT_CAPTURE_TIMEOUT", "30"))

    # Strong customer authentication
    SCA_SIGNING_KEY = os.getenv("SCA_SIGNING_KEY")
    SCA_AMOUNT_THRESHOLD = Decimal("30.00")
    SCA_CUMULATIVE_THRESHOLD = Decimal("150.00")
    SCA_MAX_CONSECUTIVE_ATTEMPTS = 5
    SCA_RISK_SCORE_THRESHOLD = 50
    SCA_CHALLENGE_TTL_SECONDS = 300
    SCA_CHALLENGE_MAX_ATTEMPTS = 3
    SCA_TOKEN_TTL_SECONDS = 1800

    # Dunning
    RETRY_BACKOFF_DAYS = (1, 3, 7)
    MANUAL_REVIEW_FAILURE_COUNT = 3

    # Trials
    TRIAL_REMINDER_DAYS = (7, 3, 1)

    # Batch billing
    BATCH_ITEM_DELAY_SECONDS = 0.5

    # Notifications: "log" or "celery"
    NOTIFIER_BACKEND = os.getenv("NOTIFIER_BACKEND", "celery")

    # Observability
    METRICS_ENABLED = os.getenv("METRICS_ENABLED", "false").lower() == "true"
