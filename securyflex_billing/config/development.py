from .base import BaseConfig


class DevelopmentConfig(BaseConfig):
    """
    Development configuration.
    """

    DEBUG = True

    SECRET_KEY = "dev-secret-key"
    SCA_SIGNING_KEY = "dev-sca-signing-key"

    NOTIFIER_BACKEND = "log"
