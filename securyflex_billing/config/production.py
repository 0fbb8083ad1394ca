import os

from .base import BaseConfig


class ProductionConfig(BaseConfig):
    """
    Production configuration.
    """

    DEBUG = False

    # MUST be set via environment variable in real production
    SECRET_KEY = os.getenv("SECRET_KEY")
    SCA_SIGNING_KEY = os.getenv("SCA_SIGNING_KEY")
