import os
from typing import Mapping, Optional

from .base import ConfigurationError

PRODUCTION_SECRETS = ("SECRET_KEY", "SCA_SIGNING_KEY", "STRIPE_SECRET_KEY")


class Settings:
    """
    Process-level settings read from the environment.

    Production refuses to start without its secrets or on SQLite.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        environ = os.environ if environ is None else environ

        self.app_env = environ.get("APP_ENV", "development").lower()
        self.secret_key = environ.get("SECRET_KEY")
        self.sca_signing_key = environ.get("SCA_SIGNING_KEY")
        self.stripe_secret_key = environ.get("STRIPE_SECRET_KEY")
        self.DATABASE_URL = environ.get("DATABASE_URL", "sqlite:///billing.db")
        self.REDIS_URL = environ.get("REDIS_URL", "redis://localhost:6379/0")

        if self.is_production:
            self._validate_production()

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    def _validate_production(self) -> None:
        values = {
            "SECRET_KEY": self.secret_key,
            "SCA_SIGNING_KEY": self.sca_signing_key,
            "STRIPE_SECRET_KEY": self.stripe_secret_key,
        }
        missing = [name for name in PRODUCTION_SECRETS if not values[name]]
        if missing:
            raise ConfigurationError(f"Missing production settings: {', '.join(missing)}")
        if self.secret_key == "dev-secret-key":
            raise ConfigurationError("SECRET_KEY must not use the development default in production")

    @property
    def database_url(self) -> str:
        if self.is_production and self.DATABASE_URL.lower().startswith("sqlite"):
            raise ConfigurationError("SQLite is not suitable for production")
        return self.DATABASE_URL


settings = Settings()
