import logging
import logging.config
import os
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger import jsonlogger

_subscription_id: ContextVar = ContextVar("subscription_id", default=None)


class BillingContextFilter(logging.Filter):
    """
    Inject the subscription currently being billed into every log record.
    """

    def filter(self, record):
        record.subscription_id = _subscription_id.get()
        return True


@contextmanager
def billing_context(subscription_id):
    token = _subscription_id.set(subscription_id)
    try:
        yield
    finally:
        _subscription_id.reset(token)


def build_logging_config(log_level=None):
    level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "billing_context": {
                "()": BillingContextFilter,
            },
        },
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "fmt": (
                    "%(asctime)s "
                    "%(levelname)s "
                    "%(name)s "
                    "%(message)s "
                    "%(subscription_id)s "
                    "%(module)s "
                    "%(funcName)s "
                    "%(lineno)d"
                ),
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "filters": ["billing_context"],
            },
        },
        "loggers": {
            "audit": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False,
            },
        },
        "root": {
            "level": level,
            "handlers": ["default"],
        },
    }


def setup_logging(app):
    """Configure structured JSON logging for the application"""
    logging.config.dictConfig(build_logging_config(app.config.get("LOG_LEVEL")))
    app.logger.debug("Logging configured", extra={"app_name": app.config.get("APP_NAME")})
    return app


def configure_logging_for_workers():
    """Configure logging for Celery workers and standalone scripts"""
    logging.config.dictConfig(build_logging_config())
