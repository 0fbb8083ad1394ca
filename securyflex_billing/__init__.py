"""
SecuryFlex billing engine.

Flask application factory: loads the environment config, binds the database,
configures structured logging and attaches a fully wired billing engine to
``app.extensions["billing_engine"]``.
"""

import os

from flask import Flask, current_app

from securyflex_billing.config import get_config
from securyflex_billing.config.settings import Settings
from securyflex_billing.engine import BillingEngine, build_engine
from securyflex_billing.extensions import db
from securyflex_billing.logging_config import setup_logging
from securyflex_billing.utils.clock import utcnow

__version__ = "1.0.0"


def create_app(config_name=None, gateway=None, notifier_backend=None, clock=utcnow, locks=None):
    """Create and configure the billing application"""
    config_class = get_config(config_name)

    app = Flask(__name__)
    app.config.from_object(config_class)

    if config_class.__name__ == "ProductionConfig":
        # Refuses SQLite and missing secrets.
        production = Settings(dict(os.environ, APP_ENV="production"))
        app.config["SQLALCHEMY_DATABASE_URI"] = production.database_url

    setup_logging(app)
    db.init_app(app)

    app.extensions["billing_engine"] = build_engine(
        app.config,
        gateway=gateway,
        notifier_backend=notifier_backend,
        clock=clock,
        locks=locks,
    )

    app.logger.info(f"{app.config['APP_NAME']} started ({config_class.__name__})")
    return app


def get_engine(app=None) -> BillingEngine:
    return (app or current_app).extensions["billing_engine"]
