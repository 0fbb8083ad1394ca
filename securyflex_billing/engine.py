"""
Composition root for the billing engine.

Everything the components need (stores, gateway, notifier, audit sink,
locks, clock) is constructed here and passed in explicitly.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from securyflex_billing.audit import AuditLogger
from securyflex_billing.billing.batch import BatchBillingCoordinator
from securyflex_billing.billing.dunning import DunningScheduler
from securyflex_billing.billing.gateway import PaymentGateway, StripePaymentGateway
from securyflex_billing.billing.lifecycle import SubscriptionLifecycleManager
from securyflex_billing.billing.state_machine import SubscriptionStateMachine
from securyflex_billing.config.base import ConfigurationError
from securyflex_billing.notifications import CeleryNotifier, LoggingNotifier, NotificationService
from securyflex_billing.observability import MetricsManager
from securyflex_billing.repositories import (
    ChallengeStore,
    DunningNoticeStore,
    PaymentAttemptLedger,
    RetryScheduleStore,
    SecurityProfileStore,
    SubscriptionStore,
    TrialReminderStore,
)
from securyflex_billing.security.authentication_gate import AuthenticationPolicy, RiskAuthenticationGate
from securyflex_billing.security.compliance import ComplianceReporter
from securyflex_billing.security.factors import FactorVerifier
from securyflex_billing.security.tokens import AuthenticationTokenService
from securyflex_billing.utils.clock import utcnow
from securyflex_billing.utils.locks import LocalSubscriptionLocks, RedisSubscriptionLocks

logger = logging.getLogger(__name__)


@dataclass
class BillingEngine:
    lifecycle: SubscriptionLifecycleManager
    gate: RiskAuthenticationGate
    dunning: DunningScheduler
    batch: BatchBillingCoordinator
    compliance: ComplianceReporter
    subscriptions: SubscriptionStore
    ledger: PaymentAttemptLedger
    profiles: SecurityProfileStore
    notifications: NotificationService
    audit: AuditLogger
    metrics: MetricsManager

    async def process_dunning_sweep(self):
        return await self.dunning.process_dunning_sweep(self.lifecycle)

    async def dispatch_due_retries(self):
        return await self.dunning.dispatch_due_retries(self.lifecycle)


def _notifier_backend(config):
    backend = config.get("NOTIFIER_BACKEND", "log")
    if backend == "log":
        return LoggingNotifier()
    if backend == "celery":
        from securyflex_billing.workers.celery_app import celery_app
        return CeleryNotifier(celery_app)
    raise ConfigurationError(f"Unknown NOTIFIER_BACKEND: {backend}")


def _locks(config):
    if config.get("USE_REDIS_LOCKS"):
        return RedisSubscriptionLocks(config["REDIS_URL"], ttl=config.get("SUBSCRIPTION_LOCK_TTL", 120))
    return LocalSubscriptionLocks()


def build_engine(config, gateway: PaymentGateway = None, notifier_backend=None,
                 clock=utcnow, locks=None) -> BillingEngine:
    """
    Wire up a billing engine from a Flask config mapping.

    Stores use the Flask-SQLAlchemy session, so the engine must be used
    inside an application context.
    """
    if not config.get("SCA_SIGNING_KEY"):
        raise ConfigurationError("SCA_SIGNING_KEY is not configured")

    metrics = MetricsManager(enabled=config.get("METRICS_ENABLED", False))
    audit = AuditLogger(clock=clock)
    notifications = NotificationService(notifier_backend or _notifier_backend(config))

    subscriptions = SubscriptionStore()
    ledger = PaymentAttemptLedger()
    challenges = ChallengeStore()
    profiles = SecurityProfileStore()

    gate = RiskAuthenticationGate(
        ledger=ledger,
        challenges=challenges,
        profiles=profiles,
        factors=FactorVerifier(profiles, config["SCA_SIGNING_KEY"]),
        tokens=AuthenticationTokenService(
            config["SCA_SIGNING_KEY"], timedelta(seconds=config["SCA_TOKEN_TTL_SECONDS"])
        ),
        audit=audit,
        notifications=notifications,
        policy=AuthenticationPolicy.from_config(config),
        metrics=metrics,
        clock=clock,
    )

    dunning = DunningScheduler(
        subscriptions=subscriptions,
        retries=RetryScheduleStore(),
        notices=DunningNoticeStore(),
        notifications=notifications,
        audit=audit,
        backoff_days=config["RETRY_BACKOFF_DAYS"],
        metrics=metrics,
        clock=clock,
    )

    lifecycle = SubscriptionLifecycleManager(
        subscriptions=subscriptions,
        ledger=ledger,
        gateway=gateway or StripePaymentGateway(config.get("STRIPE_SECRET_KEY")),
        gate=gate,
        dunning=dunning,
        locks=locks or _locks(config),
        notifications=notifications,
        audit=audit,
        state_machine=SubscriptionStateMachine(config["MANUAL_REVIEW_FAILURE_COUNT"]),
        capture_timeout=config["PAYMENT_CAPTURE_TIMEOUT"],
        trial_reminders=TrialReminderStore(),
        trial_reminder_days=config["TRIAL_REMINDER_DAYS"],
        metrics=metrics,
        clock=clock,
    )

    batch = BatchBillingCoordinator(
        subscriptions=subscriptions,
        lifecycle=lifecycle,
        audit=audit,
        item_delay=config["BATCH_ITEM_DELAY_SECONDS"],
        metrics=metrics,
        clock=clock,
    )

    logger.debug("Billing engine built")
    return BillingEngine(
        lifecycle=lifecycle,
        gate=gate,
        dunning=dunning,
        batch=batch,
        compliance=ComplianceReporter(ledger, challenges, audit, clock=clock),
        subscriptions=subscriptions,
        ledger=ledger,
        profiles=profiles,
        notifications=notifications,
        audit=audit,
        metrics=metrics,
    )
