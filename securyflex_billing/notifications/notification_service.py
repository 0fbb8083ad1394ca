import logging
from enum import Enum

from securyflex_billing.utils.serialization import jsonable

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REMINDER = "payment_reminder"
    FINAL_WARNING = "final_warning"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    TRIAL_ENDING = "trial_ending"
    TRIAL_EXPIRED = "trial_expired"
    TIER_CHANGED = "tier_changed"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    SCA_SMS_CODE = "sca_sms_code"


class LoggingNotifier:
    """Writes notification requests to the log. Used in development and tests."""

    def __init__(self):
        self.sent = []

    def send(self, user_id, kind, payload):
        self.sent.append((user_id, kind, payload))
        logger.info(f"Notification {kind} for user {user_id}", extra={"kind": kind})


class CeleryNotifier:
    """Hands notification requests to the notification service's worker queue."""

    TASK_NAME = "notifications.deliver"

    def __init__(self, celery_app, queue="notifications"):
        self.celery_app = celery_app
        self.queue = queue

    def send(self, user_id, kind, payload):
        self.celery_app.send_task(
            self.TASK_NAME,
            args=[user_id, kind, payload],
            queue=self.queue,
        )


class NotificationService:
    """
    Fire-and-forget front for the outbound notification channel.

    Delivery failures are logged and reported as ``False``; they never
    propagate into billing code.
    """

    def __init__(self, backend):
        self.backend = backend

    def notify(self, user_id, kind, payload=None) -> bool:
        kind_value = kind.value if isinstance(kind, NotificationKind) else str(kind)
        try:
            self.backend.send(user_id, kind_value, jsonable(payload or {}))
            return True
        except Exception as e:
            logger.error(
                f"Failed to send {kind_value} notification to user {user_id}: {e}",
                extra={"kind": kind_value},
            )
            return False
