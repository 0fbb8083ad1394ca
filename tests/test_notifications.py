from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock

from securyflex_billing.notifications import (
    CeleryNotifier,
    LoggingNotifier,
    NotificationKind,
    NotificationService,
)


def test_payload_is_made_json_safe():
    backend = LoggingNotifier()
    service = NotificationService(backend)

    sent = service.notify("user_1", NotificationKind.PAYMENT_SUCCEEDED, {
        "amount": Decimal("6.04"),
        "next_payment_date": datetime(2026, 4, 10, 9, 0),
    })

    assert sent is True
    assert backend.sent == [(
        "user_1",
        "payment_succeeded",
        {"amount": "6.04", "next_payment_date": "2026-04-10T09:00:00"},
    )]


def test_delivery_failure_is_swallowed():
    backend = MagicMock()
    backend.send.side_effect = ConnectionError("broker down")

    assert NotificationService(backend).notify("user_1", "payment_failed") is False


def test_celery_notifier_enqueues_task():
    celery_app = MagicMock()

    CeleryNotifier(celery_app).send("user_1", "final_warning", {"days_overdue": 14})

    celery_app.send_task.assert_called_once_with(
        "notifications.deliver",
        args=["user_1", "final_warning", {"days_overdue": 14}],
        queue="notifications",
    )
