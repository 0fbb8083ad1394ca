from datetime import timedelta
from unittest.mock import patch

import pytest

from securyflex_billing.domain.subscriptions import SubscriptionStatus
from securyflex_billing.workers import billing_tasks
from securyflex_billing.workers.celerybeat import CELERY_BEAT_SCHEDULE


@pytest.fixture
def run_task(app):
    """Run a task body in the test app context without the Redis idempotency guard."""

    def _run(task):
        with patch("securyflex_billing.workers.base_tasks.get_flask_app", return_value=app), \
                patch("securyflex_billing.workers.base_tasks.get_redis_client"), \
                patch("securyflex_billing.workers.base_tasks.ensure_idempotent") as guard:
            guard.return_value.__enter__.return_value = None
            guard.return_value.__exit__.return_value = False
            return task.apply().get()

    return _run


def test_beat_schedule_covers_billing_jobs():
    tasks = {entry["task"] for entry in CELERY_BEAT_SCHEDULE.values()}
    assert tasks == {
        "billing.process_due_subscriptions",
        "billing.dispatch_retries",
        "billing.run_dunning_sweep",
        "billing.expire_trials",
        "billing.send_trial_reminders",
    }


def test_process_due_task(run_task, make_subscription, gateway):
    make_subscription()

    result = run_task(billing_tasks.process_due_subscriptions)

    assert result["processed"] == 1
    assert result["succeeded"] == 1
    assert len(gateway.calls) == 1


def test_expire_trials_task(run_task, make_subscription, clock):
    subscription = make_subscription(
        status=SubscriptionStatus.TRIALING,
        trial_end_date=clock.now - timedelta(days=1),
        payment_method=None,
    )

    result = run_task(billing_tasks.expire_trials)

    assert result == {"expired": [subscription.id]}


def test_trial_reminders_task(run_task, make_subscription, notifier, clock):
    subscription = make_subscription(
        status=SubscriptionStatus.TRIALING,
        trial_end_date=clock.now + timedelta(days=2),
    )

    result = run_task(billing_tasks.send_trial_reminders)

    assert result == {"reminded": [subscription.id]}
    assert [kind for (_, kind, _) in notifier.sent] == ["trial_ending"]


def test_trial_reminders_task(run_task, make_subscription, notifier, clock):
    subscription = make_subscription(
        status=SubscriptionStatus.TRIALING,
        trial_end_date=clock.now + timedelta(days=2),
    )

    result = run_task(billing_tasks.send_trial_reminders)

    assert result == {"reminded": [subscription.id]}
    assert [kind for (_, kind, _) in notifier.sent] == ["trial_ending"]


def test_dunning_sweep_task(run_task, make_subscription, notifier, clock):
    make_subscription(
        status=SubscriptionStatus.PAST_DUE,
        failure_count=1,
        next_payment_date=clock.now - timedelta(days=8),
    )

    result = run_task(billing_tasks.run_dunning_sweep)

    assert result["notified"] == 1


def test_dispatch_retries_task(run_task):
    assert run_task(billing_tasks.dispatch_retries)["examined"] == 0
