import json
from datetime import timedelta

import pytest

from securyflex_billing.domain.subscriptions import SubscriptionStatus


@pytest.fixture
def runner(app):
    import manage

    cli_runner = app.test_cli_runner()

    def _invoke(command):
        return cli_runner.invoke(getattr(manage, command))

    return _invoke


def test_process_due_command(runner, make_subscription):
    make_subscription()

    result = runner("process_due")

    assert result.exit_code == 0
    assert json.loads(result.output)["succeeded"] == 1


def test_expire_trials_command(runner, make_subscription, clock):
    make_subscription(
        status=SubscriptionStatus.TRIALING,
        trial_end_date=clock.now - timedelta(days=1),
        payment_method=None,
    )

    result = runner("expire_trials")

    assert result.exit_code == 0
    assert "Expired 1 trial(s)" in result.output


def test_trial_reminders_command(runner, make_subscription, clock):
    make_subscription(status=SubscriptionStatus.TRIALING, trial_end_date=clock.now + timedelta(days=5))

    result = runner("trial_reminders")

    assert result.exit_code == 0
    assert "Sent 1 trial reminder(s)" in result.output


def test_dunning_sweep_command(runner):
    result = runner("dunning_sweep")

    assert result.exit_code == 0
    assert json.loads(result.output)["examined"] == 0
