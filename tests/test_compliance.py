import json
from datetime import timedelta

import pytest

from securyflex_billing.domain.payments import CaptureResult
from securyflex_billing.domain.subscriptions import SubscriptionTier
from securyflex_billing.security.compliance import period_bounds

pytestmark = pytest.mark.auth


@pytest.fixture
def billed_month(engine, gateway, make_subscription, enrolled_user, event_loop):
    """One capture, one decline and one charge held for authentication in March 2026."""
    captured = make_subscription()
    declined = make_subscription()
    challenged = make_subscription(tier=SubscriptionTier.COMPANY_PROFESSIONAL, user_id=enrolled_user.user_id)

    event_loop.run_until_complete(engine.lifecycle.process_recurring_payment(captured.id))
    gateway.will(CaptureResult.declined("card_declined"))
    event_loop.run_until_complete(engine.lifecycle.process_recurring_payment(declined.id))
    event_loop.run_until_complete(engine.lifecycle.process_recurring_payment(challenged.id))


def test_report_counts_attempts_and_decisions(engine, billed_month):
    report = engine.compliance.generate("2026-03")

    assert report.transactions == {
        "total_attempts": 3,
        "captured": 1,
        "declined": 1,
        "pending": 0,
        "authentication_required": 1,
        "captured_volume": "6.04",
        "success_rate": 0.5,
    }
    assert report.authentication["required"] == 1
    assert report.authentication["exempted"] == 2
    assert report.authentication["required_by_reason"] == {"amount_threshold": 1}
    assert report.authentication["exemption_rate"] == 0.6667


def test_unanswered_challenge_counts_as_expired(engine, clock, billed_month):
    pending = engine.compliance.generate("2026-03").challenges
    assert pending["issued"] == 1
    assert pending["pending"] == 1
    assert pending["methods_offered"] == {"sms": 1, "totp": 1, "biometric": 1}

    clock.advance(minutes=10)
    later = engine.compliance.generate("2026-03").challenges

    assert later["expired"] == 1
    assert later["pending"] == 0
    assert later["success_rate"] == 0.0


def test_other_month_is_empty_and_report_is_audited(engine, billed_month):
    report = engine.compliance.generate("2026-02")

    assert report.transactions["total_attempts"] == 0
    assert report.authentication["decisions"] == 0
    assert report.challenges["issued"] == 0
    assert len(engine.audit.entries_for("2026-02", action="compliance.report")) == 1


def test_period_bounds_rejects_bad_input():
    start, end = period_bounds("2026-12")
    assert (start.year, start.month, end.year, end.month) == (2026, 12, 2027, 1)
    assert end - start == timedelta(days=31)

    with pytest.raises(ValueError):
        period_bounds("March 2026")


def test_compliance_report_command(app, billed_month):
    import manage

    result = app.test_cli_runner().invoke(manage.compliance_report, ["--period", "2026-03"])

    assert result.exit_code == 0
    assert json.loads(result.output)["transactions"]["captured"] == 1
