from datetime import datetime, timedelta
from decimal import Decimal

from securyflex_billing.domain.dunning import DunningLevel, matching_threshold, retry_delay
from securyflex_billing.domain.subscriptions import (
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
    add_months,
    billing_period,
)
from securyflex_billing.utils.idempotency import payment_idempotency_key

NOW = datetime(2026, 3, 10, 9, 0)


def _subscription(**overrides):
    fields = dict(
        id="sub_domain",
        user_id="user_domain",
        tier=SubscriptionTier.COMPANY_BASIC,
        status=SubscriptionStatus.ACTIVE,
        start_date=NOW,
        monthly_price=Decimal("19.99"),
    )
    fields.update(overrides)
    return Subscription(**fields)


def test_billing_amount_includes_btw():
    assert _subscription().billing_amount == Decimal("24.19")


def test_billing_amount_without_btw_when_exempt():
    assert _subscription(btw_exempt=True).billing_amount == Decimal("19.99")


def test_trial_lengths_per_tier():
    assert SubscriptionTier.ZZP_GUARD.plan.trial_days == 30
    assert SubscriptionTier.COMPANY_ENTERPRISE.plan.trial_days == 14
    assert SubscriptionTier.CLIENT_USAGE.offers_trial is False


def test_add_months_clamps_short_months():
    assert add_months(datetime(2026, 1, 31)) == datetime(2026, 2, 28)
    assert add_months(datetime(2026, 12, 15)) == datetime(2027, 1, 15)


def test_billing_period_format():
    assert billing_period(NOW) == "2026-03"


def test_backoff_sequence():
    assert retry_delay(1) == timedelta(days=1)
    assert retry_delay(2) == timedelta(days=3)
    assert retry_delay(3) == timedelta(days=7)
    assert retry_delay(4) is None


def test_highest_threshold_wins():
    assert matching_threshold(35, 3).level == DunningLevel.CANCELLATION
    assert matching_threshold(35, 2).level == DunningLevel.FINAL_WARNING
    assert matching_threshold(8, 1).level == DunningLevel.REMINDER
    assert matching_threshold(6, 3) is None


def test_canceled_subscription_usable_until_end_date():
    canceled = _subscription(status=SubscriptionStatus.CANCELED, end_date=NOW + timedelta(days=5))
    assert canceled.is_usable(NOW) is True
    assert canceled.is_usable(NOW + timedelta(days=6)) is False


def test_idempotency_key_is_deterministic():
    key = payment_idempotency_key("sub_1", "2026-03", 1)

    assert key == payment_idempotency_key("sub_1", "2026-03", 1)
    assert key != payment_idempotency_key("sub_1", "2026-03", 2)
    assert key.startswith("sfx_")
    assert len(key) == 52


def test_upgrade_prorates_remaining_days_with_btw():
    subscription = _subscription(next_payment_date=NOW + timedelta(days=15))

    assert subscription.prorated_charge(SubscriptionTier.COMPANY_PROFESSIONAL, NOW) == Decimal("12.10")
    assert subscription.with_changes(btw_exempt=True).prorated_charge(
        SubscriptionTier.COMPANY_PROFESSIONAL, NOW
    ) == Decimal("10.00")


def test_downgrade_and_missing_due_date_cost_nothing():
    subscription = _subscription(next_payment_date=NOW + timedelta(days=15))

    assert subscription.prorated_charge(SubscriptionTier.ZZP_GUARD, NOW) == Decimal("0.00")
    assert _subscription().prorated_charge(SubscriptionTier.COMPANY_ENTERPRISE, NOW) == Decimal("0.00")
