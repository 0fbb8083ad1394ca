import calendar
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from securyflex_billing.domain.payments import PaymentOutcome

CENT = Decimal("0.01")
DEFAULT_BTW_RATE = Decimal("0.21")
PRORATION_DAYS = 30


@dataclass(frozen=True)
class Plan:
    tier_id: str
    monthly_price: Decimal
    display_name: str
    trial_days: int
    organizational: bool


class SubscriptionTier(str, Enum):
    ZZP_GUARD = "zzp_guard"
    COMPANY_BASIC = "company_basic"
    COMPANY_PROFESSIONAL = "company_professional"
    COMPANY_ENTERPRISE = "company_enterprise"
    CLIENT_USAGE = "client_usage"

    @property
    def plan(self) -> Plan:
        return PLANS[self]

    @property
    def offers_trial(self) -> bool:
        return self.plan.trial_days > 0


PLANS = {
    SubscriptionTier.ZZP_GUARD: Plan("zzp_guard", Decimal("4.99"), "ZZP Beveiliger", 30, False),
    SubscriptionTier.COMPANY_BASIC: Plan("company_basic", Decimal("19.99"), "Bedrijf Basic", 14, True),
    SubscriptionTier.COMPANY_PROFESSIONAL: Plan(
        "company_professional", Decimal("39.99"), "Bedrijf Professional", 14, True
    ),
    SubscriptionTier.COMPANY_ENTERPRISE: Plan(
        "company_enterprise", Decimal("59.99"), "Bedrijf Enterprise", 14, True
    ),
    SubscriptionTier.CLIENT_USAGE: Plan("client_usage", Decimal("2.99"), "Opdrachtgever", 0, True),
}


class SubscriptionStatus(str, Enum):
    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED)


class PaymentMethodType(str, Enum):
    SEPA = "sepa"
    IDEAL = "ideal"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CASH = "cash"


def add_months(moment: datetime, months: int = 1) -> datetime:
    """Calendar month arithmetic, clamping to the last day of short months."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def billing_period(moment: datetime) -> str:
    return f"{moment.year}-{moment.month:02d}"


@dataclass(frozen=True)
class Subscription:
    id: str
    user_id: str
    tier: SubscriptionTier
    status: SubscriptionStatus
    start_date: datetime
    monthly_price: Decimal
    currency: str = "EUR"
    trial_end_date: Optional[datetime] = None
    next_payment_date: Optional[datetime] = None
    last_payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_method_type: Optional[PaymentMethodType] = None
    btw_rate: Decimal = DEFAULT_BTW_RATE
    btw_exempt: bool = False
    failure_count: int = 0
    last_failure_reason: Optional[str] = None
    last_failure_at: Optional[datetime] = None
    requires_manual_review: bool = False
    end_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    trial_converted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def billing_amount(self) -> Decimal:
        """Monthly price including BTW, rounded to cents."""
        return self.with_btw(self.monthly_price)

    def with_btw(self, net: Decimal) -> Decimal:
        if self.btw_exempt:
            return net.quantize(CENT, rounding=ROUND_HALF_UP)
        return (net * (Decimal("1") + self.btw_rate)).quantize(CENT, rounding=ROUND_HALF_UP)

    def prorated_charge(self, new_tier: SubscriptionTier, now: datetime) -> Decimal:
        """
        Price difference for the rest of the current period, including BTW.

        Uses a 30 day month and whole days until the next due date. Moving to
        a cheaper tier never produces a charge or a refund.
        """
        if self.next_payment_date is None or self.next_payment_date <= now:
            return Decimal("0.00")
        days_remaining = (self.next_payment_date - now).days
        daily_difference = (new_tier.plan.monthly_price - self.monthly_price) / PRORATION_DAYS
        if daily_difference <= 0:
            return Decimal("0.00")
        return self.with_btw(daily_difference * days_remaining)

    def days_overdue(self, now: datetime) -> int:
        if self.next_payment_date is None or now <= self.next_payment_date:
            return 0
        return (now - self.next_payment_date).days

    def is_usable(self, now: datetime) -> bool:
        """A canceled subscription stays usable until its end date."""
        if self.status == SubscriptionStatus.CANCELED:
            return self.end_date is not None and now < self.end_date
        if self.status == SubscriptionStatus.EXPIRED:
            return False
        return self.status in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.TRIALING,
            SubscriptionStatus.PAST_DUE,
        )

    def next_due_after_capture(self, now: datetime) -> datetime:
        """
        Advance the due date by one billing period.

        Anchors on the previous due date so the billing day stays stable,
        unless that date is missing or more than a period behind.
        """
        anchor = self.next_payment_date
        if anchor is None or add_months(anchor) <= now:
            anchor = now
        return add_months(anchor)

    def with_changes(self, **changes) -> "Subscription":
        return replace(self, **changes)


def trial_length(tier: SubscriptionTier) -> timedelta:
    return timedelta(days=tier.plan.trial_days)


@dataclass(frozen=True)
class TierChange:
    """Result of moving a subscription to another tier."""

    subscription: Subscription
    previous_tier: SubscriptionTier
    prorated_amount: Decimal
    payment: Optional[PaymentOutcome] = None

    @property
    def applied(self) -> bool:
        return self.subscription.tier != self.previous_tier
