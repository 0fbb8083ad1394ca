from decimal import Decimal

from securyflex_billing.domain.subscriptions import (
    PaymentMethodType,
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
)
from securyflex_billing.extensions import db
from securyflex_billing.utils.clock import utcnow


class SubscriptionRecord(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    tier = db.Column(db.String(40), nullable=False)
    status = db.Column(db.String(20), nullable=False, index=True)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    monthly_price = db.Column(db.Numeric(10, 2), nullable=False)
    btw_rate = db.Column(db.Numeric(5, 4), nullable=False, default=Decimal("0.21"))
    btw_exempt = db.Column(db.Boolean, nullable=False, default=False)

    start_date = db.Column(db.DateTime, nullable=False)
    trial_end_date = db.Column(db.DateTime, nullable=True)
    next_payment_date = db.Column(db.DateTime, nullable=True, index=True)
    last_payment_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    canceled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(80), nullable=True)
    trial_converted_at = db.Column(db.DateTime, nullable=True)

    payment_method = db.Column(db.String(128), nullable=True)
    payment_method_type = db.Column(db.String(20), nullable=True)

    failure_count = db.Column(db.Integer, nullable=False, default=0)
    last_failure_reason = db.Column(db.String(255), nullable=True)
    last_failure_at = db.Column(db.DateTime, nullable=True)
    requires_manual_review = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.Index("idx_subscription_status_due", "status", "next_payment_date"),
    )

    def to_domain(self) -> Subscription:
        return Subscription(
            id=self.id,
            user_id=self.user_id,
            tier=SubscriptionTier(self.tier),
            status=SubscriptionStatus(self.status),
            start_date=self.start_date,
            monthly_price=Decimal(self.monthly_price),
            currency=self.currency,
            trial_end_date=self.trial_end_date,
            next_payment_date=self.next_payment_date,
            last_payment_date=self.last_payment_date,
            payment_method=self.payment_method,
            payment_method_type=(
                PaymentMethodType(self.payment_method_type) if self.payment_method_type else None
            ),
            btw_rate=Decimal(self.btw_rate),
            btw_exempt=self.btw_exempt,
            failure_count=self.failure_count,
            last_failure_reason=self.last_failure_reason,
            last_failure_at=self.last_failure_at,
            requires_manual_review=self.requires_manual_review,
            end_date=self.end_date,
            canceled_at=self.canceled_at,
            cancel_reason=self.cancel_reason,
            trial_converted_at=self.trial_converted_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply_domain(self, subscription: Subscription) -> "SubscriptionRecord":
        self.id = subscription.id
        self.user_id = subscription.user_id
        self.tier = subscription.tier.value
        self.status = subscription.status.value
        self.currency = subscription.currency
        self.monthly_price = subscription.monthly_price
        self.btw_rate = subscription.btw_rate
        self.btw_exempt = subscription.btw_exempt
        self.start_date = subscription.start_date
        self.trial_end_date = subscription.trial_end_date
        self.next_payment_date = subscription.next_payment_date
        self.last_payment_date = subscription.last_payment_date
        self.end_date = subscription.end_date
        self.canceled_at = subscription.canceled_at
        self.cancel_reason = subscription.cancel_reason
        self.trial_converted_at = subscription.trial_converted_at
        self.payment_method = subscription.payment_method
        self.payment_method_type = (
            subscription.payment_method_type.value if subscription.payment_method_type else None
        )
        self.failure_count = subscription.failure_count
        self.last_failure_reason = subscription.last_failure_reason
        self.last_failure_at = subscription.last_failure_at
        self.requires_manual_review = subscription.requires_manual_review
        self.created_at = subscription.created_at or self.created_at
        self.updated_at = subscription.updated_at or self.updated_at
        return self
