from decimal import Decimal

from securyflex_billing.domain.payments import AttemptOutcome, PaymentAttempt, PaymentPurpose
from securyflex_billing.extensions import db


class PaymentAttemptRecord(db.Model):
    """Append-only ledger row; never updated after insert."""

    __tablename__ = "payment_attempts"

    id = db.Column(db.String(64), primary_key=True)
    subscription_id = db.Column(db.String(64), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    billing_period = db.Column(db.String(7), nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False)
    idempotency_key = db.Column(db.String(128), nullable=True)
    outcome = db.Column(db.String(30), nullable=False)
    provider_reference = db.Column(db.String(128), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    challenge_id = db.Column(db.String(64), nullable=True)
    risk_score = db.Column(db.Integer, nullable=True)
    purpose = db.Column(db.String(20), nullable=False, default=PaymentPurpose.RENEWAL.value)
    created_at = db.Column(db.DateTime, nullable=False, index=True)

    __table_args__ = (
        db.Index("idx_attempt_subscription_period", "subscription_id", "billing_period"),
        db.Index("idx_attempt_user_created", "user_id", "created_at"),
    )

    @classmethod
    def from_domain(cls, attempt: PaymentAttempt) -> "PaymentAttemptRecord":
        return cls(
            id=attempt.id,
            subscription_id=attempt.subscription_id,
            user_id=attempt.user_id,
            amount=attempt.amount,
            currency=attempt.currency,
            billing_period=attempt.billing_period,
            attempt_number=attempt.attempt_number,
            idempotency_key=attempt.idempotency_key,
            outcome=attempt.outcome.value,
            provider_reference=attempt.provider_reference,
            failure_reason=attempt.failure_reason,
            challenge_id=attempt.challenge_id,
            risk_score=attempt.risk_score,
            purpose=attempt.purpose.value,
            created_at=attempt.created_at,
        )

    def to_domain(self) -> PaymentAttempt:
        return PaymentAttempt(
            id=self.id,
            subscription_id=self.subscription_id,
            user_id=self.user_id,
            amount=Decimal(self.amount),
            currency=self.currency,
            created_at=self.created_at,
            billing_period=self.billing_period,
            attempt_number=self.attempt_number,
            idempotency_key=self.idempotency_key,
            outcome=AttemptOutcome(self.outcome),
            provider_reference=self.provider_reference,
            failure_reason=self.failure_reason,
            challenge_id=self.challenge_id,
            risk_score=self.risk_score,
            purpose=PaymentPurpose(self.purpose),
        )
