from decimal import Decimal

from securyflex_billing.domain.authentication import (
    AuthenticationChallenge,
    ChallengeStatus,
    FactorMethod,
)
from securyflex_billing.extensions import db


class AuthChallengeRecord(db.Model):
    __tablename__ = "sca_challenges"

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    subscription_id = db.Column(db.String(64), nullable=True)
    attempt_id = db.Column(db.String(64), nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    methods = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ChallengeStatus.PENDING.value)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    max_attempts = db.Column(db.Integer, nullable=False, default=3)
    sms_code_digest = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index("idx_challenge_user_status", "user_id", "status", "completed_at"),
    )

    def to_domain(self) -> AuthenticationChallenge:
        return AuthenticationChallenge(
            id=self.id,
            user_id=self.user_id,
            amount=Decimal(self.amount),
            methods=tuple(FactorMethod(m) for m in self.methods),
            created_at=self.created_at,
            expires_at=self.expires_at,
            status=ChallengeStatus(self.status),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            subscription_id=self.subscription_id,
            attempt_id=self.attempt_id,
            completed_at=self.completed_at,
            sms_code_digest=self.sms_code_digest,
        )

    def apply_domain(self, challenge: AuthenticationChallenge) -> "AuthChallengeRecord":
        self.id = challenge.id
        self.user_id = challenge.user_id
        self.subscription_id = challenge.subscription_id
        self.attempt_id = challenge.attempt_id
        self.amount = challenge.amount
        self.methods = [m.value for m in challenge.methods]
        self.status = challenge.status.value
        self.attempts = challenge.attempts
        self.max_attempts = challenge.max_attempts
        self.sms_code_digest = challenge.sms_code_digest
        self.created_at = challenge.created_at
        self.expires_at = challenge.expires_at
        self.completed_at = challenge.completed_at
        return self
