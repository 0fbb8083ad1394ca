from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    DECLINED = "declined"
    AUTHENTICATION_REQUIRED = "authentication_required"

    @property
    def is_terminal(self) -> bool:
        """Captured and declined attempts consume an attempt number."""
        return self in (AttemptOutcome.CAPTURED, AttemptOutcome.DECLINED)


class PaymentPurpose(str, Enum):
    RENEWAL = "renewal"
    PRORATION = "proration"


class CaptureStatus(str, Enum):
    CAPTURED = "captured"
    DECLINED = "declined"
    PENDING = "pending"


@dataclass(frozen=True)
class CaptureResult:
    status: CaptureStatus
    provider_reference: Optional[str] = None
    failure_reason: Optional[str] = None

    @classmethod
    def captured(cls, reference: str = None) -> "CaptureResult":
        return cls(CaptureStatus.CAPTURED, provider_reference=reference)

    @classmethod
    def declined(cls, reason: str, reference: str = None) -> "CaptureResult":
        return cls(CaptureStatus.DECLINED, provider_reference=reference, failure_reason=reason)

    @classmethod
    def pending(cls, reason: str = None, reference: str = None) -> "CaptureResult":
        return cls(CaptureStatus.PENDING, provider_reference=reference, failure_reason=reason)


@dataclass(frozen=True)
class PaymentAttempt:
    id: str
    subscription_id: str
    user_id: str
    amount: Decimal
    currency: str
    created_at: datetime
    billing_period: str
    attempt_number: int
    idempotency_key: Optional[str]
    outcome: AttemptOutcome
    provider_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    challenge_id: Optional[str] = None
    risk_score: Optional[int] = None
    purpose: PaymentPurpose = PaymentPurpose.RENEWAL


@dataclass(frozen=True)
class PaymentOutcome:
    """What a billing call reports back to its caller."""

    subscription_id: str
    outcome: AttemptOutcome
    attempt: Optional[PaymentAttempt] = None
    subscription_status: Optional[str] = None
    failure_count: int = 0
    duplicate: bool = False
    authentication_reason: Optional[str] = None
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome == AttemptOutcome.CAPTURED

    def to_dict(self) -> dict:
        return {
            "subscription_id": self.subscription_id,
            "outcome": self.outcome.value,
            "attempt_id": self.attempt.id if self.attempt else None,
            "subscription_status": self.subscription_status,
            "failure_count": self.failure_count,
            "duplicate": self.duplicate,
            "authentication_reason": self.authentication_reason,
            "message": self.message,
        }
