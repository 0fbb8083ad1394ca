from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

REQUIRED_FACTORS = 2


class FactorMethod(str, Enum):
    SMS = "sms"
    TOTP = "totp"
    BIOMETRIC = "biometric"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


class AuthenticationReason(str, Enum):
    AMOUNT_THRESHOLD = "amount_threshold"
    CUMULATIVE_THRESHOLD = "cumulative_threshold"
    CONSECUTIVE_ATTEMPTS = "consecutive_attempts"
    RISK_SCORE = "risk_score"
    # exemption
    LOW_VALUE = "low_value"


@dataclass(frozen=True)
class AuthenticationDecision:
    required: bool
    reason: AuthenticationReason
    risk_score: int
    cumulative_amount: Decimal
    consecutive_attempts: int

    def to_dict(self) -> dict:
        return {
            "required": self.required,
            "reason": self.reason.value,
            "risk_score": self.risk_score,
            "cumulative_amount": str(self.cumulative_amount),
            "consecutive_attempts": self.consecutive_attempts,
        }


@dataclass(frozen=True)
class AuthenticationChallenge:
    id: str
    user_id: str
    amount: Decimal
    methods: Tuple[FactorMethod, ...]
    created_at: datetime
    expires_at: datetime
    status: ChallengeStatus = ChallengeStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    subscription_id: Optional[str] = None
    attempt_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    sms_code_digest: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class ValidationResult:
    success: bool
    challenge_id: str
    validated_factors: int
    attempts_used: int
    retry_allowed: bool
    failure_reasons: Tuple[str, ...] = field(default_factory=tuple)
    authentication_token: Optional[str] = None
    valid_until: Optional[datetime] = None
