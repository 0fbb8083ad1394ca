import logging
import uuid
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from typing import Mapping, Optional

from securyflex_billing.domain.authentication import (
    REQUIRED_FACTORS,
    AuthenticationChallenge,
    AuthenticationDecision,
    AuthenticationReason,
    ChallengeStatus,
    FactorMethod,
    ValidationResult,
)
from securyflex_billing.domain.subscriptions import PaymentMethodType
from securyflex_billing.errors import (
    ChallengeClosedError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
    NoEnrolledFactorsError,
)
from securyflex_billing.notifications import NotificationKind
from securyflex_billing.security.factors import generate_sms_code
from securyflex_billing.utils.clock import utcnow

logger = logging.getLogger(__name__)

METHOD_RISK_WEIGHTS = {
    PaymentMethodType.SEPA: 8,
    PaymentMethodType.IDEAL: 5,
    PaymentMethodType.BANK_TRANSFER: 10,
    PaymentMethodType.CASH: 25,
    PaymentMethodType.CARD: 10,
}

# (lower bound exclusive, points), highest first
AMOUNT_RISK_TIERS = (
    (Decimal("1000"), 30),
    (Decimal("500"), 20),
    (Decimal("100"), 10),
)


@dataclass(frozen=True)
class AuthenticationPolicy:
    amount_threshold: Decimal = Decimal("30.00")
    cumulative_threshold: Decimal = Decimal("150.00")
    max_consecutive_attempts: int = 5
    risk_score_threshold: int = 50
    cumulative_window: timedelta = timedelta(hours=24)
    consecutive_window: timedelta = timedelta(hours=1)
    challenge_ttl: timedelta = timedelta(minutes=5)
    max_challenge_attempts: int = 3

    @classmethod
    def from_config(cls, config) -> "AuthenticationPolicy":
        return cls(
            amount_threshold=Decimal(str(config["SCA_AMOUNT_THRESHOLD"])),
            cumulative_threshold=Decimal(str(config["SCA_CUMULATIVE_THRESHOLD"])),
            max_consecutive_attempts=config["SCA_MAX_CONSECUTIVE_ATTEMPTS"],
            risk_score_threshold=config["SCA_RISK_SCORE_THRESHOLD"],
            challenge_ttl=timedelta(seconds=config["SCA_CHALLENGE_TTL_SECONDS"]),
            max_challenge_attempts=config["SCA_CHALLENGE_MAX_ATTEMPTS"],
        )


def risk_score(amount: Decimal, method_type: Optional[PaymentMethodType], user_risk_factor: int) -> int:
    score = 0
    for bound, points in AMOUNT_RISK_TIERS:
        if amount > bound:
            score += points
            break

    if method_type is not None:
        score += METHOD_RISK_WEIGHTS.get(PaymentMethodType(method_type), 0)

    score += user_risk_factor
    return max(0, min(100, score))


class RiskAuthenticationGate:
    """
    Strong customer authentication for recurring charges.

    Decides per charge whether a challenge is required, issues multi-factor
    challenges and validates responses. Every decision and every
    validation outcome lands in the audit log.
    """

    def __init__(self, ledger, challenges, profiles, factors, tokens, audit,
                 notifications, policy: AuthenticationPolicy = None, metrics=None, clock=utcnow):
        self.ledger = ledger
        self.challenges = challenges
        self.profiles = profiles
        self.factors = factors
        self.tokens = tokens
        self.audit = audit
        self.notifications = notifications
        self.policy = policy or AuthenticationPolicy()
        self.metrics = metrics
        self.clock = clock

    # Decision

    def evaluate(self, user_id: str, amount: Decimal,
                 payment_method_type: Optional[PaymentMethodType] = None,
                 subscription_id: str = None) -> AuthenticationDecision:
        now = self.clock()
        policy = self.policy
        last_authenticated = self.challenges.last_completed_at(user_id)

        cumulative_since = last_authenticated or now - policy.cumulative_window
        cumulative = self.ledger.captured_total_since(user_id, cumulative_since)

        consecutive_since = last_authenticated or now - policy.consecutive_window
        consecutive = self.ledger.attempts_since(user_id, consecutive_since)

        score = risk_score(amount, payment_method_type, self.profiles.risk_factor(user_id))

        if amount > policy.amount_threshold:
            required, reason = True, AuthenticationReason.AMOUNT_THRESHOLD
        elif cumulative > policy.cumulative_threshold:
            required, reason = True, AuthenticationReason.CUMULATIVE_THRESHOLD
        elif consecutive >= policy.max_consecutive_attempts:
            required, reason = True, AuthenticationReason.CONSECUTIVE_ATTEMPTS
        elif score > policy.risk_score_threshold:
            required, reason = True, AuthenticationReason.RISK_SCORE
        else:
            required, reason = False, AuthenticationReason.LOW_VALUE

        decision = AuthenticationDecision(
            required=required,
            reason=reason,
            risk_score=score,
            cumulative_amount=cumulative,
            consecutive_attempts=consecutive,
        )

        self.audit.record(
            "sca.required" if required else "sca.exempted",
            subject_id=subscription_id or user_id,
            actor_id=user_id,
            details={"amount": amount, **decision.to_dict()},
        )
        if self.metrics is not None:
            self.metrics.record_sca_decision(required, reason.value)
        return decision

    # Challenges

    def create_challenge(self, user_id: str, amount: Decimal,
                         subscription_id: str = None, attempt_id: str = None) -> AuthenticationChallenge:
        methods = self.factors.enrolled_methods(user_id)
        if len(methods) < REQUIRED_FACTORS:
            self.audit.record(
                "sca.challenge_unavailable",
                subject_id=subscription_id or user_id,
                actor_id=user_id,
                details={"enrolled": [m.value for m in methods]},
            )
            raise NoEnrolledFactorsError(
                f"User {user_id} has {len(methods)} enrolled factor(s), {REQUIRED_FACTORS} required",
                user_id=user_id,
            )

        now = self.clock()
        challenge_id = str(uuid.uuid4())
        sms_code = None
        sms_digest = None
        if FactorMethod.SMS in methods:
            sms_code = generate_sms_code()
            sms_digest = self.factors.sms_digest(challenge_id, sms_code)

        challenge = self.challenges.add(AuthenticationChallenge(
            id=challenge_id,
            user_id=user_id,
            amount=amount,
            methods=methods,
            created_at=now,
            expires_at=now + self.policy.challenge_ttl,
            max_attempts=self.policy.max_challenge_attempts,
            subscription_id=subscription_id,
            attempt_id=attempt_id,
            sms_code_digest=sms_digest,
        ))

        if sms_code is not None:
            self.notifications.notify(
                user_id,
                NotificationKind.SCA_SMS_CODE,
                {"challenge_id": challenge_id, "code": sms_code, "amount": amount},
            )

        self.audit.record(
            "sca.challenge_created",
            subject_id=challenge_id,
            actor_id=user_id,
            details={
                "subscription_id": subscription_id,
                "amount": amount,
                "methods": [m.value for m in methods],
                "expires_at": challenge.expires_at,
            },
        )
        return challenge

    def validate_response(self, challenge_id: str, provided: Mapping[str, str]) -> ValidationResult:
        now = self.clock()
        challenge = self.challenges.get(challenge_id)
        if challenge is None:
            self._audit_rejection(challenge_id, None, "not_found")
            raise ChallengeNotFoundError(f"Challenge {challenge_id} not found", challenge_id=challenge_id)

        if challenge.status == ChallengeStatus.EXPIRED or (
            challenge.status == ChallengeStatus.PENDING and challenge.is_expired(now)
        ):
            if challenge.status == ChallengeStatus.PENDING:
                self.challenges.update(challenge_id, lambda c: replace(c, status=ChallengeStatus.EXPIRED))
            self._audit_rejection(challenge_id, challenge.user_id, "expired")
            raise ChallengeExpiredError(
                f"Challenge {challenge_id} expired at {challenge.expires_at.isoformat()}",
                challenge_id=challenge_id,
            )

        if challenge.status != ChallengeStatus.PENDING or challenge.attempts >= challenge.max_attempts:
            self._audit_rejection(challenge_id, challenge.user_id, f"closed_{challenge.status.value}")
            raise ChallengeClosedError(
                f"Challenge {challenge_id} is {challenge.status.value}",
                challenge_id=challenge_id,
            )

        try:
            validated, reasons = self.factors.validate(challenge, provided or {})
        except Exception as e:
            self.audit.record(
                "sca.validation_error",
                subject_id=challenge_id,
                actor_id=challenge.user_id,
                details={"error": str(e), "error_type": type(e).__name__},
            )
            raise

        success = validated >= REQUIRED_FACTORS

        def record_attempt(current):
            # Counted against the locked row; a parallel submission may have closed it.
            if current.status != ChallengeStatus.PENDING or current.attempts >= current.max_attempts:
                raise ChallengeClosedError(
                    f"Challenge {challenge_id} is {current.status.value}",
                    challenge_id=challenge_id,
                )
            attempts = current.attempts + 1
            if success:
                status = ChallengeStatus.COMPLETED
            elif attempts >= current.max_attempts:
                status = ChallengeStatus.FAILED
            else:
                status = ChallengeStatus.PENDING
            return replace(
                current,
                attempts=attempts,
                status=status,
                completed_at=now if success else current.completed_at,
            )

        try:
            updated = self.challenges.update(challenge_id, record_attempt)
        except ChallengeClosedError:
            self._audit_rejection(challenge_id, challenge.user_id, "closed_concurrently")
            raise
        attempts = updated.attempts
        status = updated.status

        token = valid_until = None
        if success:
            token, valid_until = self.tokens.issue(challenge.user_id, challenge_id, now)
        elif not reasons:
            reasons = ("insufficient_factors",)

        result = ValidationResult(
            success=success,
            challenge_id=challenge_id,
            validated_factors=validated,
            attempts_used=attempts,
            retry_allowed=status == ChallengeStatus.PENDING,
            failure_reasons=tuple(reasons) if not success else (),
            authentication_token=token,
            valid_until=valid_until,
        )

        self.audit.record(
            "sca.successful" if success else "sca.failed",
            subject_id=challenge_id,
            actor_id=challenge.user_id,
            details={
                "subscription_id": challenge.subscription_id,
                "validated_factors": validated,
                "attempts": attempts,
                "status": status.value,
                "failure_reasons": list(result.failure_reasons),
            },
        )
        return result

    def verify_token(self, token: str, user_id: str) -> bool:
        claims = self.tokens.decode(token, self.clock())
        if claims is None or claims.get("sub") != user_id or not claims.get("cid"):
            return False

        challenge = self.challenges.get(claims.get("cid"))
        return challenge is not None and challenge.status == ChallengeStatus.COMPLETED

    def _audit_rejection(self, challenge_id, user_id, reason):
        logger.warning(f"Challenge {challenge_id} rejected: {reason}")
        self.audit.record(
            "sca.validation_rejected",
            subject_id=challenge_id,
            actor_id=user_id,
            details={"reason": reason},
        )
