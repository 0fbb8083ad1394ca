import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pyotp
import pytest
from faker import Faker

from securyflex_billing.domain.authentication import AuthenticationReason, ChallengeStatus, FactorMethod
from securyflex_billing.domain.payments import AttemptOutcome, PaymentAttempt
from securyflex_billing.domain.subscriptions import PaymentMethodType
from securyflex_billing.errors import (
    ChallengeClosedError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
    NoEnrolledFactorsError,
)
from securyflex_billing.security.authentication_gate import risk_score
from securyflex_billing.security.factors import biometric_assertion

fake = Faker()

pytestmark = pytest.mark.auth


def _sms_code(notifier):
    return [payload for (_, kind, payload) in notifier.sent if kind == "sca_sms_code"][-1]["code"]


def _record_attempt(engine, clock, user_id, amount, outcome=AttemptOutcome.CAPTURED):
    engine.ledger.append(PaymentAttempt(
        id=str(uuid.uuid4()),
        subscription_id="sub_history",
        user_id=user_id,
        amount=Decimal(amount),
        currency="EUR",
        created_at=clock.now,
        billing_period="2026-03",
        attempt_number=1,
        idempotency_key=None,
        outcome=outcome,
    ))


# Decisions

def test_amount_boundary(engine):
    """30.00 is exempt, 30.01 requires authentication"""
    user_id = fake.uuid4()

    at_limit = engine.gate.evaluate(user_id, Decimal("30.00"), PaymentMethodType.CARD)
    above = engine.gate.evaluate(user_id, Decimal("30.01"), PaymentMethodType.CARD)

    assert at_limit.required is False
    assert at_limit.reason == AuthenticationReason.LOW_VALUE
    assert above.required is True
    assert above.reason == AuthenticationReason.AMOUNT_THRESHOLD


def test_cumulative_amount_requires_authentication(engine, clock):
    user_id = fake.uuid4()
    for _ in range(6):
        _record_attempt(engine, clock, user_id, "26.00")
    clock.advance(hours=2)

    decision = engine.gate.evaluate(user_id, Decimal("10.00"))

    assert decision.required is True
    assert decision.reason == AuthenticationReason.CUMULATIVE_THRESHOLD
    assert decision.cumulative_amount == Decimal("156.00")


def test_cumulative_window_is_24_hours(engine, clock):
    user_id = fake.uuid4()
    for _ in range(6):
        _record_attempt(engine, clock, user_id, "26.00")
    clock.advance(hours=25)

    assert engine.gate.evaluate(user_id, Decimal("10.00")).required is False


def test_consecutive_attempts_require_authentication(engine, clock):
    user_id = fake.uuid4()
    for _ in range(5):
        _record_attempt(engine, clock, user_id, "1.00", outcome=AttemptOutcome.DECLINED)
    clock.advance(minutes=10)

    decision = engine.gate.evaluate(user_id, Decimal("5.00"))

    assert decision.reason == AuthenticationReason.CONSECUTIVE_ATTEMPTS
    assert decision.consecutive_attempts == 5


def test_completed_challenge_resets_counters(engine, notifier, enrolled_user, clock):
    for _ in range(6):
        _record_attempt(engine, clock, enrolled_user.user_id, "26.00")
    clock.advance(minutes=1)

    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("10.00"))
    engine.gate.validate_response(challenge.id, {
        "sms_code": _sms_code(notifier),
        "totp_code": pyotp.TOTP(enrolled_user.totp_secret).now(),
    })
    clock.advance(minutes=1)

    decision = engine.gate.evaluate(enrolled_user.user_id, Decimal("10.00"))
    assert decision.required is False
    assert decision.cumulative_amount == Decimal("0")


def test_high_risk_user_requires_authentication(engine, enrolled_user):
    enrolled_user.risk_factor = 45
    engine.profiles.save(enrolled_user)

    decision = engine.gate.evaluate(enrolled_user.user_id, Decimal("20.00"), PaymentMethodType.CASH)

    assert decision.risk_score == 70
    assert decision.reason == AuthenticationReason.RISK_SCORE


def test_risk_score_components():
    assert risk_score(Decimal("1500"), PaymentMethodType.CASH, 10) == 65
    assert risk_score(Decimal("600"), PaymentMethodType.IDEAL, 10) == 35
    assert risk_score(Decimal("150"), PaymentMethodType.SEPA, 10) == 28
    assert risk_score(Decimal("5"), None, 0) == 0
    assert risk_score(Decimal("5000"), PaymentMethodType.CASH, 90) == 100


def test_every_decision_is_audited(engine):
    user_id = fake.uuid4()
    engine.gate.evaluate(user_id, Decimal("12.00"), subscription_id="sub_audit")
    engine.gate.evaluate(user_id, Decimal("45.00"), subscription_id="sub_audit")

    actions = [entry.action for entry in engine.audit.entries_for("sub_audit")]
    assert actions == ["sca.exempted", "sca.required"]

    exempted = engine.audit.entries_for("sub_audit", "sca.exempted")[0]
    assert exempted.details["reason"] == "low_value"
    assert "risk_score" in exempted.details


# Challenges

def test_challenge_needs_two_enrolled_factors(engine):
    from securyflex_billing.models import UserSecurityProfile

    user_id = fake.uuid4()
    engine.profiles.save(UserSecurityProfile(user_id=user_id, sms_verified=True, phone_number="+31600000000"))

    with pytest.raises(NoEnrolledFactorsError):
        engine.gate.create_challenge(user_id, Decimal("45.00"))


def test_challenge_offers_enrolled_factors_and_sends_code(engine, notifier, enrolled_user, clock):
    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("45.00"), subscription_id="sub_1")

    assert set(challenge.methods) == {FactorMethod.SMS, FactorMethod.TOTP, FactorMethod.BIOMETRIC}
    assert challenge.expires_at == clock.now + timedelta(minutes=5)
    assert challenge.max_attempts == 3
    code = _sms_code(notifier)
    assert len(code) == 6
    assert code not in (challenge.sms_code_digest or "")


def test_two_factors_complete_challenge(engine, notifier, enrolled_user, clock):
    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("45.00"))

    result = engine.gate.validate_response(challenge.id, {
        "sms_code": _sms_code(notifier),
        "biometric_assertion": biometric_assertion(enrolled_user.biometric_key, challenge.id),
    })

    assert result.success is True
    assert result.validated_factors == 2
    assert result.valid_until == clock.now + timedelta(minutes=30)
    assert engine.gate.verify_token(result.authentication_token, enrolled_user.user_id) is True
    assert engine.gate.challenges.get(challenge.id).status == ChallengeStatus.COMPLETED


def test_single_factor_never_completes(engine, notifier, enrolled_user):
    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("45.00"))

    result = engine.gate.validate_response(challenge.id, {"sms_code": _sms_code(notifier)})

    assert result.success is False
    assert result.validated_factors == 1
    assert result.retry_allowed is True
    assert result.authentication_token is None
    assert "insufficient_factors" in result.failure_reasons


def test_wrong_codes_exhaust_attempts(engine, enrolled_user):
    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("45.00"))
    wrong = {"sms_code": "000000", "totp_code": "000000"}

    first = engine.gate.validate_response(challenge.id, wrong)
    engine.gate.validate_response(challenge.id, wrong)
    third = engine.gate.validate_response(challenge.id, wrong)

    assert first.retry_allowed is True
    assert "invalid_sms" in first.failure_reasons
    assert third.retry_allowed is False
    assert third.attempts_used == 3
    assert engine.gate.challenges.get(challenge.id).status == ChallengeStatus.FAILED

    with pytest.raises(ChallengeClosedError):
        engine.gate.validate_response(challenge.id, wrong)


def test_expired_challenge_rejected(engine, notifier, enrolled_user, clock):
    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("45.00"))
    code = _sms_code(notifier)
    clock.advance(minutes=5, seconds=1)

    with pytest.raises(ChallengeExpiredError):
        engine.gate.validate_response(challenge.id, {
            "sms_code": code,
            "totp_code": pyotp.TOTP(enrolled_user.totp_secret).now(),
        })

    assert engine.gate.challenges.get(challenge.id).status == ChallengeStatus.EXPIRED
    rejected = engine.audit.entries_for(challenge.id, "sca.validation_rejected")
    assert rejected[0].details["reason"] == "expired"


def test_unknown_challenge(engine):
    with pytest.raises(ChallengeNotFoundError):
        engine.gate.validate_response("missing", {"sms_code": "123456"})


def test_token_expires(engine, notifier, enrolled_user, clock):
    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("45.00"))
    result = engine.gate.validate_response(challenge.id, {
        "sms_code": _sms_code(notifier),
        "totp_code": pyotp.TOTP(enrolled_user.totp_secret).now(),
    })

    clock.advance(minutes=31)

    assert engine.gate.verify_token(result.authentication_token, enrolled_user.user_id) is False


def test_tampered_token_rejected(engine, enrolled_user):
    assert engine.gate.verify_token("not.a.token", enrolled_user.user_id) is False


def test_attempts_counted_against_stored_challenge(engine, enrolled_user):
    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("45.00"))
    stale = engine.gate.challenges.get(challenge.id)
    wrong = {"sms_code": "000000", "totp_code": "000000"}
    engine.gate.validate_response(challenge.id, wrong)
    engine.gate.validate_response(challenge.id, wrong)

    with patch.object(engine.gate.challenges, "get", return_value=stale):
        result = engine.gate.validate_response(challenge.id, wrong)

    assert result.attempts_used == 3
    assert result.retry_allowed is False
    assert engine.gate.challenges.get(challenge.id).status == ChallengeStatus.FAILED


def test_submission_on_closed_challenge_rejected(engine, notifier, enrolled_user):
    challenge = engine.gate.create_challenge(enrolled_user.user_id, Decimal("45.00"))
    stale = engine.gate.challenges.get(challenge.id)
    engine.gate.validate_response(challenge.id, {
        "sms_code": _sms_code(notifier),
        "totp_code": pyotp.TOTP(enrolled_user.totp_secret).now(),
    })

    with patch.object(engine.gate.challenges, "get", return_value=stale):
        with pytest.raises(ChallengeClosedError):
            engine.gate.validate_response(challenge.id, {"sms_code": "000000", "totp_code": "000000"})

    stored = engine.gate.challenges.get(challenge.id)
    assert stored.status == ChallengeStatus.COMPLETED
    assert stored.attempts == 1
    rejected = engine.audit.entries_for(challenge.id, "sca.validation_rejected")
    assert rejected[0].details["reason"] == "closed_concurrently"
