import hashlib
import hmac
import logging
import secrets
from typing import Mapping, Tuple

import pyotp

from securyflex_billing.domain.authentication import AuthenticationChallenge, FactorMethod
from securyflex_billing.repositories.security_profiles import SecurityProfileStore

logger = logging.getLogger(__name__)

# Keys callers use when submitting a challenge response.
FACTOR_FIELDS = {
    FactorMethod.SMS: "sms_code",
    FactorMethod.TOTP: "totp_code",
    FactorMethod.BIOMETRIC: "biometric_assertion",
}


def generate_sms_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def biometric_assertion(device_key: str, challenge_id: str) -> str:
    """Signature a paired device produces over the challenge id."""
    return hmac.new(device_key.encode(), challenge_id.encode(), hashlib.sha256).hexdigest()


class FactorVerifier:
    """Validates each authentication factor independently of the others."""

    def __init__(self, profiles: SecurityProfileStore, signing_key: str, totp_valid_window: int = 1):
        self.profiles = profiles
        self.signing_key = signing_key.encode()
        self.totp_valid_window = totp_valid_window

    def enrolled_methods(self, user_id: str) -> Tuple[FactorMethod, ...]:
        profile = self.profiles.get(user_id)
        if profile is None:
            return ()

        methods = []
        if profile.sms_verified and profile.phone_number:
            methods.append(FactorMethod.SMS)
        if profile.totp_secret:
            methods.append(FactorMethod.TOTP)
        if profile.biometric_key:
            methods.append(FactorMethod.BIOMETRIC)
        return tuple(methods)

    def sms_digest(self, challenge_id: str, code: str) -> str:
        message = f"{challenge_id}:{code}".encode()
        return hmac.new(self.signing_key, message, hashlib.sha256).hexdigest()

    def verify_sms(self, challenge: AuthenticationChallenge, code: str) -> bool:
        if not challenge.sms_code_digest or not code:
            return False
        return hmac.compare_digest(challenge.sms_code_digest, self.sms_digest(challenge.id, code.strip()))

    def verify_totp(self, user_id: str, code: str) -> bool:
        profile = self.profiles.get(user_id)
        if profile is None or not profile.totp_secret or not code:
            return False
        return pyotp.TOTP(profile.totp_secret).verify(code.strip(), valid_window=self.totp_valid_window)

    def verify_biometric(self, user_id: str, challenge_id: str, assertion: str) -> bool:
        profile = self.profiles.get(user_id)
        if profile is None or not profile.biometric_key or not assertion:
            return False
        expected = biometric_assertion(profile.biometric_key, challenge_id)
        return hmac.compare_digest(expected, assertion)

    def validate(self, challenge: AuthenticationChallenge, provided: Mapping[str, str]):
        """
        Validate every offered factor the caller supplied.

        Returns the number of factors that validated and the reasons the
        others did not. Each method counts at most once.
        """
        validated = 0
        reasons = []

        for method in challenge.methods:
            value = provided.get(FACTOR_FIELDS[method])
            if value is None:
                continue

            if method == FactorMethod.SMS:
                ok = self.verify_sms(challenge, value)
            elif method == FactorMethod.TOTP:
                ok = self.verify_totp(challenge.user_id, value)
            else:
                ok = self.verify_biometric(challenge.user_id, challenge.id, value)

            if ok:
                validated += 1
            else:
                reasons.append(f"invalid_{method.value}")

        logger.debug(
            "Factors validated",
            extra={"challenge_id": challenge.id, "validated": validated},
        )
        return validated, tuple(reasons)
