import calendar
from datetime import datetime, timedelta
from typing import Optional, Tuple

import jwt

TOKEN_PURPOSE = "sca"


class AuthenticationTokenService:
    """Short-lived tokens proving a completed strong-authentication challenge."""

    ALGORITHM = "HS256"

    def __init__(self, signing_key: str, ttl: timedelta):
        self.signing_key = signing_key
        self.ttl = ttl

    def issue(self, user_id: str, challenge_id: str, now: datetime) -> Tuple[str, datetime]:
        valid_until = now + self.ttl
        claims = {
            "sub": user_id,
            "cid": challenge_id,
            "purpose": TOKEN_PURPOSE,
            "exp": calendar.timegm(valid_until.utctimetuple()),
        }
        return jwt.encode(claims, self.signing_key, algorithm=self.ALGORITHM), valid_until

    def decode(self, token: str, now: datetime) -> Optional[dict]:
        """Claims of a well-formed, unexpired token; ``None`` otherwise."""
        try:
            # Expiry is checked against the engine clock, not the wall clock.
            claims = jwt.decode(
                token,
                self.signing_key,
                algorithms=[self.ALGORITHM],
                options={"verify_exp": False},
            )
        except jwt.InvalidTokenError:
            return None

        if claims.get("purpose") != TOKEN_PURPOSE:
            return None
        if claims.get("exp", 0) < calendar.timegm(now.utctimetuple()):
            return None
        return claims
