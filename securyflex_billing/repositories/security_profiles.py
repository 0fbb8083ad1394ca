from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from securyflex_billing.extensions import db
from securyflex_billing.models.security_profile import UserSecurityProfile

DEFAULT_RISK_FACTOR = 10


class SecurityProfileStore:

    def get(self, user_id: str) -> Optional[UserSecurityProfile]:
        return db.session.get(UserSecurityProfile, user_id)

    def risk_factor(self, user_id: str) -> int:
        profile = self.get(user_id)
        return profile.risk_factor if profile else DEFAULT_RISK_FACTOR

    def save(self, profile: UserSecurityProfile) -> UserSecurityProfile:
        try:
            db.session.merge(profile)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return self.get(profile.user_id)
