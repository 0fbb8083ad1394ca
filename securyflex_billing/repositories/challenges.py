from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from securyflex_billing.domain.authentication import AuthenticationChallenge, ChallengeStatus
from securyflex_billing.errors import ChallengeNotFoundError
from securyflex_billing.extensions import db
from securyflex_billing.models.auth_challenge import AuthChallengeRecord


class ChallengeStore:

    def add(self, challenge: AuthenticationChallenge) -> AuthenticationChallenge:
        try:
            db.session.add(AuthChallengeRecord().apply_domain(challenge))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return challenge

    def get(self, challenge_id: str) -> Optional[AuthenticationChallenge]:
        record = db.session.get(AuthChallengeRecord, challenge_id)
        return record.to_domain() if record else None

    def update(
        self,
        challenge_id: str,
        mutate: Callable[[AuthenticationChallenge], AuthenticationChallenge],
    ) -> AuthenticationChallenge:
        try:
            record = (
                AuthChallengeRecord.query
                .filter_by(id=challenge_id)
                .with_for_update()
                .first()
            )
            if record is None:
                raise ChallengeNotFoundError(
                    f"Challenge {challenge_id} not found", challenge_id=challenge_id
                )
            record.apply_domain(mutate(record.to_domain()))
            db.session.commit()
            return record.to_domain()
        except Exception:
            db.session.rollback()
            raise

    def last_completed_at(self, user_id: str) -> Optional[datetime]:
        record = (
            AuthChallengeRecord.query
            .filter_by(user_id=user_id, status=ChallengeStatus.COMPLETED.value)
            .order_by(AuthChallengeRecord.completed_at.desc())
            .first()
        )
        return record.completed_at if record else None

    def created_between(self, start: datetime, end: datetime) -> List[AuthenticationChallenge]:
        records = (
            AuthChallengeRecord.query
            .filter(AuthChallengeRecord.created_at >= start)
            .filter(AuthChallengeRecord.created_at < end)
            .all()
        )
        return [record.to_domain() for record in records]
