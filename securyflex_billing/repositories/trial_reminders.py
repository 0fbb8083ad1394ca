from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from securyflex_billing.extensions import db
from securyflex_billing.models.trial_reminder import TrialReminderRecord


class TrialReminderStore:
    """Remembers which trial-ending reminders went out per trial end date."""

    def closest_sent(self, subscription_id: str, trial_end_date: datetime) -> Optional[int]:
        return (
            db.session.query(func.min(TrialReminderRecord.days_before))
            .filter_by(subscription_id=subscription_id, trial_end_date=trial_end_date)
            .scalar()
        )

    def record(self, subscription_id: str, trial_end_date: datetime, days_before: int,
               now: datetime) -> bool:
        """Returns False when this reminder was already recorded."""
        try:
            db.session.add(TrialReminderRecord(
                subscription_id=subscription_id,
                trial_end_date=trial_end_date,
                days_before=days_before,
                sent_at=now,
            ))
            db.session.commit()
            return True
        except IntegrityError:
            db.session.rollback()
            return False
        except SQLAlchemyError:
            db.session.rollback()
            raise
