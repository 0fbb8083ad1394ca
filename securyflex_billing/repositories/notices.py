from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from securyflex_billing.domain.dunning import DunningLevel
from securyflex_billing.extensions import db
from securyflex_billing.models.dunning_notice import DunningNoticeRecord


class DunningNoticeStore:
    """Remembers which dunning thresholds were already notified per due date."""

    def highest_level(self, subscription_id: str, due_date: datetime) -> DunningLevel:
        level = (
            db.session.query(func.max(DunningNoticeRecord.level))
            .filter_by(subscription_id=subscription_id, due_date=due_date)
            .scalar()
        )
        return DunningLevel(level or 0)

    def record(self, subscription_id: str, due_date: datetime, level: DunningLevel,
               template: str, now: datetime) -> bool:
        """Returns False when another sweep already recorded this level."""
        try:
            db.session.add(DunningNoticeRecord(
                subscription_id=subscription_id,
                due_date=due_date,
                level=int(level),
                template=template,
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
