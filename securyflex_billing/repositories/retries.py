from datetime import datetime
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from securyflex_billing.domain.dunning import RetryScheduleEntry, RetryStatus
from securyflex_billing.extensions import db
from securyflex_billing.models.retry_schedule import RetryScheduleRecord


class RetryScheduleStore:

    def schedule(self, subscription_id: str, scheduled_at: datetime,
                 attempt_number: int, now: datetime) -> RetryScheduleEntry:
        record = RetryScheduleRecord(
            subscription_id=subscription_id,
            scheduled_at=scheduled_at,
            attempt_number=attempt_number,
            status=RetryStatus.SCHEDULED.value,
            created_at=now,
        )
        try:
            db.session.add(record)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return record.to_domain()

    def for_subscription(self, subscription_id: str) -> List[RetryScheduleEntry]:
        records = (
            RetryScheduleRecord.query
            .filter_by(subscription_id=subscription_id)
            .order_by(RetryScheduleRecord.attempt_number.asc())
            .all()
        )
        return [record.to_domain() for record in records]

    def due(self, now: datetime) -> List[RetryScheduleEntry]:
        records = (
            RetryScheduleRecord.query
            .filter_by(status=RetryStatus.SCHEDULED.value)
            .filter(RetryScheduleRecord.scheduled_at <= now)
            .order_by(RetryScheduleRecord.scheduled_at.asc())
            .all()
        )
        return [record.to_domain() for record in records]

    def mark(self, entry_id: int, status: RetryStatus) -> None:
        try:
            record = db.session.get(RetryScheduleRecord, entry_id)
            if record is not None:
                record.status = status.value
                db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def skip_pending(self, subscription_id: str) -> int:
        try:
            count = (
                RetryScheduleRecord.query
                .filter_by(subscription_id=subscription_id, status=RetryStatus.SCHEDULED.value)
                .update({"status": RetryStatus.SKIPPED.value}, synchronize_session=False)
            )
            db.session.commit()
            return count
        except SQLAlchemyError:
            db.session.rollback()
            raise
