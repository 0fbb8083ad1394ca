from securyflex_billing.domain.dunning import RetryScheduleEntry, RetryStatus
from securyflex_billing.extensions import db


class RetryScheduleRecord(db.Model):
    __tablename__ = "subscription_retries"

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(db.String(64), nullable=False, index=True)
    scheduled_at = db.Column(db.DateTime, nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=RetryStatus.SCHEDULED.value)
    created_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.Index("idx_retry_status_scheduled", "status", "scheduled_at"),
    )

    def to_domain(self) -> RetryScheduleEntry:
        return RetryScheduleEntry(
            id=self.id,
            subscription_id=self.subscription_id,
            scheduled_at=self.scheduled_at,
            attempt_number=self.attempt_number,
            status=RetryStatus(self.status),
            created_at=self.created_at,
        )
