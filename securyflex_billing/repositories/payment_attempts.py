from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from securyflex_billing.domain.payments import AttemptOutcome, PaymentAttempt, PaymentPurpose
from securyflex_billing.extensions import db
from securyflex_billing.models.payment_attempt import PaymentAttemptRecord

TERMINAL_OUTCOMES = tuple(outcome.value for outcome in AttemptOutcome if outcome.is_terminal)
RENEWAL = PaymentPurpose.RENEWAL.value


class PaymentAttemptLedger:
    """Append-only ledger of payment attempts. Rows are never updated."""

    def append(self, attempt: PaymentAttempt) -> PaymentAttempt:
        try:
            db.session.add(PaymentAttemptRecord.from_domain(attempt))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return attempt

    def latest_captured(self, subscription_id: str) -> Optional[PaymentAttempt]:
        record = (
            PaymentAttemptRecord.query
            .filter_by(
                subscription_id=subscription_id,
                outcome=AttemptOutcome.CAPTURED.value,
                purpose=RENEWAL,
            )
            .order_by(PaymentAttemptRecord.created_at.desc())
            .first()
        )
        return record.to_domain() if record else None

    def for_subscription(self, subscription_id: str) -> List[PaymentAttempt]:
        records = (
            PaymentAttemptRecord.query
            .filter_by(subscription_id=subscription_id)
            .order_by(PaymentAttemptRecord.created_at.asc())
            .all()
        )
        return [record.to_domain() for record in records]

    def captured_in_period(self, subscription_id: str, period: str) -> Optional[PaymentAttempt]:
        record = (
            PaymentAttemptRecord.query
            .filter_by(
                subscription_id=subscription_id,
                billing_period=period,
                outcome=AttemptOutcome.CAPTURED.value,
                purpose=RENEWAL,
            )
            .order_by(PaymentAttemptRecord.created_at.desc())
            .first()
        )
        return record.to_domain() if record else None

    def terminal_attempts_in_period(self, subscription_id: str, period: str,
                                    purpose: PaymentPurpose = PaymentPurpose.RENEWAL) -> int:
        return (
            PaymentAttemptRecord.query
            .filter_by(subscription_id=subscription_id, billing_period=period, purpose=purpose.value)
            .filter(PaymentAttemptRecord.outcome.in_(TERMINAL_OUTCOMES))
            .count()
        )

    def captured_total_since(self, user_id: str, since: datetime) -> Decimal:
        total = (
            db.session.query(func.coalesce(func.sum(PaymentAttemptRecord.amount), 0))
            .filter(PaymentAttemptRecord.user_id == user_id)
            .filter(PaymentAttemptRecord.outcome == AttemptOutcome.CAPTURED.value)
            .filter(PaymentAttemptRecord.created_at > since)
            .scalar()
        )
        return Decimal(str(total))

    def attempts_since(self, user_id: str, since: datetime) -> int:
        return (
            PaymentAttemptRecord.query
            .filter(PaymentAttemptRecord.user_id == user_id)
            .filter(PaymentAttemptRecord.created_at > since)
            .count()
        )

    def created_between(self, start: datetime, end: datetime) -> List[PaymentAttempt]:
        records = (
            PaymentAttemptRecord.query
            .filter(PaymentAttemptRecord.created_at >= start)
            .filter(PaymentAttemptRecord.created_at < end)
            .order_by(PaymentAttemptRecord.created_at.asc())
            .all()
        )
        return [record.to_domain() for record in records]
