from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from securyflex_billing.domain.subscriptions import Subscription, SubscriptionStatus
from securyflex_billing.errors import SubscriptionNotFoundError
from securyflex_billing.extensions import db
from securyflex_billing.models.subscription import SubscriptionRecord

TERMINAL_STATUSES = (SubscriptionStatus.CANCELED.value, SubscriptionStatus.EXPIRED.value)


class SubscriptionStore:
    """
    Document-style access to subscription rows.

    Every write goes through ``update``, which reads the row under
    ``SELECT ... FOR UPDATE`` and commits the mutated copy in the same
    transaction.
    """

    def get(self, subscription_id: str) -> Optional[Subscription]:
        record = db.session.get(SubscriptionRecord, subscription_id)
        return record.to_domain() if record else None

    def add(self, subscription: Subscription) -> Subscription:
        try:
            record = SubscriptionRecord().apply_domain(subscription)
            db.session.add(record)
            db.session.commit()
            return record.to_domain()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def update(
        self,
        subscription_id: str,
        mutate: Callable[[Subscription], Subscription],
    ) -> Subscription:
        try:
            record = (
                SubscriptionRecord.query
                .filter_by(id=subscription_id)
                .with_for_update()
                .first()
            )
            if record is None:
                raise SubscriptionNotFoundError(
                    f"Subscription {subscription_id} not found",
                    subscription_id=subscription_id,
                )

            updated = mutate(record.to_domain())
            record.apply_domain(updated)
            db.session.commit()
            return record.to_domain()
        except Exception:
            db.session.rollback()
            raise

    def find_open_for_user(self, user_id: str) -> Optional[Subscription]:
        record = (
            SubscriptionRecord.query
            .filter(SubscriptionRecord.user_id == user_id)
            .filter(SubscriptionRecord.status.notin_(TERMINAL_STATUSES))
            .order_by(SubscriptionRecord.created_at.desc())
            .first()
        )
        return record.to_domain() if record else None

    def list_by_status(self, statuses: Iterable[SubscriptionStatus]) -> List[Subscription]:
        records = (
            SubscriptionRecord.query
            .filter(SubscriptionRecord.status.in_([s.value for s in statuses]))
            .order_by(SubscriptionRecord.next_payment_date.asc())
            .all()
        )
        return [record.to_domain() for record in records]

    def list_due(self, now: datetime, statuses: Iterable[SubscriptionStatus]) -> List[Subscription]:
        records = (
            SubscriptionRecord.query
            .filter(SubscriptionRecord.status.in_([s.value for s in statuses]))
            .filter(SubscriptionRecord.next_payment_date.isnot(None))
            .filter(SubscriptionRecord.next_payment_date <= now)
            .order_by(SubscriptionRecord.next_payment_date.asc())
            .all()
        )
        return [record.to_domain() for record in records]

    def list_trials_ending(self, before: datetime) -> List[Subscription]:
        records = (
            SubscriptionRecord.query
            .filter(SubscriptionRecord.status == SubscriptionStatus.TRIALING.value)
            .filter(SubscriptionRecord.trial_end_date.isnot(None))
            .filter(SubscriptionRecord.trial_end_date <= before)
            .order_by(SubscriptionRecord.trial_end_date.asc())
            .all()
        )
        return [record.to_domain() for record in records]
