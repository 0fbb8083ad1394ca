import logging
from typing import Optional, Sequence

from securyflex_billing.domain.dunning import (
    CANCELLATION_REASON,
    DEFAULT_BACKOFF_DAYS,
    DunningLevel,
    RetryScheduleEntry,
    RetryStatus,
    SweepResult,
    matching_threshold,
    retry_delay,
)
from securyflex_billing.domain.payments import PaymentAttempt
from securyflex_billing.domain.subscriptions import Subscription, SubscriptionStatus
from securyflex_billing.errors import SubscriptionLockedError
from securyflex_billing.logging_config import billing_context
from securyflex_billing.notifications import NotificationKind
from securyflex_billing.utils.clock import utcnow

logger = logging.getLogger(__name__)

DUNNING_STATUSES = (SubscriptionStatus.PAST_DUE, SubscriptionStatus.UNPAID)


class DunningScheduler:
    """
    Retry scheduling and escalation for delinquent subscriptions.

    The scheduler never changes a subscription's status itself; cancellation
    goes through the lifecycle manager handed to the sweep.
    """

    def __init__(self, subscriptions, retries, notices, notifications, audit,
                 backoff_days: Sequence[int] = DEFAULT_BACKOFF_DAYS, metrics=None, clock=utcnow):
        self.subscriptions = subscriptions
        self.retries = retries
        self.notices = notices
        self.notifications = notifications
        self.audit = audit
        self.backoff_days = tuple(backoff_days)
        self.metrics = metrics
        self.clock = clock

    def handle_decline(self, subscription: Subscription, attempt: PaymentAttempt) -> Optional[RetryScheduleEntry]:
        """Schedule the next retry for a subscription whose capture was just declined."""
        now = self.clock()
        delay = None
        if subscription.status != SubscriptionStatus.UNPAID:
            delay = retry_delay(subscription.failure_count, self.backoff_days)

        # At most one outstanding retry per subscription.
        self.retries.skip_pending(subscription.id)

        entry = None
        if delay is not None:
            entry = self.retries.schedule(
                subscription.id,
                scheduled_at=now + delay,
                attempt_number=subscription.failure_count,
                now=now,
            )

        self.notifications.notify(
            subscription.user_id,
            NotificationKind.PAYMENT_FAILED,
            {
                "subscription_id": subscription.id,
                "amount": attempt.amount,
                "currency": attempt.currency,
                "reason": attempt.failure_reason,
                "failure_count": subscription.failure_count,
                "next_retry_at": entry.scheduled_at if entry else None,
            },
        )

        action = "dunning.retry_scheduled" if entry else "dunning.retries_exhausted"
        self.audit.record(
            action,
            subject_id=subscription.id,
            details={
                "attempt_id": attempt.id,
                "failure_count": subscription.failure_count,
                "status": subscription.status.value,
                "scheduled_at": entry.scheduled_at if entry else None,
                "requires_manual_review": subscription.requires_manual_review,
            },
        )
        self._record_action("retry_scheduled" if entry else "retries_exhausted")

        logger.info(
            f"Decline handled for subscription {subscription.id}",
            extra={"failure_count": subscription.failure_count, "retry_scheduled": entry is not None},
        )
        return entry

    def handle_capture(self, subscription: Subscription) -> int:
        """Drop outstanding retries once a capture succeeded."""
        return self.retries.skip_pending(subscription.id)

    def cancel_pending_retries(self, subscription_id: str) -> int:
        return self.retries.skip_pending(subscription_id)

    async def process_dunning_sweep(self, lifecycle) -> SweepResult:
        """
        Escalate every past_due / unpaid subscription by days overdue.

        Only the highest threshold a subscription meets is applied, and a
        threshold already notified for the same due date is never repeated,
        so the sweep can be re-run any number of times a day.
        """
        now = self.clock()
        result = SweepResult()

        for subscription in self.subscriptions.list_by_status(DUNNING_STATUSES):
            result.examined += 1
            with billing_context(subscription.id):
                try:
                    await self._escalate(subscription, lifecycle, now, result)
                except Exception as e:
                    logger.exception(f"Dunning failed for subscription {subscription.id}")
                    result.errors.append(f"{subscription.id}: {e}")

        self.audit.record("dunning.sweep", details={"run_at": now, **result.to_dict()})
        return result

    async def _escalate(self, subscription: Subscription, lifecycle, now, result: SweepResult) -> None:
        due_date = subscription.next_payment_date
        if due_date is None:
            result.skipped += 1
            return

        threshold = matching_threshold(subscription.days_overdue(now), subscription.failure_count)
        if threshold is None or self.notices.highest_level(subscription.id, due_date) >= threshold.level:
            result.skipped += 1
            return

        if threshold.level == DunningLevel.CANCELLATION:
            await lifecycle.cancel_subscription(
                subscription.id, immediate=True, reason=CANCELLATION_REASON
            )
            self.notices.record(subscription.id, due_date, threshold.level, threshold.template, now)
            self._notify_level(subscription, threshold, now)
            result.canceled += 1
            return

        # The unique notice row is the guard against a concurrent sweep.
        if not self.notices.record(subscription.id, due_date, threshold.level, threshold.template, now):
            result.skipped += 1
            return

        self._notify_level(subscription, threshold, now)
        result.notified += 1

    def _notify_level(self, subscription: Subscription, threshold, now) -> None:
        self.notifications.notify(
            subscription.user_id,
            NotificationKind(threshold.template),
            {
                "subscription_id": subscription.id,
                "amount": subscription.billing_amount,
                "days_overdue": subscription.days_overdue(now),
                "failure_count": subscription.failure_count,
            },
        )
        self.audit.record(
            "dunning.notice",
            subject_id=subscription.id,
            details={
                "level": threshold.level.name.lower(),
                "template": threshold.template,
                "due_date": subscription.next_payment_date,
                "days_overdue": subscription.days_overdue(now),
                "failure_count": subscription.failure_count,
            },
        )
        self._record_action(threshold.template)

    async def dispatch_due_retries(self, lifecycle) -> SweepResult:
        """Run every scheduled retry that has come due through the payment pipeline."""
        now = self.clock()
        result = SweepResult()

        for entry in self.retries.due(now):
            result.examined += 1
            subscription = self.subscriptions.get(entry.subscription_id)
            if (
                subscription is None
                or subscription.status.is_terminal
                or subscription.status == SubscriptionStatus.ACTIVE
            ):
                self.retries.mark(entry.id, RetryStatus.SKIPPED)
                result.skipped += 1
                continue

            try:
                await lifecycle.process_recurring_payment(entry.subscription_id)
            except SubscriptionLockedError as e:
                # Left scheduled; the next dispatch picks it up.
                logger.warning(f"Retry for {entry.subscription_id} deferred: {e}")
                result.errors.append(f"{entry.subscription_id}: {e}")
                continue
            except Exception as e:
                logger.exception(f"Retry failed for subscription {entry.subscription_id}")
                self.retries.mark(entry.id, RetryStatus.SKIPPED)
                result.errors.append(f"{entry.subscription_id}: {e}")
                continue

            self.retries.mark(entry.id, RetryStatus.COMPLETED)
            result.retried += 1

        if result.examined:
            self.audit.record("dunning.retries_dispatched", details={"run_at": now, **result.to_dict()})
        return result

    def _record_action(self, action: str) -> None:
        if self.metrics is not None:
            self.metrics.record_dunning_action(action)
