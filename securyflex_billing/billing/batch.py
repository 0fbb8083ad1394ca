import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from securyflex_billing.domain.payments import AttemptOutcome
from securyflex_billing.domain.subscriptions import SubscriptionStatus
from securyflex_billing.logging_config import billing_context
from securyflex_billing.utils.clock import utcnow

logger = logging.getLogger(__name__)

BILLABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


@dataclass
class BatchResult:
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)
    authentication_required: int = 0
    pending: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if not self.processed:
            return 0.0
        return self.succeeded / self.processed

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failed_ids": list(self.failed_ids),
            "authentication_required": self.authentication_required,
            "pending": self.pending,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "success_rate": round(self.success_rate, 4),
        }


class BatchBillingCoordinator:
    """
    Drives every due subscription through the payment pipeline, one at a time.

    Items are isolated: an exception for one subscription is recorded in the
    result and the run moves on to the next.
    """

    def __init__(self, subscriptions, lifecycle, audit, item_delay: float = 0.5,
                 metrics=None, clock=utcnow):
        self.subscriptions = subscriptions
        self.lifecycle = lifecycle
        self.audit = audit
        self.item_delay = item_delay
        self.metrics = metrics
        self.clock = clock

    async def process_due(self) -> BatchResult:
        result = BatchResult(started_at=self.clock())
        due = self.subscriptions.list_due(result.started_at, BILLABLE_STATUSES)
        logger.info(f"Batch billing started: {len(due)} subscription(s) due")

        for index, subscription in enumerate(due):
            if subscription.status == SubscriptionStatus.TRIALING and not subscription.payment_method:
                # Trials without a payment method are expired, not billed.
                result.skipped += 1
                continue

            if index and self.item_delay:
                await asyncio.sleep(self.item_delay)

            result.processed += 1
            with billing_context(subscription.id):
                try:
                    outcome = await self.lifecycle.process_recurring_payment(subscription.id)
                except Exception as e:
                    logger.exception(f"Batch item {subscription.id} failed")
                    result.failed += 1
                    result.failed_ids.append(subscription.id)
                    result.errors.append(f"{subscription.id}: {type(e).__name__}: {e}")
                    self._record_item("error")
                    continue

            if outcome.outcome == AttemptOutcome.CAPTURED:
                result.succeeded += 1
            elif outcome.outcome == AttemptOutcome.DECLINED:
                result.failed += 1
                result.failed_ids.append(subscription.id)
            elif outcome.outcome == AttemptOutcome.AUTHENTICATION_REQUIRED:
                result.authentication_required += 1
            else:
                result.pending += 1
            self._record_item(outcome.outcome.value)

        result.finished_at = self.clock()
        self.audit.record("billing.batch_run", details=result.to_dict())
        logger.info(
            "Batch billing finished",
            extra={
                "processed": result.processed,
                "succeeded": result.succeeded,
                "failed": result.failed,
            },
        )
        return result

    def _record_item(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_batch_item(result)
