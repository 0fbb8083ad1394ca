from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import List, Optional, Sequence

DEFAULT_BACKOFF_DAYS = (1, 3, 7)
CANCELLATION_REASON = "payment_failure_after_dunning"


class RetryStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class DunningLevel(IntEnum):
    NONE = 0
    REMINDER = 1
    FINAL_WARNING = 2
    CANCELLATION = 3


@dataclass(frozen=True)
class DunningThreshold:
    level: DunningLevel
    days_overdue: int
    min_failures: int
    template: str


# Highest first: the sweep applies the first threshold a subscription meets.
DUNNING_THRESHOLDS = (
    DunningThreshold(DunningLevel.CANCELLATION, 30, 3, "subscription_canceled"),
    DunningThreshold(DunningLevel.FINAL_WARNING, 14, 2, "final_warning"),
    DunningThreshold(DunningLevel.REMINDER, 7, 1, "payment_reminder"),
)


@dataclass(frozen=True)
class RetryScheduleEntry:
    subscription_id: str
    scheduled_at: datetime
    attempt_number: int
    status: RetryStatus = RetryStatus.SCHEDULED
    id: Optional[int] = None
    created_at: Optional[datetime] = None


def retry_delay(failure_count: int, backoff: Sequence[int] = DEFAULT_BACKOFF_DAYS) -> Optional[timedelta]:
    """Backoff for the decline that brought the count to ``failure_count``."""
    index = failure_count - 1
    if index < 0 or index >= len(backoff):
        return None
    return timedelta(days=backoff[index])


def matching_threshold(days_overdue: int, failure_count: int) -> Optional[DunningThreshold]:
    for threshold in DUNNING_THRESHOLDS:
        if days_overdue >= threshold.days_overdue and failure_count >= threshold.min_failures:
            return threshold
    return None


@dataclass
class SweepResult:
    examined: int = 0
    notified: int = 0
    canceled: int = 0
    skipped: int = 0
    retried: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "examined": self.examined,
            "notified": self.notified,
            "canceled": self.canceled,
            "skipped": self.skipped,
            "retried": self.retried,
            "errors": list(self.errors),
        }
