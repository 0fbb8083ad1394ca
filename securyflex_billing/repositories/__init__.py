from .challenges import ChallengeStore
from .notices import DunningNoticeStore
from .payment_attempts import PaymentAttemptLedger
from .retries import RetryScheduleStore
from .security_profiles import SecurityProfileStore
from .subscriptions import SubscriptionStore
from .trial_reminders import TrialReminderStore

__all__ = [
    "ChallengeStore",
    "DunningNoticeStore",
    "PaymentAttemptLedger",
    "RetryScheduleStore",
    "SecurityProfileStore",
    "SubscriptionStore",
    "TrialReminderStore",
]
