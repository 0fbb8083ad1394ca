from .audit_log import AuditLog
from .auth_challenge import AuthChallengeRecord
from .dunning_notice import DunningNoticeRecord
from .payment_attempt import PaymentAttemptRecord
from .retry_schedule import RetryScheduleRecord
from .security_profile import UserSecurityProfile
from .subscription import SubscriptionRecord
from .trial_reminder import TrialReminderRecord

__all__ = [
    "AuditLog",
    "AuthChallengeRecord",
    "DunningNoticeRecord",
    "PaymentAttemptRecord",
    "RetryScheduleRecord",
    "SubscriptionRecord",
    "TrialReminderRecord",
    "UserSecurityProfile",
]
