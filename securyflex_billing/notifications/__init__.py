from .notification_service import (
    CeleryNotifier,
    LoggingNotifier,
    NotificationKind,
    NotificationService,
)

__all__ = ["CeleryNotifier", "LoggingNotifier", "NotificationKind", "NotificationService"]
