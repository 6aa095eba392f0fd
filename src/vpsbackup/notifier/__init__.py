"""Status notifications for vps-backup."""

from vpsbackup.notifier.exceptions import NotificationError, NotificationSendError
from vpsbackup.notifier.notifier import TelegramNotifier

__all__ = [
    "NotificationError",
    "NotificationSendError",
    "TelegramNotifier",
]
