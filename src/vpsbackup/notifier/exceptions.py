"""Custom exceptions for the notifier module."""


class NotificationError(Exception):
    """Base exception for all notification-related errors."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """Initialize the exception with message and optional original error."""
        super().__init__(message)
        self.original_error = original_error
        self.message = message


class NotificationSendError(NotificationError):
    """Raised when the messaging endpoint rejects or never receives a message."""
