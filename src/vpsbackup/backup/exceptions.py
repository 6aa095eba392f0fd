"""Custom exceptions for the backup module."""


class BackupError(Exception):
    """Base exception for all backup-related errors."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """Initialize the exception with message and optional original error."""
        super().__init__(message)
        self.original_error = original_error
        self.message = message


class ConfigurationError(BackupError):
    """Raised when there are configuration-related issues."""


class InvalidBackupConfigError(ConfigurationError):
    """Raised when configuration values are invalid."""


class PreflightError(BackupError):
    """Base exception for failed preconditions."""


class InsufficientSpaceError(PreflightError):
    """Raised when free capacity is below the configured floor."""


class NoValidSourcesError(PreflightError):
    """Raised when none of the configured sources exist."""


class EngineError(BackupError):
    """Base exception for snapshot engine (restic) errors."""


class ResticCommandFailedError(EngineError):
    """Raised when any restic command fails."""


class ResticOutputError(EngineError):
    """Raised when restic output cannot be parsed into a result."""


class RcloneCommandFailedError(BackupError):
    """Raised when any rclone command fails."""


class ProducerError(BackupError):
    """Base exception for failures while producing a backup artifact."""


class RepositoryInitError(ProducerError):
    """Raised when the snapshot repository cannot be initialized."""


class SnapshotFailedError(ProducerError):
    """Raised when the snapshot engine fails to create a snapshot."""


class ArchiveError(ProducerError):
    """Raised when the archive cannot be created."""


class EncryptionError(ProducerError):
    """Raised when an archive cannot be encrypted."""


class DecryptionError(ProducerError):
    """Raised when an artifact cannot be decrypted or fails authentication."""


class RetryExhaustedError(BackupError):
    """Raised when a retried operation fails on every attempt."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Exception | None = None,
    ) -> None:
        """Initialize with the number of attempts made and the final error."""
        super().__init__(message, original_error=last_error)
        self.attempts = attempts
        self.last_error = last_error


class TransportError(BackupError):
    """Raised when an artifact cannot be delivered to remote storage."""


class UploadVerificationError(TransportError):
    """Raised when the remote size does not match the local artifact."""


class RetentionWarning(BackupError):
    """Raised internally for retention problems; logged, never fatal."""
