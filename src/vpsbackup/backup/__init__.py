"""Backup pipeline for vps-backup: producers, transport, retention and reporting."""

from .config_manager import BackupConfig, BackupStrategy, ConfigManager, RetentionPolicy
from .exceptions import (
    ArchiveError,
    BackupError,
    ConfigurationError,
    DecryptionError,
    EncryptionError,
    EngineError,
    InsufficientSpaceError,
    InvalidBackupConfigError,
    NoValidSourcesError,
    PreflightError,
    ProducerError,
    RcloneCommandFailedError,
    RepositoryInitError,
    ResticCommandFailedError,
    ResticOutputError,
    RetentionWarning,
    RetryExhaustedError,
    SnapshotFailedError,
    TransportError,
    UploadVerificationError,
)
from .pipeline import BackupPipeline, FailureKind, PipelineOutcome, PipelineState
from .rclone_client import RcloneClient
from .restic_client import ResticClient

__all__ = [
    "ArchiveError",
    "BackupConfig",
    "BackupError",
    "BackupPipeline",
    "BackupStrategy",
    "ConfigManager",
    "ConfigurationError",
    "DecryptionError",
    "EncryptionError",
    "EngineError",
    "FailureKind",
    "InsufficientSpaceError",
    "InvalidBackupConfigError",
    "NoValidSourcesError",
    "PipelineOutcome",
    "PipelineState",
    "PreflightError",
    "ProducerError",
    "RcloneClient",
    "RcloneCommandFailedError",
    "RepositoryInitError",
    "ResticClient",
    "ResticCommandFailedError",
    "ResticOutputError",
    "RetentionPolicy",
    "RetentionWarning",
    "RetryExhaustedError",
    "SnapshotFailedError",
    "TransportError",
    "UploadVerificationError",
]
