"""Backup pipeline: lock, preflight, produce, transport, retain, report, unlock."""

import argparse
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from vpsbackup.backup.config_manager import BackupConfig, BackupStrategy, ConfigManager
from vpsbackup.backup.encryption import ArtifactCipher
from vpsbackup.backup.exceptions import (
    BackupError,
    ConfigurationError,
    EngineError,
    InsufficientSpaceError,
    NoValidSourcesError,
    TransportError,
)
from vpsbackup.backup.full_archive import FullArchiveProducer
from vpsbackup.backup.incremental import IncrementalProducer
from vpsbackup.backup.preflight import PreflightChecker, PreflightReport
from vpsbackup.backup.rclone_client import RcloneClient
from vpsbackup.backup.restic_client import ResticClient
from vpsbackup.backup.retention import FullArchiveRetention, IncrementalRetention, RetentionResult
from vpsbackup.backup.retry import RetryPolicy
from vpsbackup.backup.transport import ArtifactUploader
from vpsbackup.exceptions import AlreadyRunningError
from vpsbackup.locking import LockManager
from vpsbackup.logging import LoggingConfig, configure_logging
from vpsbackup.notifier import TelegramNotifier
from vpsbackup.utils import format_bytes

BYTES_PER_MB = 1024 * 1024


class PipelineState(Enum):
    """Stages a pipeline run passes through."""

    IDLE = "idle"
    LOCKED = "locked"
    PREFLIGHT_OK = "preflight_ok"
    PRODUCED = "produced"
    TRANSPORTED = "transported"
    RETAINED = "retained"
    REPORTED = "reported"


class FailureKind(Enum):
    """Categories of fatal pipeline failures."""

    ALREADY_RUNNING = "already_running"
    CONFIGURATION = "configuration"
    INSUFFICIENT_SPACE = "insufficient_space"
    NO_VALID_SOURCES = "no_valid_sources"
    PRODUCER_FAILURE = "producer_failure"
    TRANSPORT_FAILURE = "transport_failure"
    INTERRUPTED = "interrupted"
    UNEXPECTED = "unexpected"

    @property
    def exit_code(self) -> int:
        """Exit status reported to the scheduler for this kind of failure."""
        return _EXIT_CODES.get(self, 2)


_EXIT_CODES = {
    FailureKind.ALREADY_RUNNING: 1,
    FailureKind.CONFIGURATION: 1,
    FailureKind.INTERRUPTED: 130,
    FailureKind.UNEXPECTED: 3,
}


@dataclass(frozen=True)
class PipelineOutcome:
    """Result of one pipeline run: either a success or a classified failure."""

    success: bool
    message: str
    kind: FailureKind | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def succeeded(cls, message: str, details: dict[str, Any] | None = None) -> "PipelineOutcome":
        return cls(success=True, message=message, details=details or {})

    @classmethod
    def failed(cls, kind: FailureKind, message: str) -> "PipelineOutcome":
        return cls(success=False, message=message, kind=kind)

    @property
    def exit_code(self) -> int:
        """Process exit status for the external scheduler."""
        if self.success or self.kind is None:
            return 0
        return self.kind.exit_code


class BackupPipeline:
    """Runs one backup for the configured host.

    Collaborators are built from the configuration unless injected, which is
    how tests replace the external programs and the messaging endpoint.
    """

    def __init__(
        self,
        config: BackupConfig,
        logger: logging.Logger,
        notifier: TelegramNotifier | None = None,
        lock_manager: LockManager | None = None,
        preflight: PreflightChecker | None = None,
        restic_client: ResticClient | None = None,
        rclone_client: RcloneClient | None = None,
        cipher: ArtifactCipher | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Validated backup configuration
            logger: Logger instance; its audit handler records pipeline events
            notifier: Optional notifier (built from the Telegram settings)
            lock_manager: Optional lock manager (built from ``lock_file``)
            preflight: Optional preflight checker (built from ``min_free_bytes``)
            restic_client: Optional restic client for the incremental strategy
            rclone_client: Optional rclone client for the full strategy
            cipher: Optional artifact cipher for the full strategy
            retry_policy: Optional upload retry policy
            clock: Optional time source for artifact names

        """
        self.config = config
        self.logger = logger
        self.notifier = notifier or TelegramNotifier(
            logger,
            config.telegram_bot_token,
            config.telegram_chat_id,
            config.host_id,
            timeout=config.notify_timeout,
        )
        self.lock_manager = lock_manager or LockManager(Path(config.lock_file), logger)
        self.preflight = preflight or PreflightChecker(logger, config.min_free_bytes)
        self._restic_client = restic_client
        self._rclone_client = rclone_client
        self._cipher = cipher
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.upload_max_attempts,
            delay_seconds=config.upload_retry_delay,
        )
        self.clock = clock or datetime.now
        self.state = PipelineState.IDLE
        self.history: list[PipelineState] = [PipelineState.IDLE]
        self._producer: FullArchiveProducer | None = None

    def _transition(self, state: PipelineState) -> None:
        self.logger.debug(f"Pipeline state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    @property
    def restic_client(self) -> ResticClient:
        """Restic client with the repository password set."""
        if self._restic_client is None:
            self._restic_client = ResticClient(
                self.config.restic_path,
                self.config.restic_repository,
                self.logger,
            )
            self._restic_client.set_environment(self.config.password)
        return self._restic_client

    @property
    def rclone_client(self) -> RcloneClient:
        if self._rclone_client is None:
            self._rclone_client = RcloneClient(self.config.rclone_path, self.logger)
        return self._rclone_client

    @property
    def cipher(self) -> ArtifactCipher:
        if self._cipher is None:
            self._cipher = ArtifactCipher(self.config.password)
        return self._cipher

    @property
    def full_producer(self) -> FullArchiveProducer:
        """Producer owning the working directory of the full strategy."""
        if self._producer is None:
            self._producer = FullArchiveProducer(
                Path(self.config.tmp_dir),
                self.config.host_id,
                self.cipher,
                self.logger,
                clock=self.clock,
            )
        return self._producer

    def _capacity_path(self) -> Path:
        if self.config.strategy is BackupStrategy.FULL:
            return Path(self.config.tmp_dir)
        return Path(self.config.reference_mount)

    def run(self) -> PipelineOutcome:
        """Execute the pipeline once and report the outcome.

        Never raises for backup failures: every fatal condition is logged,
        notified and returned as a failed outcome. The lock is released on
        every path.
        """
        try:
            with self.lock_manager:
                self._transition(PipelineState.LOCKED)
                try:
                    outcome = self._execute()
                finally:
                    self._cleanup()
        except AlreadyRunningError as e:
            outcome = PipelineOutcome.failed(FailureKind.ALREADY_RUNNING, str(e))
        except ConfigurationError as e:
            outcome = PipelineOutcome.failed(FailureKind.CONFIGURATION, e.message)
        except InsufficientSpaceError as e:
            outcome = PipelineOutcome.failed(FailureKind.INSUFFICIENT_SPACE, e.message)
        except NoValidSourcesError as e:
            outcome = PipelineOutcome.failed(FailureKind.NO_VALID_SOURCES, e.message)
        except TransportError as e:
            outcome = PipelineOutcome.failed(FailureKind.TRANSPORT_FAILURE, e.message)
        except BackupError as e:
            # ProducerError and anything else the producers let escape
            outcome = PipelineOutcome.failed(FailureKind.PRODUCER_FAILURE, e.message)
        except (KeyboardInterrupt, SystemExit):
            outcome = PipelineOutcome.failed(FailureKind.INTERRUPTED, "Backup interrupted")
        except Exception as e:
            self.logger.exception("Unexpected error during backup")
            outcome = PipelineOutcome.failed(FailureKind.UNEXPECTED, f"Unexpected error: {e}")

        self._report(outcome)
        return outcome

    def _execute(self) -> PipelineOutcome:
        self.logger.info(
            f"Starting {self.config.strategy.value} backup process for {self.config.host_id}",
        )
        report = self.preflight.check(self.config.sources, self._capacity_path())
        self._transition(PipelineState.PREFLIGHT_OK)

        if self.config.strategy is BackupStrategy.FULL:
            return self._run_full(report)
        return self._run_incremental(report)

    def _run_incremental(self, report: PreflightReport) -> PipelineOutcome:
        producer = IncrementalProducer(self.restic_client, self.config.host_id, self.logger)
        result = producer.produce(report.valid_sources)
        self._transition(PipelineState.PRODUCED)

        retention = IncrementalRetention(
            self.restic_client,
            self.config.host_id,
            self.config.retention,
            self.logger,
        ).enforce()
        self._transition(PipelineState.RETAINED)

        repository_size: int | None = None
        try:
            repository_size = self.restic_client.stats().total_size
        except EngineError as e:
            self.logger.warning(f"Could not read repository stats: {e}")

        summary = result.summary
        lines = [
            "Incremental backup successful",
            f"📦 Data added: {format_bytes(summary.data_added)}",
            (
                f"📊 Files: new={summary.files_new}, changed={summary.files_changed}, "
                f"unchanged={summary.files_unmodified}"
            ),
            f"📚 Total snapshots: {self._count(retention.retained)}",
            f"💾 Repository size: {self._megabytes(repository_size)}",
        ]
        lines.extend(self._warning_lines(report, retention))
        return PipelineOutcome.succeeded(
            "\n".join(lines),
            details={
                "snapshot_id": summary.snapshot_id,
                "data_added": summary.data_added,
                "files_new": summary.files_new,
                "files_changed": summary.files_changed,
                "files_unmodified": summary.files_unmodified,
                "snapshots_retained": retention.retained,
                "repository_size": repository_size,
                "repository_initialized": result.repository_initialized,
                "missing_sources": report.missing_sources,
            },
        )

    def _run_full(self, report: PreflightReport) -> PipelineOutcome:
        produced = self.full_producer.produce(report.valid_sources)
        self._transition(PipelineState.PRODUCED)

        upload = ArtifactUploader(
            self.rclone_client,
            self.config.remote_dir,
            self.logger,
            self.retry_policy,
        ).upload(produced)
        self._transition(PipelineState.TRANSPORTED)

        retention = FullArchiveRetention(
            self.rclone_client,
            self.config.remote_dir,
            self.config.host_id,
            self.config.retention.max_keep,
            self.logger,
        ).enforce()
        self._transition(PipelineState.RETAINED)

        lines = [
            "Backup successful",
            f"📦 File size: {format_bytes(produced.size)}",
            f"📚 Backups retained: {self._count(retention.retained)}",
            f"📅 Backup file: {produced.artifact.name}",
            "✓ SHA256 checksum generated",
        ]
        if not upload.checksum_uploaded:
            lines.append("⚠️ Checksum file could not be uploaded")
        if produced.skipped_files:
            lines.append(f"⚠️ Skipped {len(produced.skipped_files)} unreadable file(s)")
        if produced.changed_files:
            lines.append(f"⚠️ {len(produced.changed_files)} file(s) changed while being archived")
        lines.extend(self._warning_lines(report, retention))
        return PipelineOutcome.succeeded(
            "\n".join(lines),
            details={
                "artifact": produced.artifact.name,
                "size": produced.size,
                "checksum": produced.checksum,
                "upload_attempts": upload.attempts,
                "remote_path": upload.remote_path,
                "backups_retained": retention.retained,
                "deleted": retention.deleted,
                "missing_sources": report.missing_sources,
            },
        )

    @staticmethod
    def _count(value: int | None) -> str:
        return "N/A" if value is None else str(value)

    @staticmethod
    def _megabytes(value: int | None) -> str:
        return "N/A" if value is None else f"{value // BYTES_PER_MB}MB"

    @staticmethod
    def _warning_lines(report: PreflightReport, retention: RetentionResult) -> list[str]:
        lines = [f"⚠️ Missing source: {source}" for source in report.missing_sources]
        if retention.failures:
            lines.append(f"⚠️ Retention had {len(retention.failures)} problem(s), see log")
        return lines

    def _cleanup(self) -> None:
        """Remove the full-strategy working directory; only called while locked."""
        if self.config.strategy is not BackupStrategy.FULL:
            return
        self.full_producer.cleanup()

    def _report(self, outcome: PipelineOutcome) -> None:
        if outcome.success:
            self.logger.info(
                f"Backup process completed! Method: {self.config.strategy.value}",
            )
            self.notifier.notify(outcome.message)
        else:
            self.logger.error(outcome.message)
            self.notifier.notify(outcome.message, is_error=True)
        self._transition(PipelineState.REPORTED)


def main() -> None:
    """Run one backup with the given configuration file."""
    parser = argparse.ArgumentParser(
        description="Run an encrypted backup of this server to remote storage.",
    )
    parser.add_argument(
        "--config",
        default="/etc/vpsbackup/config.yaml",
        help="Path to the configuration file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)",
    )
    args = parser.parse_args()

    logger = configure_logging(
        LoggingConfig(log_name="vpsbackup", log_level=args.log_level),
    )

    try:
        config = ConfigManager.load_config(args.config)
    except ConfigurationError:
        logger.exception("Configuration error")
        sys.exit(1)

    logger = configure_logging(
        LoggingConfig(
            log_name="vpsbackup",
            log_level=args.log_level,
            audit_file=Path(config.log_file),
        ),
    )

    try:
        outcome = BackupPipeline(config, logger).run()
    except Exception:
        logger.exception("Unexpected error")
        sys.exit(3)
    sys.exit(outcome.exit_code)


if __name__ == "__main__":
    main()
