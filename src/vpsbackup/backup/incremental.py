"""Incremental artifact production through restic snapshots."""

import logging
from dataclasses import dataclass

from vpsbackup.backup.exceptions import (
    EngineError,
    RepositoryInitError,
    SnapshotFailedError,
)
from vpsbackup.backup.restic_client import ResticClient, SnapshotSummary


@dataclass(frozen=True)
class IncrementalResult:
    """Outcome of an incremental backup."""

    summary: SnapshotSummary
    repository_initialized: bool = False


class IncrementalProducer:
    """Creates a deduplicated, encrypted snapshot of the sources in a restic repository."""

    def __init__(self, restic_client: ResticClient, host_id: str, logger: logging.Logger) -> None:
        """Initialize the producer with a configured restic client."""
        self.restic = restic_client
        self.host_id = host_id
        self.logger = logger

    def produce(self, sources: list[str]) -> IncrementalResult:
        """Ensure the repository exists, then snapshot ``sources``.

        Raises:
            RepositoryInitError: If the repository is missing and cannot be initialized
            SnapshotFailedError: If the snapshot cannot be created

        """
        try:
            initialized = self.restic.ensure_repository_initialized()
        except EngineError as e:
            error_msg = f"Failed to initialize repository: {e}"
            raise RepositoryInitError(error_msg, original_error=e) from e
        if initialized:
            self.logger.info("Created new restic repository")

        self.logger.info("Creating incremental snapshot...")
        try:
            summary = self.restic.backup(sources, host=self.host_id, tags=[self.host_id])
        except EngineError as e:
            error_msg = f"Backup failed: {e}"
            raise SnapshotFailedError(error_msg, original_error=e) from e

        self.logger.info(
            f"Snapshot {summary.short_id} created: {summary.files_new} new, "
            f"{summary.files_changed} changed, {summary.files_unmodified} unchanged",
        )
        return IncrementalResult(summary=summary, repository_initialized=initialized)
