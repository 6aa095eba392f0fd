"""Verified delivery of full-strategy artifacts to remote storage."""

import logging
from dataclasses import dataclass

from vpsbackup.backup.exceptions import (
    RcloneCommandFailedError,
    RetryExhaustedError,
    TransportError,
    UploadVerificationError,
)
from vpsbackup.backup.full_archive import ProducedArtifact
from vpsbackup.backup.rclone_client import RcloneClient, join_remote
from vpsbackup.backup.retry import RetryPolicy


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a verified upload."""

    attempts: int
    remote_path: str
    checksum_uploaded: bool


class ArtifactUploader:
    """Uploads an artifact with bounded retries and remote size verification."""

    def __init__(
        self,
        rclone: RcloneClient,
        remote_dir: str,
        logger: logging.Logger,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the uploader for one remote directory."""
        self.rclone = rclone
        self.remote_dir = remote_dir
        self.logger = logger
        self.retry_policy = retry_policy or RetryPolicy()

    def _attempt(self, produced: ProducedArtifact, remote_path: str) -> None:
        self.rclone.copy(produced.path, self.remote_dir)
        remote_size = self.rclone.size(remote_path)
        if remote_size != produced.size:
            error_msg = (
                f"Upload verification failed: remote size {remote_size} "
                f"does not match local size {produced.size}"
            )
            raise UploadVerificationError(error_msg)

    def upload(self, produced: ProducedArtifact) -> UploadResult:
        """Deliver the artifact, then its checksum, then remove the local copies.

        Raises:
            TransportError: If no attempt produced a verified remote copy

        """
        remote_path = join_remote(self.remote_dir, produced.artifact.name)
        attempts_made = 0

        def attempt(number: int) -> None:
            nonlocal attempts_made
            attempts_made = number
            self._attempt(produced, remote_path)

        try:
            self.retry_policy.run(
                attempt,
                self.logger,
                f"Upload of {produced.artifact.name}",
                retry_on=(RcloneCommandFailedError, UploadVerificationError),
            )
        except RetryExhaustedError as e:
            error_msg = f"Upload failed after {e.attempts} attempts: {e.last_error}"
            raise TransportError(error_msg, original_error=e) from e

        self.logger.info(f"Upload verified: {remote_path} ({produced.size} bytes)")

        checksum_uploaded = True
        try:
            self.rclone.copy(produced.checksum_path, self.remote_dir)
        except RcloneCommandFailedError as e:
            checksum_uploaded = False
            self.logger.warning(f"Checksum upload failed (artifact is safe): {e}")

        for local_file in (produced.path, produced.checksum_path):
            local_file.unlink(missing_ok=True)

        return UploadResult(
            attempts=attempts_made,
            remote_path=remote_path,
            checksum_uploaded=checksum_uploaded,
        )
