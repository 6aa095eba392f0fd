"""Retention enforcement for both backup strategies.

Retention never fails a run: problems are logged as warnings and reported in
the result so the caller can mention them.
"""

import logging
from dataclasses import dataclass, field

from vpsbackup.backup.artifacts import CHECKSUM_SUFFIX, parse_artifact_name, select_expired
from vpsbackup.backup.config_manager import RetentionPolicy
from vpsbackup.backup.exceptions import (
    EngineError,
    RcloneCommandFailedError,
    RetentionWarning,
)
from vpsbackup.backup.rclone_client import RcloneClient, join_remote
from vpsbackup.backup.restic_client import ResticClient


@dataclass
class RetentionResult:
    """What a retention pass kept and removed."""

    retained: int | None = None
    deleted: list[str] = field(default_factory=list)
    failures: list[RetentionWarning] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failures


class IncrementalRetention:
    """Applies the tiered keep policy to this host's restic snapshots."""

    def __init__(
        self,
        restic_client: ResticClient,
        host_id: str,
        policy: RetentionPolicy,
        logger: logging.Logger,
    ) -> None:
        self.restic = restic_client
        self.host_id = host_id
        self.policy = policy
        self.logger = logger

    def enforce(self) -> RetentionResult:
        """Forget and prune snapshots outside the policy, then count what is left."""
        result = RetentionResult()

        if not self.policy.active_tiers():
            warning = RetentionWarning("All retention tiers are zero; skipping prune")
            self.logger.warning(warning.message)
            result.failures.append(warning)
        else:
            self.logger.info("Applying retention policy...")
            try:
                self.restic.forget(self.policy, host=self.host_id, tag=self.host_id)
            except EngineError as e:
                warning = RetentionWarning(f"Retention policy application had issues: {e}", e)
                self.logger.warning(warning.message)
                result.failures.append(warning)

        try:
            result.retained = len(self.restic.snapshots(host=self.host_id, tag=self.host_id))
        except EngineError as e:
            self.logger.warning(f"Could not count snapshots: {e}")
        return result


class FullArchiveRetention:
    """Keeps the newest ``max_keep`` artifacts of this host in the remote directory."""

    def __init__(
        self,
        rclone: RcloneClient,
        remote_dir: str,
        host_id: str,
        max_keep: int,
        logger: logging.Logger,
    ) -> None:
        self.rclone = rclone
        self.remote_dir = remote_dir
        self.host_id = host_id
        self.max_keep = max_keep
        self.logger = logger

    def enforce(self) -> RetentionResult:
        """Delete expired artifacts and their checksum files.

        Every deletion is attempted even when earlier ones fail.
        """
        result = RetentionResult()
        try:
            names = self.rclone.list_directory(self.remote_dir)
        except RcloneCommandFailedError as e:
            warning = RetentionWarning(f"Could not list remote backups: {e}", e)
            self.logger.warning(warning.message)
            result.failures.append(warning)
            return result

        expired = select_expired(names, self.host_id, self.max_keep)
        listed = set(names)
        if self.max_keep <= 0:
            self.logger.info("max_keep is 0; keeping all remote backups")

        for name in expired:
            self._delete(name, result, required=True)
            # Checksum files may be missing from listings, so always try the sibling
            checksum_name = name + CHECKSUM_SUFFIX
            self._delete(checksum_name, result, required=checksum_name in listed)

        surviving = [
            n for n in names if parse_artifact_name(n, self.host_id) and n not in result.deleted
        ]
        result.retained = len(surviving)
        return result

    def _delete(self, name: str, result: RetentionResult, required: bool) -> None:
        """Delete one remote file; failures count only for files known to exist."""
        try:
            self.rclone.delete(join_remote(self.remote_dir, name))
        except RcloneCommandFailedError as e:
            if not required:
                self.logger.debug(f"No checksum file {name} to remove: {e}")
                return
            warning = RetentionWarning(f"Failed to delete old backup {name}: {e}", e)
            self.logger.warning(warning.message)
            result.failures.append(warning)
        else:
            self.logger.info(f"Deleted old backup: {name}")
            result.deleted.append(name)
