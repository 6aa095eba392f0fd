"""Restic client for executing restic commands with proper error handling and logging."""

import json
import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime

from vpsbackup.backup.config_manager import RetentionPolicy
from vpsbackup.backup.exceptions import ResticCommandFailedError, ResticOutputError

# restic exits with 3 when the snapshot was saved but some files were unreadable
EXIT_INCOMPLETE_SNAPSHOT = 3

_SIZE_UNITS = {
    "B": 1,
    "KIB": 1024,
    "MIB": 1024**2,
    "GIB": 1024**3,
    "TIB": 1024**4,
    "KB": 1000,
    "MB": 1000**2,
    "GB": 1000**3,
    "TB": 1000**4,
}


@dataclass(frozen=True)
class SnapshotSummary:
    """Outcome of a restic backup run."""

    snapshot_id: str | None
    files_new: int = 0
    files_changed: int = 0
    files_unmodified: int = 0
    data_added: int = 0
    total_files_processed: int = 0
    total_bytes_processed: int = 0
    incomplete: bool = False

    @property
    def short_id(self) -> str | None:
        """Return the abbreviated snapshot ID restic shows in listings."""
        return self.snapshot_id[:8] if self.snapshot_id else None


@dataclass(frozen=True)
class SnapshotInfo:
    """One entry of a restic snapshot listing."""

    snapshot_id: str
    time: datetime
    hostname: str
    tags: list[str] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RepositoryStats:
    """Aggregate repository statistics."""

    total_size: int
    total_file_count: int = 0


def parse_size(text: str) -> int:
    """Convert a restic size string such as ``1.234 MiB`` to bytes."""
    match = re.match(r"^\s*([\d.]+)\s*([KMGT]?i?B)\s*$", text, re.IGNORECASE)
    if not match:
        error_msg = f"Unrecognized size: {text!r}"
        raise ValueError(error_msg)
    value, unit = match.groups()
    return int(float(value) * _SIZE_UNITS[unit.upper()])


def _parse_time(value: str) -> datetime:
    # restic emits nanosecond precision, fromisoformat handles microseconds
    cleaned = re.sub(r"(\.\d{6})\d+", r"\1", value.replace("Z", "+00:00"))
    return datetime.fromisoformat(cleaned)


class ResticClient:
    """Handles all restic command execution with proper error handling and logging."""

    DEFAULT_TIMEOUT = 6 * 3600
    MAX_ERROR_OUTPUT = 1000

    def __init__(
        self,
        restic_path: str,
        repository: str,
        logger: logging.Logger,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the restic client with path, repository and logger."""
        self.restic_path = restic_path
        self.repository = repository
        self.logger = logger
        self.timeout = timeout
        self._restic_env: dict[str, str] | None = None

    def set_environment(
        self,
        restic_password: str,
        extra_env: dict[str, str] | None = None,
    ) -> None:
        """Set the restic environment variables."""
        env = dict(os.environ)
        env["RESTIC_REPOSITORY"] = self.repository
        env["RESTIC_PASSWORD"] = restic_password
        if extra_env:
            env.update(extra_env)
        self._restic_env = env

    def _get_environment(self) -> dict[str, str]:
        """Get the restic environment, ensuring it's been set."""
        if self._restic_env is None:
            error_msg = "Restic environment not set. Call set_environment() first."
            raise ValueError(error_msg)
        return self._restic_env

    def _run_command(
        self,
        args: list[str],
        allowed_returncodes: tuple[int, ...] = (0,),
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute a restic command with proper error handling and logging."""
        command = [self.restic_path, *args]
        effective_timeout = timeout or self.timeout
        self.logger.debug(f"Running command: {' '.join(command)}")

        try:
            result = subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                env=self._get_environment(),
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            error_msg = f"Command timed out after {effective_timeout} seconds: restic {args[0]}"
            self.logger.error(error_msg)  # noqa: TRY400
            raise ResticCommandFailedError(error_msg, original_error=e) from e
        except (subprocess.SubprocessError, OSError) as e:
            error_msg = f"Command failed: restic {args[0]}: {e}"
            self.logger.error(error_msg)  # noqa: TRY400
            raise ResticCommandFailedError(error_msg, original_error=e) from e

        if result.returncode not in allowed_returncodes:
            stderr_tail = (result.stderr or "").strip()[-self.MAX_ERROR_OUTPUT :]
            error_msg = (
                f"restic {args[0]} returned non-zero exit code {result.returncode}"
                + (f": {stderr_tail}" if stderr_tail else "")
            )
            self.logger.error(error_msg)
            raise ResticCommandFailedError(error_msg)
        return result

    def repository_exists(self) -> bool:
        """Check whether the repository exists and can be opened."""
        try:
            self._run_command(["cat", "config"], timeout=300)
        except ResticCommandFailedError:
            return False
        return True

    def init_repository(self) -> None:
        """Initialize a new restic repository."""
        self.logger.info("Initializing new restic repository...")
        self._run_command(["init"])
        self.logger.info("Repository initialized successfully")

    def ensure_repository_initialized(self) -> bool:
        """Initialize the repository if it cannot be opened.

        Returns:
            True if a new repository was created

        """
        self.logger.info("Checking repository...")
        if self.repository_exists():
            return False
        self.init_repository()
        return True

    def backup(
        self,
        sources: list[str],
        host: str,
        tags: list[str] | None = None,
    ) -> SnapshotSummary:
        """Run restic backup and return the parsed summary."""
        args = ["backup", "--json", "--host", host]
        for tag in tags or [host]:
            args.extend(["--tag", tag])
        args.extend(sources)
        self.logger.info(f"Executing command: restic {' '.join(args)}")

        result = self._run_command(
            args,
            allowed_returncodes=(0, EXIT_INCOMPLETE_SNAPSHOT),
        )
        incomplete = result.returncode == EXIT_INCOMPLETE_SNAPSHOT
        if incomplete:
            self.logger.warning("Some source files could not be read; snapshot is incomplete")

        summary = self.parse_backup_output(result.stdout, incomplete=incomplete)
        self.logger.info(f"Backup completed successfully. Snapshot ID: {summary.short_id}")
        return summary

    @classmethod
    def parse_backup_output(cls, output: str, incomplete: bool = False) -> SnapshotSummary:
        """Parse ``restic backup --json`` output, falling back to the text layout.

        Raises:
            ResticOutputError: If no summary can be found

        """
        for line in reversed(output.splitlines()):
            line = line.strip()
            if not line.startswith("{"):
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                continue
            if message.get("message_type") == "summary":
                return SnapshotSummary(
                    snapshot_id=message.get("snapshot_id"),
                    files_new=int(message.get("files_new", 0)),
                    files_changed=int(message.get("files_changed", 0)),
                    files_unmodified=int(message.get("files_unmodified", 0)),
                    data_added=int(message.get("data_added", 0)),
                    total_files_processed=int(message.get("total_files_processed", 0)),
                    total_bytes_processed=int(message.get("total_bytes_processed", 0)),
                    incomplete=incomplete,
                )
        return cls._parse_text_summary(output, incomplete)

    @staticmethod
    def _parse_text_summary(output: str, incomplete: bool) -> SnapshotSummary:
        files = re.search(
            r"Files:\s+(\d+) new,\s+(\d+) changed,\s+(\d+) unmodified",
            output,
        )
        added = re.search(r"Added to the repository:\s+([\d.]+\s*[KMGT]?i?B)", output)
        snapshot = re.search(r"snapshot ([0-9a-f]{8,64}) saved", output)
        if not files and not snapshot:
            error_msg = "Could not find a backup summary in restic output"
            raise ResticOutputError(error_msg)

        files_new, files_changed, files_unmodified = (
            (int(files.group(1)), int(files.group(2)), int(files.group(3)))
            if files
            else (0, 0, 0)
        )
        return SnapshotSummary(
            snapshot_id=snapshot.group(1) if snapshot else None,
            files_new=files_new,
            files_changed=files_changed,
            files_unmodified=files_unmodified,
            data_added=parse_size(added.group(1)) if added else 0,
            total_files_processed=files_new + files_changed + files_unmodified,
            incomplete=incomplete,
        )

    def snapshots(self, host: str | None = None, tag: str | None = None) -> list[SnapshotInfo]:
        """List snapshots, optionally scoped to a host and tag, oldest first."""
        args = ["snapshots", "--json"]
        if host:
            args.extend(["--host", host])
        if tag:
            args.extend(["--tag", tag])
        result = self._run_command(args, timeout=600)

        try:
            entries = json.loads(result.stdout or "[]") or []
            snapshots = [
                SnapshotInfo(
                    snapshot_id=entry.get("short_id") or entry["id"][:8],
                    time=_parse_time(entry["time"]),
                    hostname=entry.get("hostname", ""),
                    tags=list(entry.get("tags") or []),
                    paths=list(entry.get("paths") or []),
                )
                for entry in entries
            ]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            error_msg = f"Could not parse snapshot listing: {e}"
            raise ResticOutputError(error_msg, original_error=e) from e

        return sorted(snapshots, key=lambda s: s.time)

    def forget(
        self,
        policy: RetentionPolicy,
        host: str,
        tag: str | None = None,
        prune: bool = True,
    ) -> None:
        """Forget old snapshots of one host according to the retention policy."""
        keep_args = policy.restic_arguments()
        if not keep_args:
            error_msg = "Retention policy has no active tier"
            raise ValueError(error_msg)

        args = ["forget", "--host", host]
        if tag:
            args.extend(["--tag", tag])
        if prune:
            args.append("--prune")
        args.extend(keep_args)

        self.logger.info(f"Running forget operation: restic {' '.join(args)}")
        self._run_command(args)

    def stats(self) -> RepositoryStats:
        """Return the total repository size as reported by restic."""
        result = self._run_command(["stats", "--json"], timeout=1800)
        try:
            data = json.loads(result.stdout)
            return RepositoryStats(
                total_size=int(data["total_size"]),
                total_file_count=int(data.get("total_file_count", 0)),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            error_msg = f"Could not parse repository stats: {e}"
            raise ResticOutputError(error_msg, original_error=e) from e
