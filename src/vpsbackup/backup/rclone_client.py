"""Rclone client for transferring artifacts to and from remote storage."""

import json
import logging
import subprocess
from pathlib import Path

from vpsbackup.backup.exceptions import RcloneCommandFailedError


def split_remote(locator: str) -> tuple[str, str]:
    """Split ``remote-name:path`` into its remote name and path.

    Raises:
        ValueError: If the locator has no remote name

    """
    remote_name, separator, path = locator.partition(":")
    if not separator or not remote_name:
        error_msg = f"Not a remote locator: {locator!r}"
        raise ValueError(error_msg)
    return remote_name, path.strip("/")


def join_remote(remote_dir: str, name: str) -> str:
    """Return the locator of ``name`` inside ``remote_dir``."""
    remote_name, path = split_remote(remote_dir)
    if not path:
        return f"{remote_name}:{name}"
    return f"{remote_name}:{path}/{name}"


class RcloneClient:
    """Handles rclone command execution with proper error handling and logging."""

    DEFAULT_TIMEOUT = 6 * 3600
    MAX_ERROR_OUTPUT = 1000

    def __init__(
        self,
        rclone_path: str,
        logger: logging.Logger,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the rclone client with executable path and logger."""
        self.rclone_path = rclone_path
        self.logger = logger
        self.timeout = timeout

    def _run_command(
        self,
        args: list[str],
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute an rclone command, raising on any failure."""
        command = [self.rclone_path, *args]
        effective_timeout = timeout or self.timeout
        self.logger.debug(f"Running command: {' '.join(command)}")

        try:
            result = subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            error_msg = f"Command timed out after {effective_timeout} seconds: rclone {args[0]}"
            self.logger.error(error_msg)  # noqa: TRY400
            raise RcloneCommandFailedError(error_msg, original_error=e) from e
        except (subprocess.SubprocessError, OSError) as e:
            error_msg = f"Command failed: rclone {args[0]}: {e}"
            self.logger.error(error_msg)  # noqa: TRY400
            raise RcloneCommandFailedError(error_msg, original_error=e) from e

        if result.returncode != 0:
            stderr_tail = (result.stderr or "").strip()[-self.MAX_ERROR_OUTPUT :]
            error_msg = f"rclone {args[0]} returned non-zero exit code {result.returncode}"
            if stderr_tail:
                error_msg += f": {stderr_tail}"
            raise RcloneCommandFailedError(error_msg)
        return result

    def list_remotes(self) -> list[str]:
        """Return the names of the configured remotes, without the trailing colon."""
        result = self._run_command(["listremotes"], timeout=60)
        return [line.strip().rstrip(":") for line in result.stdout.splitlines() if line.strip()]

    def remote_exists(self, name: str) -> bool:
        """Check whether a remote with this name is configured."""
        return name.rstrip(":") in self.list_remotes()

    def list_directory(self, remote_dir: str) -> list[str]:
        """List the file names directly inside ``remote_dir``."""
        result = self._run_command(["lsf", "--files-only", remote_dir], timeout=600)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def copy(self, local_path: Path, remote_dir: str) -> None:
        """Copy a single local file into ``remote_dir``."""
        self.logger.info(f"Uploading {local_path.name} to {remote_dir}")
        self._run_command(
            [
                "copy",
                str(local_path),
                remote_dir,
                "--retries",
                "3",
                "--low-level-retries",
                "10",
            ],
        )

    def delete(self, remote_path: str) -> None:
        """Delete a single remote file."""
        self._run_command(["deletefile", remote_path, "--drive-use-trash=false"], timeout=600)

    def size(self, remote_path: str) -> int:
        """Return the size in bytes of a remote file or directory."""
        result = self._run_command(["size", "--json", remote_path], timeout=600)
        try:
            return int(json.loads(result.stdout)["bytes"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            error_msg = f"Could not parse rclone size output for {remote_path}"
            raise RcloneCommandFailedError(error_msg, original_error=e) from e
