"""Tests for the rclone_client module."""

import logging
import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from vpsbackup.backup.exceptions import RcloneCommandFailedError
from vpsbackup.backup.rclone_client import RcloneClient, join_remote, split_remote


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=["rclone"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestRemoteLocators:
    """Test cases for locator helpers."""

    def test_split_remote(self) -> None:
        """Test remote name and path are separated."""
        assert split_remote("gdrive:vps-backups/web") == ("gdrive", "vps-backups/web")
        assert split_remote("s3:") == ("s3", "")

    def test_split_remote_invalid(self) -> None:
        """Test locators without a remote name are rejected."""
        with pytest.raises(ValueError):
            split_remote("/local/path")
        with pytest.raises(ValueError):
            split_remote(":path")

    def test_join_remote(self) -> None:
        """Test joining names onto remote directories."""
        assert join_remote("gdrive:backups", "a.enc") == "gdrive:backups/a.enc"
        assert join_remote("gdrive:backups/", "a.enc") == "gdrive:backups/a.enc"
        assert join_remote("gdrive:", "a.enc") == "gdrive:a.enc"


class TestRcloneClient:
    """Test cases for RcloneClient functionality."""

    @pytest.fixture
    def rclone(self) -> RcloneClient:
        """Create an RcloneClient with a mock logger."""
        return RcloneClient("rclone", Mock(spec=logging.Logger))

    def test_run_command_failure(self, rclone) -> None:
        """Test non-zero exits raise with stderr."""
        with patch(
            "vpsbackup.backup.rclone_client.subprocess.run",
            return_value=_completed(returncode=3, stderr="directory not found"),
        ):
            with pytest.raises(RcloneCommandFailedError, match="directory not found"):
                rclone._run_command(["lsf", "r:p"])

    def test_run_command_timeout(self, rclone) -> None:
        """Test timeouts raise RcloneCommandFailedError."""
        with patch(
            "vpsbackup.backup.rclone_client.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="rclone", timeout=1),
        ):
            with pytest.raises(RcloneCommandFailedError, match="timed out"):
                rclone._run_command(["size", "r:p"], timeout=1)

    def test_list_remotes(self, rclone) -> None:
        """Test remote names are returned without colons."""
        with patch.object(rclone, "_run_command", return_value=_completed("gdrive:\ns3:\n")):
            assert rclone.list_remotes() == ["gdrive", "s3"]
            assert rclone.remote_exists("gdrive") is True
            assert rclone.remote_exists("dropbox:") is False

    def test_list_directory(self, rclone) -> None:
        """Test file listing."""
        with patch.object(
            rclone,
            "_run_command",
            return_value=_completed("a.enc\na.enc.sha256\n\n"),
        ) as mock_run:
            assert rclone.list_directory("gdrive:backups") == ["a.enc", "a.enc.sha256"]
        assert mock_run.call_args[0][0] == ["lsf", "--files-only", "gdrive:backups"]

    def test_copy(self, rclone) -> None:
        """Test copy arguments."""
        with patch.object(rclone, "_run_command", return_value=_completed()) as mock_run:
            rclone.copy(Path("/tmp/work/a.enc"), "gdrive:backups")
        args = mock_run.call_args[0][0]
        assert args[:3] == ["copy", "/tmp/work/a.enc", "gdrive:backups"]

    def test_delete(self, rclone) -> None:
        """Test single-file deletion."""
        with patch.object(rclone, "_run_command", return_value=_completed()) as mock_run:
            rclone.delete("gdrive:backups/a.enc")
        assert mock_run.call_args[0][0][:2] == ["deletefile", "gdrive:backups/a.enc"]

    def test_size(self, rclone) -> None:
        """Test size parsing from JSON."""
        with patch.object(
            rclone,
            "_run_command",
            return_value=_completed('{"count":1,"bytes":2048,"sizeless":0}'),
        ):
            assert rclone.size("gdrive:backups/a.enc") == 2048

    def test_size_bad_output(self, rclone) -> None:
        """Test unparseable size output raises."""
        with patch.object(rclone, "_run_command", return_value=_completed("oops")):
            with pytest.raises(RcloneCommandFailedError):
                rclone.size("gdrive:backups/a.enc")
