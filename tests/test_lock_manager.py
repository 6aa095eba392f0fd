"""Tests for the lock manager module."""

import logging
import os
import signal
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from vpsbackup.exceptions import AlreadyRunningError
from vpsbackup.locking.lock_manager import LockManager, _raise_system_exit


class TestLockManager:
    """Test cases for LockManager functionality."""

    def test_init(self) -> None:
        """Test LockManager initialization."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            logger = Mock(spec=logging.Logger)

            lock_manager = LockManager(lock_file=lock_file, logger=logger)

            assert lock_manager.lock_file == lock_file
            assert lock_manager.logger == logger
            assert lock_manager.is_held is False

    def test_context_manager_success(self) -> None:
        """Test context manager creates and releases lock successfully."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            logger = Mock(spec=logging.Logger)

            with LockManager(lock_file=lock_file, logger=logger) as lock_manager:
                assert lock_file.exists()
                assert lock_manager.is_held
                assert lock_file.read_text().strip() == str(os.getpid())

            assert not lock_file.exists()

    def test_context_manager_releases_on_exception(self) -> None:
        """Test lock is released when the body raises."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            logger = Mock(spec=logging.Logger)

            with pytest.raises(RuntimeError, match="boom"):
                with LockManager(lock_file=lock_file, logger=logger):
                    error_msg = "boom"
                    raise RuntimeError(error_msg)

            assert not lock_file.exists()

    def test_context_manager_releases_on_keyboard_interrupt(self) -> None:
        """Test lock is released on interruption."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            logger = Mock(spec=logging.Logger)

            with pytest.raises(KeyboardInterrupt):
                with LockManager(lock_file=lock_file, logger=logger):
                    raise KeyboardInterrupt

            assert not lock_file.exists()

    def test_live_lock_raises_already_running(self) -> None:
        """Test a lock held by a running process is not touched."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            other_pid = os.getppid()
            lock_file.write_text(f"{other_pid}\n")
            logger = Mock(spec=logging.Logger)

            lock_manager = LockManager(lock_file=lock_file, logger=logger)
            with pytest.raises(AlreadyRunningError, match=f"PID: {other_pid}"):
                lock_manager.create_lock()

            assert lock_file.read_text() == f"{other_pid}\n"
            assert lock_manager.is_held is False

            # Releasing a lock we never took must leave it alone
            lock_manager.release_lock()
            assert lock_file.exists()

    def test_stale_lock_is_reclaimed(self) -> None:
        """Test a lock whose process is gone is replaced."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            lock_file.write_text("424242\n")
            logger = Mock(spec=logging.Logger)

            lock_manager = LockManager(lock_file=lock_file, logger=logger)
            with patch.object(LockManager, "is_process_alive", return_value=False):
                lock_manager.create_lock()

            assert lock_file.read_text().strip() == str(os.getpid())
            logger.warning.assert_called_once()
            assert "stale" in logger.warning.call_args[0][0]
            lock_manager.release_lock()
            assert not lock_file.exists()

    def test_unreadable_lock_content_is_stale(self) -> None:
        """Test a lock file without a PID is treated as stale."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            lock_file.write_text("not-a-pid")
            logger = Mock(spec=logging.Logger)

            with LockManager(lock_file=lock_file, logger=logger):
                assert lock_file.read_text().strip() == str(os.getpid())

    def test_lock_held_by_other_instance_raises_already_running(self) -> None:
        """Test a second starter cannot take a held lock."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            holder = LockManager(lock_file=lock_file, logger=Mock(spec=logging.Logger))
            other = LockManager(lock_file=lock_file, logger=Mock(spec=logging.Logger))

            holder.create_lock()
            try:
                with pytest.raises(AlreadyRunningError, match=f"PID: {os.getpid()}"):
                    other.create_lock()
                assert other.is_held is False
                assert lock_file.read_text().strip() == str(os.getpid())
            finally:
                holder.release_lock()

            assert not lock_file.exists()

    def test_concurrent_stale_reclaim_has_single_owner(self) -> None:
        """Test two starters reclaiming the same stale lock end with one owner."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            lock_file.write_text("424242\n")
            first_logger = Mock(spec=logging.Logger)
            first = LockManager(lock_file=lock_file, logger=first_logger)
            second = LockManager(lock_file=lock_file, logger=Mock(spec=logging.Logger))
            errors: list[Exception] = []

            def start_second(_message: str) -> None:
                try:
                    second.create_lock()
                except AlreadyRunningError as e:
                    errors.append(e)

            # The second starter runs while the first is reclaiming the stale lock
            first_logger.warning.side_effect = start_second
            with patch.object(LockManager, "is_process_alive", return_value=False):
                first.create_lock()

            assert first.is_held is True
            assert second.is_held is False
            assert len(errors) == 1
            first.release_lock()
            assert not lock_file.exists()

    def test_signal_handlers_installed_before_lock_creation(self) -> None:
        """Test a termination signal during lock creation is already handled."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            previous = signal.getsignal(signal.SIGTERM)
            seen: list[object] = []
            lock_manager = LockManager(lock_file=lock_file, logger=Mock(spec=logging.Logger))

            with patch.object(
                lock_manager,
                "create_lock",
                side_effect=lambda: seen.append(signal.getsignal(signal.SIGTERM)),
            ):
                with lock_manager:
                    pass

            assert seen == [_raise_system_exit]
            assert signal.getsignal(signal.SIGTERM) == previous

    def test_failed_lock_restores_signal_handlers(self) -> None:
        """Test handlers are restored when the lock cannot be taken."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            lock_file.write_text(f"{os.getppid()}\n")
            previous = signal.getsignal(signal.SIGTERM)

            with pytest.raises(AlreadyRunningError):
                with LockManager(lock_file=lock_file, logger=Mock(spec=logging.Logger)):
                    pass

            assert signal.getsignal(signal.SIGTERM) == previous
            assert lock_file.read_text() == f"{os.getppid()}\n"

    def test_release_is_idempotent(self) -> None:
        """Test releasing twice is harmless."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            logger = Mock(spec=logging.Logger)
            lock_manager = LockManager(lock_file=lock_file, logger=logger)

            lock_manager.create_lock()
            lock_manager.release_lock()
            lock_manager.release_lock()

            assert not lock_file.exists()

    def test_release_leaves_lock_taken_over_by_other_process(self) -> None:
        """Test a lock rewritten by another process is not removed."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            logger = Mock(spec=logging.Logger)
            lock_manager = LockManager(lock_file=lock_file, logger=logger)

            lock_manager.create_lock()
            lock_file.write_text(f"{os.getppid()}\n")
            lock_manager.release_lock()

            assert lock_file.exists()

    def test_owner_pid_and_created_at(self) -> None:
        """Test lock metadata accessors."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            logger = Mock(spec=logging.Logger)
            lock_manager = LockManager(lock_file=lock_file, logger=logger)

            assert lock_manager.owner_pid() is None
            assert lock_manager.created_at() is None

            with lock_manager:
                assert lock_manager.owner_pid() == os.getpid()
                assert lock_manager.created_at() is not None

    def test_is_process_alive(self) -> None:
        """Test process liveness probing."""
        assert LockManager.is_process_alive(os.getpid()) is True
        assert LockManager.is_process_alive(0) is False
        with patch("vpsbackup.locking.lock_manager.os.kill", side_effect=ProcessLookupError):
            assert LockManager.is_process_alive(12345) is False
        with patch("vpsbackup.locking.lock_manager.os.kill", side_effect=PermissionError):
            assert LockManager.is_process_alive(1) is True

    def test_sigterm_becomes_system_exit_and_handlers_are_restored(self) -> None:
        """Test termination signals release the lock through SystemExit."""
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_file = Path(temp_dir) / "test.lock"
            logger = Mock(spec=logging.Logger)
            previous = signal.getsignal(signal.SIGTERM)

            with pytest.raises(SystemExit) as exc_info:
                with LockManager(lock_file=lock_file, logger=logger):
                    os.kill(os.getpid(), signal.SIGTERM)

            assert exc_info.value.code == 128 + signal.SIGTERM
            assert not lock_file.exists()
            assert signal.getsignal(signal.SIGTERM) == previous
