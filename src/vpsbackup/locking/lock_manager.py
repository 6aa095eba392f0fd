"""Lock management functionality for single-instance operation."""

import fcntl
import logging
import os
import signal
import threading
import types
from datetime import datetime
from pathlib import Path

from vpsbackup.exceptions import AlreadyRunningError

_HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def _raise_system_exit(signum: int, _frame: types.FrameType | None) -> None:
    raise SystemExit(128 + signum)


class LockManager:
    """Manages a PID-recording lock file guarding a single pipeline run.

    The owner holds an exclusive ``flock`` on the lock file for the whole run,
    so two starters can never both claim it. A file left behind by a dead
    process is stale and gets reclaimed on the next start; a file naming a
    live process is respected even without the ``flock``.
    """

    def __init__(self, lock_file: Path, logger: logging.Logger) -> None:
        """Initialize the LockManager.

        Args:
            lock_file: Path to the lock file
            logger: Logger instance for logging operations

        """
        self.lock_file = Path(lock_file)
        self.logger = logger
        self._owned = False
        self._fd: int | None = None
        self._previous_handlers: dict[int, object] = {}

    def __enter__(self) -> "LockManager":
        """Context manager entry point."""
        # Handlers first, so a SIGTERM right after creation still releases
        self._install_signal_handlers()
        try:
            self.create_lock()
        except BaseException:
            try:
                self.release_lock()
            finally:
                self._restore_signal_handlers()
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Context manager exit point."""
        try:
            self.release_lock()
        finally:
            self._restore_signal_handlers()

    @property
    def is_held(self) -> bool:
        """Whether this instance currently owns the lock."""
        return self._owned

    @staticmethod
    def is_process_alive(pid: int) -> bool:
        """Check if a process with the given PID exists."""
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, but owned by another user
            return True
        return True

    def owner_pid(self) -> int | None:
        """Return the PID recorded in the lock file, or None if unreadable."""
        try:
            content = self.lock_file.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, OSError, UnicodeDecodeError):
            return None
        try:
            return int(content)
        except ValueError:
            return None

    def created_at(self) -> datetime | None:
        """Return the creation time of the lock file, if it exists."""
        try:
            return datetime.fromtimestamp(self.lock_file.stat().st_mtime)
        except FileNotFoundError:
            return None

    def _holds_current_file(self, fd: int) -> bool:
        """Whether ``fd`` still refers to the file at ``lock_file``."""
        try:
            on_disk = self.lock_file.stat()
        except FileNotFoundError:
            return False
        opened = os.fstat(fd)
        return (opened.st_dev, opened.st_ino) == (on_disk.st_dev, on_disk.st_ino)

    def _open_locked(self) -> int:
        """Open the lock file and take its exclusive flock.

        Raises:
            AlreadyRunningError: If another process holds the flock

        """
        while True:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_RDWR, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                os.close(fd)
                error_message = f"Another backup process is already running (PID: {self.owner_pid()})"
                raise AlreadyRunningError(error_message) from e
            if self._holds_current_file(fd):
                return fd
            # The previous owner removed the file between our open and flock
            os.close(fd)

    @staticmethod
    def _read_pid(fd: int) -> tuple[str, int | None]:
        os.lseek(fd, 0, os.SEEK_SET)
        content = os.read(fd, 64).decode("utf-8", errors="replace").strip()
        try:
            return content, int(content)
        except ValueError:
            return content, None

    def create_lock(self) -> None:
        """Create the lock file holding the current PID.

        Raises:
            AlreadyRunningError: If a live process already holds the lock

        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        fd = self._open_locked()
        try:
            content, pid = self._read_pid(fd)
            if pid is not None and pid != os.getpid() and self.is_process_alive(pid):
                error_message = f"Another backup process is already running (PID: {pid})"
                raise AlreadyRunningError(error_message)

            if content:
                self.logger.warning(
                    f"Removing stale lock file {self.lock_file} (recorded PID: {pid})",
                )
            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, f"{os.getpid()}\n".encode())
        except BaseException:
            # Closing drops the flock; the file is left as we found it
            os.close(fd)
            raise

        self._fd = fd
        self._owned = True
        self.logger.info(f"Lock file {self.lock_file} created.")

    def release_lock(self) -> None:
        """Release the lock file. Safe to call more than once."""
        if not self._owned:
            return
        self._owned = False
        try:
            if self.owner_pid() not in (None, os.getpid()):
                self.logger.warning("Lock file was taken over by another process; leaving it.")
                return
            # Unlink before dropping the flock so waiters see a new file
            if self.lock_file.exists():
                self.lock_file.unlink(missing_ok=True)
                self.logger.info("Lock file released.")
            else:
                self.logger.warning("Lock file does not exist when attempting to release.")
        finally:
            if self._fd is not None:
                os.close(self._fd)
                self._fd = None

    def _install_signal_handlers(self) -> None:
        """Turn termination signals into SystemExit so scoped release runs."""
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in _HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, _raise_system_exit)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            if handler is None:
                handler = signal.SIG_DFL
            signal.signal(signum, handler)  # type: ignore[arg-type]
        self._previous_handlers.clear()
