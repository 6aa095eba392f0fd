"""Lock management functionality for single-instance operation."""

from vpsbackup.exceptions import AlreadyRunningError

from .lock_manager import LockManager

__all__ = ["AlreadyRunningError", "LockManager"]
