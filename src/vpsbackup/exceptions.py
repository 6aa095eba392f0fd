"""Common exceptions used across the vps-backup package."""


class AlreadyRunningError(Exception):
    """Exception raised when another live process holds the backup lock."""
