"""vps-backup - automated, encrypted server backups to remote object storage.

Runs a single backup pipeline per invocation: lock, preflight, produce an
artifact (restic snapshot or encrypted tar archive), transport, retention and
status reporting.
"""

__version__ = "0.1.0"
__author__ = "vps-backup maintainers"

from . import exceptions, logging

__all__ = ["exceptions", "logging"]
