"""vps-backup logging module.

Centralized logging configuration: console output, an optional rotating
diagnostic file and the append-only audit log of pipeline events.
"""

from .logger_setup import AuditFormatter, LoggingConfig, configure_logging

__all__ = ["AuditFormatter", "LoggingConfig", "configure_logging"]
