"""Logging configuration and setup utilities for vps-backup.

Three kinds of output are available: console output, an optional rotating
diagnostic file and the audit log. The audit log is a plain append-only file
with one ``<timestamp>: <message>`` line per event. It is written through a
``WatchedFileHandler`` so an external logrotate can move the file between runs.
"""

import logging
import logging.config
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DIAGNOSTIC_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d: %(message)s"
SYSTEM_LOG_DIR = Path("/var/log")


class LoggerConfigError(Exception):
    """Custom exception for logger configuration errors."""


class AuditFormatter(logging.Formatter):
    """Formatter for audit log lines; failures carry an ``ERROR:`` flag."""

    def __init__(self, datefmt: str = DATE_FORMAT) -> None:
        super().__init__(datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:
        """Render exactly one line; tracebacks stay in the diagnostic handlers."""
        parts = (line.strip() for line in record.getMessage().splitlines())
        message = " ".join(part for part in parts if part)
        if record.levelno >= logging.ERROR:
            message = f"ERROR: {message}"
        return f"{self.formatTime(record, self.datefmt)}: {message}"


@dataclass
class LoggingConfig:
    """Where and how much a process logs.

    Console output is on by default. The rotating diagnostic file is opt-in.
    ``audit_file`` enables the event log that operators read after a run.
    """

    log_name: str
    log_filename: str | None = None
    log_level: str = "INFO"
    log_dir: Path | None = None
    max_bytes: int = 5 * 1024 * 1024  # 5 MB
    backup_count: int = 3
    enable_console: bool = True
    enable_file: bool = False
    audit_file: Path | None = None

    @property
    def diagnostic_file(self) -> Path:
        """Location of the rotating diagnostic log."""
        directory = self.log_dir if self.log_dir is not None else get_default_log_dir()
        return directory / (self.log_filename or f"{self.log_name}.log")


def validate_log_level(log_level: str) -> int:
    """Validate and return the numeric log level."""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        error_msg = f"Invalid log level: {log_level}"
        raise LoggerConfigError(error_msg)
    return numeric_level


def get_default_log_dir() -> Path:
    """Use /var/log when writable (root under cron), the user's home otherwise."""
    if SYSTEM_LOG_DIR.exists() and os.access(SYSTEM_LOG_DIR, os.W_OK):
        return SYSTEM_LOG_DIR / "vpsbackup"
    return Path.home() / ".local" / "log" / "vpsbackup"


def _ensure_directory(directory: Path) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        error_msg = f"Failed to create log directory {directory}: {e}"
        raise LoggerConfigError(error_msg) from e


def _console_handler(level: int) -> dict[str, Any]:
    return {"class": "logging.StreamHandler", "level": level, "formatter": "standard"}


def _diagnostic_handler(config: LoggingConfig, level: int) -> dict[str, Any]:
    log_file = config.diagnostic_file
    _ensure_directory(log_file.parent)
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "detailed",
        "filename": str(log_file),
        "maxBytes": config.max_bytes,
        "backupCount": config.backup_count,
        "encoding": "utf8",
    }


def _audit_handler(audit_file: Path, level: int) -> dict[str, Any]:
    _ensure_directory(audit_file.parent)
    return {
        "class": "logging.handlers.WatchedFileHandler",
        # Debug noise stays out of the audit trail
        "level": max(level, logging.INFO),
        "formatter": "audit",
        "filename": str(audit_file),
        "mode": "a",
        "encoding": "utf8",
    }


def create_logging_config(config: LoggingConfig) -> dict[str, Any]:
    """Create a ``dictConfig`` dictionary for ``config``.

    Raises:
        LoggerConfigError: If the level is unknown or a log directory cannot be created

    """
    level = validate_log_level(config.log_level)

    handlers: dict[str, dict[str, Any]] = {}
    if config.enable_file:
        handlers["file_handler"] = _diagnostic_handler(config, level)
    if config.audit_file is not None:
        handlers["audit_handler"] = _audit_handler(Path(config.audit_file), level)
    if config.enable_console:
        handlers["console_handler"] = _console_handler(level)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": CONSOLE_FORMAT, "datefmt": DATE_FORMAT},
            "detailed": {"format": DIAGNOSTIC_FORMAT, "datefmt": DATE_FORMAT},
            "audit": {"()": AuditFormatter},
        },
        "handlers": handlers,
        "loggers": {
            config.log_name: {
                "handlers": list(handlers),
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Configure logging for the application.

    Configuration problems never stop a backup: the logger falls back to
    plain console output and records why.

    Args:
        config: Logging configuration object

    Returns:
        Configured logger instance

    """
    try:
        logging.config.dictConfig(create_logging_config(config))
    except (LoggerConfigError, ValueError, KeyError, OSError):
        logging.basicConfig(level=logging.INFO, format=CONSOLE_FORMAT, datefmt=DATE_FORMAT)
        logger = logging.getLogger(config.log_name)
        logger.exception("Failed to configure logging. Using fallback configuration.")
        return logger

    logger = logging.getLogger(config.log_name)
    logger.debug(f"Logging configured for '{config.log_name}' at level {config.log_level}")
    return logger
