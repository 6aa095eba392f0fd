"""Common utility functions for backup operations."""

import re
import socket

BYTES_PER_KB = 1024.0

_INVALID_HOST_CHARS = re.compile(r"[^a-z0-9-]")
_REPEATED_HYPHENS = re.compile(r"-{2,}")


def sanitize_host_id(raw: str) -> str:
    """Normalize a host label to lowercase alphanumerics and single hyphens.

    Args:
        raw: Host label as entered or reported by the system

    Returns:
        Sanitized host identifier (may be empty if nothing usable remains)

    """
    value = _INVALID_HOST_CHARS.sub("-", raw.strip().lower())
    value = _REPEATED_HYPHENS.sub("-", value)
    return value.strip("-")


def default_host_id() -> str:
    """Return the sanitized hostname of this machine."""
    return sanitize_host_id(socket.gethostname())


def format_bytes(bytes_value: int | None) -> str:
    """Format bytes in human-readable format.

    Args:
        bytes_value: Number of bytes to format, or None

    Returns:
        Human-readable string (e.g., "1.50 GB") or "N/A" if None

    """
    if bytes_value is None:
        return "N/A"

    value = float(bytes_value)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if value < BYTES_PER_KB:
            return f"{value:.2f} {unit}"
        value /= BYTES_PER_KB
    return f"{value:.2f} PB"


def mask_secret(secret: str | None, visible: int = 4) -> str:
    """Mask a secret for display, keeping only a short prefix."""
    if not secret:
        return "<not set>"
    if len(secret) <= visible * 2:
        return "***"
    return f"{secret[:visible]}..."
