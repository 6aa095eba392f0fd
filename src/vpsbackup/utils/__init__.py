"""Utility functions shared by the backup components."""

from .common import default_host_id, format_bytes, mask_secret, sanitize_host_id

__all__ = ["default_host_id", "format_bytes", "mask_secret", "sanitize_host_id"]
