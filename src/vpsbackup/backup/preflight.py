"""Precondition checks run before any backup resources are committed."""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from vpsbackup.backup.exceptions import InsufficientSpaceError, NoValidSourcesError

GIB = 1024 * 1024 * 1024
BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class PreflightReport:
    """Result of a successful preflight check."""

    free_bytes: int
    capacity_path: Path
    valid_sources: list[str] = field(default_factory=list)
    missing_sources: list[str] = field(default_factory=list)


class PreflightChecker:
    """Validates free capacity and source existence."""

    MIN_FREE_BYTES = GIB

    def __init__(self, logger: logging.Logger, min_free_bytes: int = MIN_FREE_BYTES) -> None:
        """Initialize the checker with a logger and the capacity floor in bytes."""
        self.logger = logger
        self.min_free_bytes = min_free_bytes

    @staticmethod
    def _nearest_existing(path: Path) -> Path:
        """Walk up until an existing directory is found."""
        candidate = path
        while not candidate.exists() and candidate != candidate.parent:
            candidate = candidate.parent
        return candidate

    def free_bytes(self, path: Path) -> int:
        """Return free bytes on the filesystem hosting ``path``."""
        return shutil.disk_usage(self._nearest_existing(Path(path))).free

    def partition_sources(self, sources: list[str]) -> tuple[list[str], list[str]]:
        """Split sources into existing and missing ones, keeping order."""
        existing: list[str] = []
        missing: list[str] = []
        for source in sources:
            if Path(source).exists():
                existing.append(source)
            else:
                missing.append(source)
        return existing, missing

    def check(
        self,
        sources: list[str],
        capacity_path: Path,
        min_free_bytes: int | None = None,
    ) -> PreflightReport:
        """Run all preflight checks.

        Args:
            sources: Configured source paths
            capacity_path: Path whose filesystem must have enough free space
            min_free_bytes: Override for the capacity floor

        Returns:
            PreflightReport with the sources that will be backed up

        Raises:
            InsufficientSpaceError: If free space is below the floor
            NoValidSourcesError: If none of the sources exist

        """
        floor = self.min_free_bytes if min_free_bytes is None else min_free_bytes
        free = self.free_bytes(capacity_path)
        if free < floor:
            error_msg = (
                f"Insufficient disk space (available: {free // BYTES_PER_MB}MB, "
                f"required: {floor // BYTES_PER_MB}MB)"
            )
            raise InsufficientSpaceError(error_msg)

        valid, missing = self.partition_sources(sources)
        for source in missing:
            self.logger.warning(f"Warning: Backup source does not exist - {source}")

        if not valid:
            error_msg = "None of the configured backup sources exist"
            raise NoValidSourcesError(error_msg)

        self.logger.info(
            f"Preflight passed: {free // BYTES_PER_MB}MB free on {capacity_path}, "
            f"{len(valid)} source(s) to back up",
        )
        return PreflightReport(
            free_bytes=free,
            capacity_path=Path(capacity_path),
            valid_sources=valid,
            missing_sources=missing,
        )
