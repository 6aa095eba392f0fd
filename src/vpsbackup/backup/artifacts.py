"""Naming of full-strategy backup artifacts."""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

ARTIFACT_PREFIX = "backup-"
ARCHIVE_SUFFIX = ".tar.gz"
ENCRYPTED_SUFFIX = ".tar.gz.enc"
CHECKSUM_SUFFIX = ".sha256"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

_STAMP_PATTERN = re.compile(r"^(\d{8})(?:-(\d{6}))?$")


@dataclass(frozen=True)
class Artifact:
    """An encrypted archive produced for one host at one point in time."""

    host_id: str
    created_at: datetime

    @classmethod
    def for_now(
        cls,
        host_id: str,
        clock: Callable[[], datetime] = datetime.now,
    ) -> "Artifact":
        """Create an artifact stamped with the current time."""
        return cls(host_id=host_id, created_at=clock().replace(microsecond=0))

    @property
    def stem(self) -> str:
        return f"{ARTIFACT_PREFIX}{self.host_id}-{self.created_at.strftime(TIMESTAMP_FORMAT)}"

    @property
    def archive_name(self) -> str:
        """Name of the plaintext archive in the working directory."""
        return f"{self.stem}{ARCHIVE_SUFFIX}"

    @property
    def name(self) -> str:
        """Name of the encrypted artifact, as stored remotely."""
        return f"{self.stem}{ENCRYPTED_SUFFIX}"

    @property
    def checksum_name(self) -> str:
        return f"{self.name}{CHECKSUM_SUFFIX}"


def parse_artifact_name(name: str, host_id: str) -> Artifact | None:
    """Recover the artifact from a remote file name.

    Both ``YYYYMMDD-HHMMSS`` and date-only ``YYYYMMDD`` stamps are accepted.

    Returns:
        The artifact, or None for checksum files, other hosts and foreign names

    """
    prefix = f"{ARTIFACT_PREFIX}{host_id}-"
    if not name.startswith(prefix) or not name.endswith(ENCRYPTED_SUFFIX):
        return None

    stamp = name[len(prefix) : -len(ENCRYPTED_SUFFIX)]
    match = _STAMP_PATTERN.match(stamp)
    if not match:
        return None

    date_part, time_part = match.groups()
    try:
        created_at = datetime.strptime(date_part + (time_part or "000000"), "%Y%m%d%H%M%S")  # noqa: DTZ007
    except ValueError:
        return None
    return Artifact(host_id=host_id, created_at=created_at)


def select_expired(names: Iterable[str], host_id: str, max_keep: int) -> list[str]:
    """Pick the artifact names that fall outside the newest ``max_keep``.

    A ``max_keep`` of zero disables pruning.
    """
    if max_keep <= 0:
        return []

    parsed = []
    for name in names:
        artifact = parse_artifact_name(name, host_id)
        if artifact is not None:
            parsed.append((artifact.created_at, name))

    parsed.sort(reverse=True)
    return [name for _created_at, name in parsed[max_keep:]]
