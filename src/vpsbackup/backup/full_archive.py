"""Full-archive artifact production: archive, encrypt and checksum."""

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from vpsbackup.backup.archive import ArchiveBuilder
from vpsbackup.backup.artifacts import Artifact
from vpsbackup.backup.encryption import ArtifactCipher, write_checksum_file
from vpsbackup.backup.exceptions import ArchiveError, ProducerError


@dataclass(frozen=True)
class ProducedArtifact:
    """An encrypted artifact and its checksum file, ready for transport."""

    artifact: Artifact
    path: Path
    checksum_path: Path
    size: int
    checksum: str
    skipped_files: list[str] = field(default_factory=list)
    changed_files: list[str] = field(default_factory=list)


class FullArchiveProducer:
    """Produces one self-contained encrypted archive per run.

    Every local step (archive, encrypt, remove plaintext, checksum) finishes
    before the artifact is handed to the transport layer.
    """

    def __init__(
        self,
        work_dir: Path,
        host_id: str,
        cipher: ArtifactCipher,
        logger: logging.Logger,
        archive_builder: ArchiveBuilder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the producer.

        Args:
            work_dir: Private working directory, cleared on every run
            host_id: Sanitized host identifier used in artifact names
            cipher: Cipher holding the encryption passphrase
            logger: Logger instance
            archive_builder: Optional archive builder (defaults to a new one)
            clock: Optional time source for artifact names

        """
        self.work_dir = Path(work_dir)
        self.host_id = host_id
        self.cipher = cipher
        self.logger = logger
        self.archive_builder = archive_builder or ArchiveBuilder(logger)
        self.clock = clock or datetime.now

    def prepare_work_dir(self) -> None:
        """Clear leftovers of earlier runs and recreate the working directory."""
        if self.work_dir.exists():
            self.logger.debug(f"Removing old working directory {self.work_dir}")
            shutil.rmtree(self.work_dir)
        self.work_dir.mkdir(mode=0o700, parents=True)
        self.work_dir.chmod(0o700)

    def produce(self, sources: list[str]) -> ProducedArtifact:
        """Archive, encrypt and checksum ``sources``.

        Raises:
            ProducerError: If any local step fails

        """
        artifact = Artifact.for_now(self.host_id, self.clock)
        try:
            self.prepare_work_dir()
        except OSError as e:
            error_msg = f"Cannot prepare working directory {self.work_dir}: {e}"
            raise ProducerError(error_msg, original_error=e) from e

        archive_path = self.work_dir / artifact.archive_name
        encrypted_path = self.work_dir / artifact.name

        self.logger.info("Creating compressed archive...")
        archive = self.archive_builder.create(sources, archive_path)

        self.logger.info("Encrypting archive...")
        try:
            self.cipher.encrypt_file(archive_path, encrypted_path)
        finally:
            archive_path.unlink(missing_ok=True)

        try:
            checksum_path, checksum = write_checksum_file(
                encrypted_path,
                self.work_dir / artifact.checksum_name,
            )
            size = encrypted_path.stat().st_size
        except OSError as e:
            error_msg = f"Failed to write checksum for {artifact.name}: {e}"
            raise ArchiveError(error_msg, original_error=e) from e

        self.logger.info(f"Artifact ready: {artifact.name} ({size} bytes, sha256 {checksum[:16]}...)")
        return ProducedArtifact(
            artifact=artifact,
            path=encrypted_path,
            checksum_path=checksum_path,
            size=size,
            checksum=checksum,
            skipped_files=archive.skipped,
            changed_files=archive.changed,
        )

    def cleanup(self) -> None:
        """Remove the working directory and everything in it."""
        if self.work_dir.exists():
            shutil.rmtree(self.work_dir, ignore_errors=True)
            self.logger.debug(f"Removed working directory {self.work_dir}")
