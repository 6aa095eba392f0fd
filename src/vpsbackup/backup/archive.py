"""Compressed tar archive creation for the full backup strategy."""

import logging
import os
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from vpsbackup.backup.exceptions import ArchiveError


@dataclass(frozen=True)
class ArchiveResult:
    """Summary of a created archive."""

    path: Path
    size: int
    files_added: int
    skipped: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)


class _ZeroPaddingReader:
    """Reads a file for tarfile, padding with zeros if the file shrank.

    tarfile copies exactly the size recorded in the member header; a file
    truncated after that header was built would otherwise abort the archive.
    """

    def __init__(self, fileobj: BinaryIO) -> None:
        self._fileobj = fileobj
        self.shortfall = 0

    def read(self, size: int = -1) -> bytes:
        data = self._fileobj.read(size)
        if size < 0 or len(data) >= size:
            return data
        missing = size - len(data)
        self.shortfall += missing
        return data + b"\0" * missing


@dataclass
class _ArchiveProgress:
    skipped: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)


class ArchiveBuilder:
    """Builds gzip-compressed tar archives from a list of source paths.

    Each source is stored under its base name, so ``/var/www/html`` becomes
    ``html/...`` inside the archive. Files that vanish or cannot be read while
    the archive is written are skipped and reported instead of aborting. A
    file that shrinks while it is read is kept at its original size, padded
    with zeros, and reported as changed.
    """

    def __init__(self, logger: logging.Logger) -> None:
        """Initialize the builder with a logger."""
        self.logger = logger

    def create(self, sources: list[str], output: Path) -> ArchiveResult:
        """Create ``output`` from ``sources``.

        Args:
            sources: Existing source paths to include
            output: Destination path of the ``.tar.gz`` archive

        Returns:
            ArchiveResult describing the archive

        Raises:
            ArchiveError: If the archive cannot be written

        """
        if not sources:
            error_msg = "No source paths provided"
            raise ArchiveError(error_msg)

        self.logger.info(f"Creating archive {output.name} from {len(sources)} source(s)")
        progress = _ArchiveProgress()
        files_added = 0

        try:
            with tarfile.open(output, "w:gz") as tar:
                for source in sources:
                    files_added += self._add_source(tar, Path(source), progress)
        except (OSError, tarfile.TarError) as e:
            output.unlink(missing_ok=True)
            error_msg = f"Failed to create archive {output.name}: {e}"
            raise ArchiveError(error_msg, original_error=e) from e

        size = output.stat().st_size
        if progress.skipped:
            self.logger.warning(f"Skipped {len(progress.skipped)} unreadable path(s) while archiving")
        if progress.changed:
            self.logger.warning(f"{len(progress.changed)} file(s) changed while being archived")
        self.logger.info(f"Archive created: {output.name} ({files_added} files, {size} bytes)")
        return ArchiveResult(
            path=output,
            size=size,
            files_added=files_added,
            skipped=progress.skipped,
            changed=progress.changed,
        )

    def _add_entry(self, tar: tarfile.TarFile, path: Path, arcname: str, progress: _ArchiveProgress) -> bool:
        """Add a single non-recursive entry, skipping unreadable or vanished paths."""
        if tar.name is not None and os.path.abspath(path) == tar.name:
            self.logger.debug(f"Skipping the archive itself: {path}")
            return False

        reader = None
        try:
            tarinfo = tar.gettarinfo(str(path), arcname)
            if tarinfo is None:
                self.logger.debug(f"Skipping {path}: unsupported file type")
                return False
            if not tarinfo.isreg():
                tar.addfile(tarinfo)
                return True
            with path.open("rb") as f:
                reader = _ZeroPaddingReader(f)
                tar.addfile(tarinfo, reader)
        except (PermissionError, FileNotFoundError) as e:
            self.logger.warning(f"Skipping {path}: {e.strerror or e}")
            progress.skipped.append(str(path))
            return False

        if reader.shortfall:
            self.logger.warning(
                f"{path} changed while being read; padded {reader.shortfall} missing byte(s) with zeros",
            )
            progress.changed.append(str(path))
        return True

    def _add_source(self, tar: tarfile.TarFile, source: Path, progress: _ArchiveProgress) -> int:
        base_name = source.name or source.anchor.strip(os.sep) or "root"
        if not source.is_dir() or source.is_symlink():
            return int(self._add_entry(tar, source, base_name, progress) and source.is_file())

        def on_walk_error(error: OSError) -> None:
            self.logger.warning(f"Skipping directory {error.filename}: {error.strerror}")
            progress.skipped.append(str(error.filename))

        files_added = 0
        for dirpath, dirnames, filenames in os.walk(source, onerror=on_walk_error):
            current = Path(dirpath)
            arc_dir = Path(base_name, current.relative_to(source)).as_posix()
            if not self._add_entry(tar, current, arc_dir, progress):
                dirnames[:] = []
                continue

            # os.walk does not descend into symlinked directories; keep them as links
            for dirname in sorted(dirnames):
                if (current / dirname).is_symlink():
                    self._add_entry(tar, current / dirname, f"{arc_dir}/{dirname}", progress)
            dirnames.sort()

            for filename in sorted(filenames):
                if self._add_entry(tar, current / filename, f"{arc_dir}/{filename}", progress):
                    files_added += 1
        return files_added
