"""Password-based artifact encryption and checksums.

Encrypted artifacts use a small self-describing container::

    magic (8) | PBKDF2 iterations (4, big endian) | salt (16) | nonce (12)
    | AES-256-GCM ciphertext | tag (16)

The header is authenticated together with the ciphertext, so a wrong
passphrase, a truncated file or any modified byte fails decryption.
"""

import hashlib
import os
import struct
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vpsbackup.backup.exceptions import DecryptionError, EncryptionError

MAGIC = b"VPSBAK01"
SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
DEFAULT_ITERATIONS = 480000
MAX_ITERATIONS = 10_000_000
CHUNK_SIZE = 1024 * 1024

_ITERATIONS = struct.Struct(">I")
HEADER_SIZE = len(MAGIC) + _ITERATIONS.size + SALT_SIZE + NONCE_SIZE


class ArtifactCipher:
    """Encrypts and decrypts files with a key derived from a passphrase."""

    def __init__(self, password: str, iterations: int = DEFAULT_ITERATIONS) -> None:
        """Initialize the cipher.

        Args:
            password: Encryption passphrase
            iterations: PBKDF2-HMAC-SHA256 iteration count for new artifacts

        """
        if not password:
            error_msg = "Encryption passphrase cannot be empty"
            raise ValueError(error_msg)
        if not 0 < iterations <= MAX_ITERATIONS:
            error_msg = f"Iterations must be between 1 and {MAX_ITERATIONS}"
            raise ValueError(error_msg)
        self._password = password.encode("utf-8")
        self.iterations = iterations

    def __repr__(self) -> str:
        return f"ArtifactCipher(iterations={self.iterations})"

    def _derive_key(self, salt: bytes, iterations: int) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(self._password)

    def encrypt_file(self, src: Path, dst: Path) -> None:
        """Encrypt ``src`` into ``dst``.

        Raises:
            EncryptionError: If reading or writing fails

        """
        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        header = MAGIC + _ITERATIONS.pack(self.iterations) + salt + nonce
        key = self._derive_key(salt, self.iterations)
        encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
        encryptor.authenticate_additional_data(header)

        try:
            with src.open("rb") as reader, dst.open("wb") as writer:
                writer.write(header)
                while chunk := reader.read(CHUNK_SIZE):
                    writer.write(encryptor.update(chunk))
                writer.write(encryptor.finalize())
                writer.write(encryptor.tag)
        except OSError as e:
            dst.unlink(missing_ok=True)
            error_msg = f"Failed to encrypt {src.name}: {e}"
            raise EncryptionError(error_msg, original_error=e) from e

    def decrypt_file(self, src: Path, dst: Path) -> None:
        """Decrypt ``src`` into ``dst``.

        The plaintext is written to a partial file and moved into place only
        after the authentication tag has been verified.

        Raises:
            DecryptionError: On a wrong passphrase, a damaged artifact or I/O failure

        """
        partial = dst.with_name(dst.name + ".partial")
        try:
            total_size = src.stat().st_size
            if total_size < HEADER_SIZE + TAG_SIZE:
                error_msg = f"{src.name} is too short to be an encrypted artifact"
                raise DecryptionError(error_msg)

            with src.open("rb") as reader:
                header = reader.read(HEADER_SIZE)
                if not header.startswith(MAGIC):
                    error_msg = f"{src.name} is not an encrypted artifact"
                    raise DecryptionError(error_msg)
                offset = len(MAGIC)
                (iterations,) = _ITERATIONS.unpack_from(header, offset)
                offset += _ITERATIONS.size
                salt = header[offset : offset + SALT_SIZE]
                nonce = header[offset + SALT_SIZE :]
                if not 0 < iterations <= MAX_ITERATIONS:
                    error_msg = f"{src.name} has an invalid key derivation header"
                    raise DecryptionError(error_msg)

                reader.seek(total_size - TAG_SIZE)
                tag = reader.read(TAG_SIZE)
                reader.seek(HEADER_SIZE)

                key = self._derive_key(salt, iterations)
                decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce, tag)).decryptor()
                decryptor.authenticate_additional_data(header)

                remaining = total_size - HEADER_SIZE - TAG_SIZE
                with partial.open("wb") as writer:
                    while remaining > 0:
                        chunk = reader.read(min(CHUNK_SIZE, remaining))
                        if not chunk:
                            error_msg = f"{src.name} ended unexpectedly"
                            raise DecryptionError(error_msg)
                        remaining -= len(chunk)
                        writer.write(decryptor.update(chunk))
                    writer.write(decryptor.finalize())
        except InvalidTag as e:
            partial.unlink(missing_ok=True)
            error_msg = f"Failed to decrypt {src.name}: wrong passphrase or corrupted artifact"
            raise DecryptionError(error_msg, original_error=e) from e
        except DecryptionError:
            partial.unlink(missing_ok=True)
            raise
        except OSError as e:
            partial.unlink(missing_ok=True)
            error_msg = f"Failed to decrypt {src.name}: {e}"
            raise DecryptionError(error_msg, original_error=e) from e

        partial.replace(dst)


def compute_sha256(path: Path) -> str:
    """Return the hex SHA-256 digest of a file."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def write_checksum_file(path: Path, checksum_path: Path | None = None) -> tuple[Path, str]:
    """Write a sha256sum-compatible checksum file next to ``path``.

    Returns:
        The checksum file path and the hex digest

    """
    checksum = compute_sha256(path)
    target = checksum_path or path.with_name(path.name + ".sha256")
    target.write_text(f"{checksum}  {path.name}\n", encoding="utf-8")
    return target, checksum


def verify_checksum(path: Path, checksum_path: Path) -> bool:
    """Check ``path`` against the first digest recorded in ``checksum_path``."""
    content = checksum_path.read_text(encoding="utf-8").split()
    if not content:
        return False
    return content[0].lower() == compute_sha256(path)
