"""Configuration self-test: sources, remote, encryption and notifications."""

import argparse
import logging
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

from vpsbackup.backup.config_manager import BackupConfig, ConfigManager
from vpsbackup.backup.encryption import ArtifactCipher
from vpsbackup.backup.exceptions import (
    ConfigurationError,
    DecryptionError,
    EncryptionError,
    RcloneCommandFailedError,
)
from vpsbackup.backup.rclone_client import RcloneClient, split_remote
from vpsbackup.logging import LoggingConfig, configure_logging
from vpsbackup.notifier import NotificationSendError, TelegramNotifier

TEST_PAYLOAD = b"vps-backup configuration test\n"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one configuration check."""

    name: str
    ok: bool
    detail: str = ""

    def __str__(self) -> str:
        status = "OK" if self.ok else "FAIL"
        return f"[{status}] {self.name}" + (f": {self.detail}" if self.detail else "")


class ConfigurationTester:
    """Runs read-only checks against a loaded configuration."""

    def __init__(
        self,
        config: BackupConfig,
        logger: logging.Logger,
        rclone_client: RcloneClient | None = None,
        notifier: TelegramNotifier | None = None,
        cipher: ArtifactCipher | None = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self.rclone = rclone_client or RcloneClient(config.rclone_path, logger, timeout=120)
        self.notifier = notifier or TelegramNotifier(
            logger,
            config.telegram_bot_token,
            config.telegram_chat_id,
            config.host_id,
            timeout=config.notify_timeout,
        )
        self.cipher = cipher or ArtifactCipher(config.password)

    def check_sources(self) -> CheckResult:
        """At least one source must exist; missing ones are listed."""
        missing = [source for source in self.config.sources if not Path(source).exists()]
        if len(missing) == len(self.config.sources):
            return CheckResult("sources", ok=False, detail="none of the sources exist")
        if missing:
            return CheckResult("sources", ok=True, detail=f"missing: {', '.join(missing)}")
        return CheckResult("sources", ok=True, detail=f"{len(self.config.sources)} found")

    def check_remote(self) -> CheckResult:
        """The remote must be configured in rclone and its directory reachable."""
        remote_name, _ = split_remote(self.config.remote_dir)
        try:
            if not self.rclone.remote_exists(remote_name):
                return CheckResult("remote", ok=False, detail=f"rclone remote '{remote_name}' not found")
            entries = self.rclone.list_directory(self.config.remote_dir)
        except RcloneCommandFailedError as e:
            return CheckResult("remote", ok=False, detail=e.message)
        return CheckResult("remote", ok=True, detail=f"{self.config.remote_dir} ({len(entries)} files)")

    def check_encryption(self) -> CheckResult:
        """Encrypt and decrypt a small temporary file with the configured passphrase."""
        with tempfile.TemporaryDirectory(prefix="vpsbackup-check-") as tmp:
            plain = Path(tmp) / "test.txt"
            encrypted = Path(tmp) / "test.txt.enc"
            restored = Path(tmp) / "restored.txt"
            plain.write_bytes(TEST_PAYLOAD)
            try:
                self.cipher.encrypt_file(plain, encrypted)
                self.cipher.decrypt_file(encrypted, restored)
            except (EncryptionError, DecryptionError) as e:
                return CheckResult("encryption", ok=False, detail=e.message)
            if restored.read_bytes() != TEST_PAYLOAD:
                return CheckResult("encryption", ok=False, detail="round trip mismatch")
        return CheckResult("encryption", ok=True, detail="round trip succeeded")

    def check_notifications(self, send_test_message: bool = False) -> CheckResult:
        """Telegram is optional; when configured, optionally send a test message."""
        if not self.notifier.enabled:
            return CheckResult("notifications", ok=True, detail="disabled (no credentials)")
        if not send_test_message:
            return CheckResult("notifications", ok=True, detail="configured")
        try:
            self.notifier.send_message(
                self.notifier.format_message("Test message from vps-backup configuration check"),
            )
        except NotificationSendError as e:
            return CheckResult("notifications", ok=False, detail=e.message)
        return CheckResult("notifications", ok=True, detail="test message sent")

    def run_all(self, send_test_message: bool = False) -> list[CheckResult]:
        """Run every check and log each result."""
        results = [
            self.check_sources(),
            self.check_remote(),
            self.check_encryption(),
            self.check_notifications(send_test_message),
        ]
        for result in results:
            if result.ok:
                self.logger.info(str(result))
            else:
                self.logger.warning(str(result))
        return results


def main() -> None:
    """Check a configuration file and report each result."""
    parser = argparse.ArgumentParser(description="Test the vps-backup configuration.")
    parser.add_argument(
        "--config",
        default="/etc/vpsbackup/config.yaml",
        help="Path to the configuration file",
    )
    parser.add_argument(
        "--send-test-message",
        action="store_true",
        help="Send a Telegram test message when notifications are configured",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: WARNING)",
    )
    args = parser.parse_args()

    logger = configure_logging(
        LoggingConfig(log_name="vpsbackup.check", log_level=args.log_level),
    )

    try:
        config = ConfigManager.load_config(args.config)
    except ConfigurationError as e:
        print(f"[FAIL] configuration: {e.message}")  # noqa: T201
        sys.exit(1)

    print(f"[OK] configuration: host {config.host_id}, strategy {config.strategy.value}")  # noqa: T201
    for key, value in config.redacted().items():
        logger.debug(f"{key} = {value}")

    results = ConfigurationTester(config, logger).run_all(args.send_test_message)
    for result in results:
        print(result)  # noqa: T201
    sys.exit(0 if all(result.ok for result in results) else 1)


if __name__ == "__main__":
    main()
