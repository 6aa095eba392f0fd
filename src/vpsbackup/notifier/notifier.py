"""Telegram status notifications for vps-backup."""

import argparse
import html
import logging
import sys
from pathlib import Path

import httpx

from vpsbackup.logging import LoggingConfig, configure_logging
from vpsbackup.notifier.exceptions import NotificationSendError


class TelegramNotifier:
    """Sends best-effort status messages to a Telegram chat."""

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"
    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        logger: logging.Logger,
        bot_token: str | None,
        chat_id: str | None,
        host_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            logger: Logger instance for logging operations
            bot_token: Telegram bot token (notifications disabled when missing)
            chat_id: Target chat identifier (notifications disabled when missing)
            host_id: Host identifier shown in every message
            timeout: Upper bound in seconds for a single send
            transport: Optional httpx transport, used to stub the endpoint

        """
        self.logger = logger
        self._bot_token = bot_token or None
        self.chat_id = str(chat_id) if chat_id else None
        self.host_id = host_id
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        """Whether both credentials are configured."""
        return bool(self._bot_token and self.chat_id)

    def _scrub(self, text: str) -> str:
        """Remove the bot token from text that may end up in logs."""
        if self._bot_token:
            return text.replace(self._bot_token, "***")
        return text

    def format_message(self, message: str, is_error: bool = False) -> str:
        """Build the HTML message body sent to the chat."""
        status = "❌ <b>Backup Error</b>" if is_error else "✅ <b>Backup Completed</b>"
        return (
            f"🖥️ <b>{html.escape(self.host_id)}</b>\n"
            f"{status}\n"
            f"{html.escape(message)}"
        )

    def send_message(self, text: str) -> None:
        """Post a pre-formatted message to the endpoint.

        Raises:
            NotificationSendError: If the request fails or is rejected

        """
        if not self.enabled:
            error_msg = "Telegram credentials are not configured"
            raise NotificationSendError(error_msg)

        url = self.API_URL.format(token=self._bot_token)
        data = {"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"}

        try:
            with httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                response = client.post(url, data=data)
        except httpx.TimeoutException as e:
            error_msg = f"Telegram request timed out after {self.timeout} seconds"
            raise NotificationSendError(error_msg, original_error=e) from None
        except httpx.HTTPError as e:
            error_msg = self._scrub(f"Telegram request failed: {type(e).__name__}: {e}")
            raise NotificationSendError(error_msg, original_error=e) from None

        if not 200 <= response.status_code < 300:  # noqa: PLR2004
            error_msg = self._scrub(
                f"Telegram rejected message: HTTP {response.status_code} {response.text[:200]}",
            )
            raise NotificationSendError(error_msg)

        self.logger.debug(f"Notification sent to chat {self.chat_id}")

    def notify(self, message: str, is_error: bool = False) -> bool:
        """Send a status message without ever raising.

        Returns:
            True if the message was delivered, False if disabled or failed

        """
        if not self.enabled:
            return False
        try:
            self.send_message(self.format_message(message, is_error=is_error))
        except NotificationSendError as e:
            self.logger.warning(f"Notification failed: {e.message}")
            return False
        except Exception as e:  # noqa: BLE001
            self.logger.warning(self._scrub(f"Unexpected notification error: {e}"))
            return False
        return True


def main() -> None:
    """Send a single notification using the backup configuration."""
    from vpsbackup.backup.config_manager import ConfigManager
    from vpsbackup.backup.exceptions import ConfigurationError

    parser = argparse.ArgumentParser(
        description="Send a Telegram notification with the vps-backup settings",
    )
    parser.add_argument("message", type=str, help="Message text to send")
    parser.add_argument(
        "--config",
        type=str,
        default="/etc/vpsbackup/config.yaml",
        help="Path to the configuration YAML file",
    )
    parser.add_argument(
        "--error",
        action="store_true",
        help="Format the message as an error notification",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)",
    )
    args = parser.parse_args()

    logger = configure_logging(
        LoggingConfig(log_name="vpsbackup.notify", log_level=args.log_level),
    )

    try:
        config = ConfigManager.load_config(Path(args.config))
    except ConfigurationError:
        logger.exception("Configuration error")
        sys.exit(1)

    notifier = TelegramNotifier(
        logger,
        config.telegram_bot_token,
        config.telegram_chat_id,
        config.host_id,
        timeout=config.notify_timeout,
    )
    if not notifier.enabled:
        logger.error("Telegram notifications are not configured")
        sys.exit(1)

    try:
        notifier.send_message(notifier.format_message(args.message, is_error=args.error))
    except NotificationSendError:
        logger.exception("Notification failed")
        sys.exit(2)
    logger.info("Notification sent")


if __name__ == "__main__":
    main()
