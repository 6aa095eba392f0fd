"""Tests for the TelegramNotifier class and CLI interface."""

import logging
from unittest.mock import Mock, patch
from urllib.parse import parse_qs

import httpx
import pytest

from vpsbackup.notifier.exceptions import NotificationSendError
from vpsbackup.notifier.notifier import TelegramNotifier, main

BOT_TOKEN = "123456:ABC-secret-token"


def _notifier(handler=None, bot_token=BOT_TOKEN, chat_id="42") -> tuple[TelegramNotifier, Mock]:
    logger = Mock(spec=logging.Logger)
    transport = httpx.MockTransport(handler) if handler else None
    notifier = TelegramNotifier(
        logger,
        bot_token,
        chat_id,
        "web-01",
        timeout=2.0,
        transport=transport,
    )
    return notifier, logger


class TestTelegramNotifierConfiguration:
    """Test cases for enabling and formatting."""

    def test_disabled_without_token(self) -> None:
        """Test missing token disables notifications."""
        notifier, _ = _notifier(bot_token=None)
        assert notifier.enabled is False

    def test_disabled_without_chat_id(self) -> None:
        """Test missing chat id disables notifications."""
        notifier, _ = _notifier(chat_id="")
        assert notifier.enabled is False

    def test_notify_when_disabled_is_silent(self) -> None:
        """Test disabled notifier neither sends nor logs warnings."""
        notifier, logger = _notifier(bot_token=None)

        assert notifier.notify("hello") is False
        logger.warning.assert_not_called()

    def test_format_success_message(self) -> None:
        """Test the success layout."""
        notifier, _ = _notifier()
        text = notifier.format_message("Backup successful")

        assert text.splitlines() == [
            "🖥️ <b>web-01</b>",
            "✅ <b>Backup Completed</b>",
            "Backup successful",
        ]

    def test_format_error_message_escapes_html(self) -> None:
        """Test error layout and escaping of the body."""
        notifier, _ = _notifier()
        text = notifier.format_message("tar <failed> & stopped", is_error=True)

        assert "❌ <b>Backup Error</b>" in text
        assert "tar &lt;failed&gt; &amp; stopped" in text


class TestTelegramNotifierSending:
    """Test cases for delivery through the HTTP endpoint."""

    def test_send_message_posts_form_fields(self) -> None:
        """Test the request shape."""
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"ok": True})

        notifier, _ = _notifier(handler)
        assert notifier.notify("Backup successful") is True

        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == f"https://api.telegram.org/bot{BOT_TOKEN}/sendMessage"
        fields = parse_qs(request.content.decode())
        assert fields["chat_id"] == ["42"]
        assert fields["parse_mode"] == ["HTML"]
        assert "Backup successful" in fields["text"][0]

    def test_rejected_message_raises_without_token(self) -> None:
        """Test non-2xx responses raise and never leak the token."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text=f"Unauthorized for {BOT_TOKEN}")

        notifier, _ = _notifier(handler)
        with pytest.raises(NotificationSendError) as exc_info:
            notifier.send_message("text")

        assert "HTTP 401" in str(exc_info.value)
        assert BOT_TOKEN not in str(exc_info.value)

    def test_notify_swallows_endpoint_failure(self) -> None:
        """Test endpoint errors never propagate from notify."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="server error")

        notifier, logger = _notifier(handler)

        assert notifier.notify("Backup failed", is_error=True) is False
        logger.warning.assert_called_once()

    def test_notify_swallows_network_errors(self) -> None:
        """Test connection failures are swallowed and scrubbed."""

        def handler(request: httpx.Request) -> httpx.Response:
            error_msg = f"connection refused to {request.url}"
            raise httpx.ConnectError(error_msg, request=request)

        notifier, logger = _notifier(handler)

        assert notifier.notify("hello") is False
        warning = logger.warning.call_args[0][0]
        assert BOT_TOKEN not in warning

    def test_notify_swallows_timeouts(self) -> None:
        """Test timeouts are reported as failed sends."""

        def handler(request: httpx.Request) -> httpx.Response:
            error_msg = "timed out"
            raise httpx.ReadTimeout(error_msg, request=request)

        notifier, logger = _notifier(handler)

        assert notifier.notify("hello") is False
        assert "timed out" in logger.warning.call_args[0][0]

    def test_send_message_when_disabled_raises(self) -> None:
        """Test direct sends require credentials."""
        notifier, _ = _notifier(chat_id=None)
        with pytest.raises(NotificationSendError, match="not configured"):
            notifier.send_message("text")


class TestMainFunction:
    """Test cases for the notification CLI."""

    def test_main_config_error_exits_1(self, tmp_path) -> None:
        """Test a missing configuration file exits with status 1."""
        missing = tmp_path / "missing.yaml"
        with (
            patch("sys.argv", ["vpsbackup-notify", "hello", "--config", str(missing)]),
            pytest.raises(SystemExit) as exc_info,
        ):
            main()
        assert exc_info.value.code == 1

    def test_main_without_credentials_exits_1(self, tmp_path) -> None:
        """Test an unconfigured endpoint exits with status 1."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "sources: [/etc]\nremote_dir: 'gdrive:backups'\npassword: secret\nhost_id: web-01\n",
        )
        with (
            patch("sys.argv", ["vpsbackup-notify", "hello", "--config", str(config_file)]),
            pytest.raises(SystemExit) as exc_info,
        ):
            main()
        assert exc_info.value.code == 1

    def test_main_sends_message(self, tmp_path) -> None:
        """Test a configured endpoint sends one message."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "sources: [/etc]\n"
            "remote_dir: 'gdrive:backups'\n"
            "password: secret\n"
            "host_id: web-01\n"
            f"telegram_bot_token: '{BOT_TOKEN}'\n"
            "telegram_chat_id: '42'\n",
        )
        with (
            patch("sys.argv", ["vpsbackup-notify", "hello", "--config", str(config_file)]),
            patch.object(TelegramNotifier, "send_message") as mock_send,
        ):
            main()
        mock_send.assert_called_once()
        assert "hello" in mock_send.call_args[0][0]
