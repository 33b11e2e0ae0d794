"""Tests for the Telegram lead notifier."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from nptma.integrations.telegram import (
    LeadNotifier,
    NotifyError,
    TelegramClient,
    build_lead_notifier,
    format_lead_message,
)
from nptma.models.user import VerifiedIdentity

from conftest import TEST_BOT_TOKEN


def _ok_response():
    response = MagicMock()
    response.ok = True
    response.status_code = 200
    response.json.return_value = {"ok": True, "result": {"message_id": 1}}
    return response


class TestFormatLeadMessage:
    """Operator-facing message text."""

    def test_full_identity(self):
        identity = VerifiedIdentity(id=42, first_name="Alex", last_name="Rivers", username="alexrivers")
        assert format_lead_message(identity) == (
            "New mini-app lead\n"
            "username: alexrivers\n"
            "user_id: 42\n"
            "first_name: Alex\n"
            "last_name: Rivers"
        )

    def test_missing_fields_use_placeholder(self):
        text = format_lead_message(VerifiedIdentity(id=7))
        assert "username: (нет)" in text
        assert "first_name: (нет)" in text
        assert "last_name: (нет)" in text
        assert "user_id: 7" in text


class TestTelegramClient:
    """Bot API sendMessage call."""

    def test_requires_token(self):
        with pytest.raises(ValueError):
            TelegramClient("")

    def test_send_message_posts_json(self):
        client = TelegramClient(TEST_BOT_TOKEN, api_base="https://bot.example/")
        with patch("nptma.integrations.telegram.requests.post", return_value=_ok_response()) as post:
            result = client.send_message(424242, "hello")

        assert result["ok"] is True
        post.assert_called_once()
        url = post.call_args.args[0]
        assert url == f"https://bot.example/bot{TEST_BOT_TOKEN}/sendMessage"
        assert post.call_args.kwargs["json"] == {
            "chat_id": 424242,
            "text": "hello",
            "disable_web_page_preview": True,
        }
        assert post.call_args.kwargs["timeout"] == 10

    def test_non_2xx_raises_without_leaking_token(self):
        response = MagicMock()
        response.ok = False
        response.status_code = 403
        client = TelegramClient(TEST_BOT_TOKEN)
        with patch("nptma.integrations.telegram.requests.post", return_value=response):
            with pytest.raises(NotifyError) as exc:
                client.send_message(1, "x")

        assert "403" in str(exc.value)
        assert TEST_BOT_TOKEN not in str(exc.value)

    def test_transport_error_raises_without_leaking_token(self):
        client = TelegramClient(TEST_BOT_TOKEN)
        error = requests.ConnectionError(f"cannot reach https://api.telegram.org/bot{TEST_BOT_TOKEN}/sendMessage")
        with patch("nptma.integrations.telegram.requests.post", side_effect=error):
            with pytest.raises(NotifyError) as exc:
                client.send_message(1, "x")

        assert "ConnectionError" in str(exc.value)
        assert TEST_BOT_TOKEN not in str(exc.value)
        assert exc.value.__cause__ is None

    def test_non_json_success_body(self):
        response = _ok_response()
        response.json.side_effect = ValueError("no json")
        with patch("nptma.integrations.telegram.requests.post", return_value=response):
            assert TelegramClient(TEST_BOT_TOKEN).send_message(1, "x") == {}


class TestLeadNotifier:
    """Lead delivery to the operator chat."""

    def test_notify_sends_formatted_message_to_owner(self):
        client = MagicMock()
        notifier = LeadNotifier(client, owner_chat_id="424242")
        identity = VerifiedIdentity(id=42, username="alexrivers")

        notifier.notify(identity)

        client.send_message.assert_called_once_with("424242", format_lead_message(identity))

    def test_notify_propagates_failure(self):
        client = MagicMock()
        client.send_message.side_effect = NotifyError("Telegram API sendMessage failed: 500")
        with pytest.raises(NotifyError):
            LeadNotifier(client, owner_chat_id="1").notify(VerifiedIdentity(id=1))

    def test_build_lead_notifier_uses_api_base(self):
        notifier = build_lead_notifier(TEST_BOT_TOKEN, "1", "http://localhost:8081")
        assert notifier.client.api_base == "http://localhost:8081"
        assert notifier.owner_chat_id == "1"
