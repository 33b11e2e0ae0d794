"""Telegram Bot API integration for nptma.

Leads are delivered to the operator as a plain-text direct message through
one `sendMessage` call. There are no retries: a failed delivery leaves
`last_lead_at` untouched, so the user can submit again.
"""

import logging
from typing import Optional, Union

import requests

from nptma.config import DEFAULT_TELEGRAM_API_BASE
from nptma.models.constants import MISSING_FIELD_PLACEHOLDER
from nptma.models.user import VerifiedIdentity

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10


class NotifyError(RuntimeError):
    """Outbound notification could not be delivered."""


class TelegramClient:
    """Minimal client for the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = DEFAULT_TELEGRAM_API_BASE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Initialize Telegram client.

        Args:
            bot_token: Bot API token
            api_base: Bot API base URL (overridable for local Bot API servers)
            timeout: Request timeout in seconds
        """
        if not bot_token:
            raise ValueError("Telegram bot token is required. Set BOT_TOKEN env var.")
        self.bot_token = bot_token
        self.api_base = (api_base or DEFAULT_TELEGRAM_API_BASE).rstrip("/")
        self.timeout = timeout

    def _method_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.bot_token}/{method}"

    def send_message(self, chat_id: Union[int, str], text: str) -> dict:
        """Send a plain-text message.

        Returns:
            Parsed Bot API response body

        Raises:
            NotifyError: On transport failure or a non-2xx response
        """
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        try:
            response = requests.post(self._method_url("sendMessage"), json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            # The request URL embeds the bot token; report only the error type.
            raise NotifyError(f"Telegram API sendMessage failed: {type(e).__name__}") from None

        if not response.ok:
            raise NotifyError(f"Telegram API sendMessage failed: {response.status_code}")
        try:
            return response.json()
        except ValueError:
            return {}


def format_lead_message(identity: VerifiedIdentity) -> str:
    """Operator-facing lead text; absent fields get a placeholder."""
    return "\n".join(
        [
            "New mini-app lead",
            f"username: {identity.username or MISSING_FIELD_PLACEHOLDER}",
            f"user_id: {identity.id}",
            f"first_name: {identity.first_name or MISSING_FIELD_PLACEHOLDER}",
            f"last_name: {identity.last_name or MISSING_FIELD_PLACEHOLDER}",
        ]
    )


class LeadNotifier:
    """Forwards leads to the operator chat."""

    def __init__(self, client: TelegramClient, owner_chat_id: Union[int, str]):
        self.client = client
        self.owner_chat_id = owner_chat_id

    def notify(self, identity: VerifiedIdentity) -> None:
        """Send one lead message for `identity`.

        Raises:
            NotifyError: If Telegram did not accept the message
        """
        self.client.send_message(self.owner_chat_id, format_lead_message(identity))
        logger.debug(f"Lead for user {identity.id} delivered to operator chat")


def build_lead_notifier(bot_token: str, owner_chat_id: Union[int, str], api_base: Optional[str] = None) -> LeadNotifier:
    return LeadNotifier(TelegramClient(bot_token, api_base or DEFAULT_TELEGRAM_API_BASE), owner_chat_id)
