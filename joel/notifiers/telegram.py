"""Telegram Bot API sender."""

import logging
from typing import Any, Dict

import requests

from .base import BaseSender, NotificationError, RecipientBlockedError

logger = logging.getLogger(__name__)


class TelegramSender(BaseSender):
    """Sends Markdown messages through the Telegram Bot API."""

    max_message_length = 3000
    chunk_cooldown = 1.0

    def __init__(
        self,
        bot_token: str,
        api_url: str = "https://api.telegram.org",
        **kwargs: Any,
    ):
        """Initialize Telegram sender.

        Args:
            bot_token: Token issued by BotFather
            api_url: Bot API base URL
        """
        super().__init__(**kwargs)
        self.bot_token = bot_token
        self.api_url = api_url.rstrip("/")

    @property
    def send_message_url(self) -> str:
        return f"{self.api_url}/bot{self.bot_token}/sendMessage"

    def send_chunk(self, chat_id: str, chunk: str) -> None:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": chunk,
            "parse_mode": "Markdown",
            "link_preview_options": {"is_disabled": True},
        }

        try:
            response = requests.post(
                self.send_message_url, json=payload, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send Telegram message to {chat_id}: {e}")
            raise NotificationError(f"Telegram notification failed: {e}") from e

        if response.status_code == 403:
            raise RecipientBlockedError(f"Telegram user {chat_id} blocked the bot")

        if not response.ok:
            description = _error_description(response)
            logger.error(
                f"Telegram API error {response.status_code} for {chat_id}: {description}"
            )
            raise NotificationError(
                f"Telegram notification failed: {response.status_code} {description}"
            )


def _error_description(response: requests.Response) -> str:
    try:
        return str(response.json().get("description", response.text))
    except ValueError:
        return response.text
