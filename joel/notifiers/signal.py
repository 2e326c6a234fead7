"""Signal sender backed by a signal-cli REST API instance."""

import logging
from typing import Any

import requests

from ..utils import markdown_to_plain_text
from .base import BaseSender, NotificationError, RecipientBlockedError

logger = logging.getLogger(__name__)


class SignalSender(BaseSender):
    """Sends plain-text messages from the bot's Signal number."""

    max_message_length = 3000
    chunk_cooldown = 1.0

    def __init__(self, api_url: str, phone_number: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_url = api_url.rstrip("/")
        self.phone_number = phone_number

    def prepare_text(self, text: str) -> str:
        return markdown_to_plain_text(text)

    def send_chunk(self, chat_id: str, chunk: str) -> None:
        payload = {
            "message": chunk,
            "number": self.phone_number,
            "recipients": [chat_id],
        }
        try:
            response = requests.post(
                f"{self.api_url}/v2/send", json=payload, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send Signal message to {chat_id}: {e}")
            raise NotificationError(f"Signal notification failed: {e}") from e

        if response.ok:
            return

        if "Unregistered user" in response.text:
            raise RecipientBlockedError(f"Signal user {chat_id} is no longer registered")

        logger.error(f"Signal API error {response.status_code} for {chat_id}: {response.text}")
        raise NotificationError(
            f"Signal notification failed: {response.status_code} {response.text}"
        )
