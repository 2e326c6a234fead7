"""Matrix client-server API sender."""

import logging
import uuid
from typing import Any
from urllib.parse import quote

import requests

from ..utils import markdown_to_html
from .base import BaseSender, NotificationError, RecipientBlockedError

logger = logging.getLogger(__name__)


class MatrixSender(BaseSender):
    """Posts m.room.message events with an HTML formatted body."""

    max_message_length = 3000

    def __init__(self, home_url: str, bot_token: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.home_url = home_url.rstrip("/")
        self.bot_token = bot_token

    def message_url(self, room_id: str) -> str:
        return (
            f"{self.home_url}/_matrix/client/v3/rooms/{quote(room_id, safe='')}"
            f"/send/m.room.message/{uuid.uuid4().hex}"
        )

    def send_chunk(self, chat_id: str, chunk: str) -> None:
        payload = {
            "msgtype": "m.text",
            "body": chunk,
            "format": "org.matrix.custom.html",
            "formatted_body": markdown_to_html(chunk),
        }
        try:
            response = requests.put(
                self.message_url(chat_id),
                json=payload,
                headers={"Authorization": f"Bearer {self.bot_token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send Matrix message to {chat_id}: {e}")
            raise NotificationError(f"Matrix notification failed: {e}") from e

        if response.status_code == 403:
            raise RecipientBlockedError(f"Bot is not allowed to post in room {chat_id}")

        if not response.ok:
            logger.error(f"Matrix API error {response.status_code} for {chat_id}: {response.text}")
            raise NotificationError(
                f"Matrix notification failed: {response.status_code} {response.text}"
            )
