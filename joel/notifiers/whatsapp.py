"""WhatsApp Cloud API sender."""

import asyncio
import logging
from typing import Any, Dict

import requests

from ..utils import markdown_to_whatsapp
from .base import BaseSender, NotificationError

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"

# Error returned when the 24 hour customer service window is closed
REENGAGEMENT_REQUIRED_CODE = 131047

CATEGORY_LABELS = {
    "people": "personnes",
    "name": "noms",
    "function": "fonctions",
    "organisation": "organisations",
}


class WhatsAppSender(BaseSender):
    """Sends text messages and re-engagement templates to WhatsApp users."""

    max_message_length = 3000
    chunk_cooldown = 0.5

    def __init__(
        self,
        user_token: str,
        phone_number_id: str,
        api_version: str = "v21.0",
        template_name: str = "notification_ready",
        template_language: str = "fr",
        api_url: str = GRAPH_API_URL,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.user_token = user_token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.template_name = template_name
        self.template_language = template_language
        self.api_url = api_url.rstrip("/")

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/{self.api_version}/{self.phone_number_id}/messages"

    def prepare_text(self, text: str) -> str:
        return markdown_to_whatsapp(text)

    def _post(self, chat_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": chat_id}
        body.update(payload)
        try:
            response = requests.post(
                self.messages_url,
                json=body,
                headers={"Authorization": f"Bearer {self.user_token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send WhatsApp message to {chat_id}: {e}")
            raise NotificationError(f"WhatsApp notification failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.ok or "error" in data:
            error = data.get("error", {}) if isinstance(data, dict) else {}
            code = error.get("code")
            message = error.get("message", response.text)
            if code == REENGAGEMENT_REQUIRED_CODE:
                logger.warning(f"WhatsApp user {chat_id} is outside the messaging window")
            logger.error(f"WhatsApp API error {response.status_code} for {chat_id}: {message}")
            raise NotificationError(f"WhatsApp notification failed: {code} {message}")

        return data

    def send_chunk(self, chat_id: str, chunk: str) -> None:
        self._post(
            chat_id,
            {"type": "text", "text": {"body": chunk, "preview_url": False}},
        )

    def _send_template_sync(self, chat_id: str, category: str) -> bool:
        data = self._post(
            chat_id,
            {
                "type": "template",
                "template": {
                    "name": self.template_name,
                    "language": {"code": self.template_language},
                    "components": [
                        {
                            "type": "body",
                            "parameters": [
                                {
                                    "type": "text",
                                    "text": CATEGORY_LABELS.get(category, category),
                                }
                            ],
                        }
                    ],
                },
            },
        )
        return bool(data.get("messages"))

    async def send_template(self, chat_id: str, category: str) -> bool:
        return await asyncio.to_thread(self._send_template_sync, chat_id, category)
