"""Messaging platform interface shared by every sender."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, List, Protocol

from ..models import MessageApp
from ..utils import split_text

DEFAULT_MAX_MESSAGE_LENGTH = 3000


class NotificationError(Exception):
    """Raised when a notification fails to send."""

    pass


class RecipientBlockedError(NotificationError):
    """Raised when the recipient has blocked the bot or left the conversation."""

    pass


class MessageSender(Protocol):
    """Protocol for platform send primitives."""

    async def send(self, chat_id: str, text: str) -> bool:
        """Send a message, split into chunks as the platform requires.

        Returns:
            True once every chunk was accepted by the platform

        Raises:
            NotificationError: If the platform rejects the message
        """
        ...

    async def send_template(self, chat_id: str, category: str) -> bool:
        """Send a pre-approved re-engagement template."""
        ...


class BaseSender:
    """Chunking and thread offloading for blocking HTTP senders."""

    max_message_length: float = DEFAULT_MAX_MESSAGE_LENGTH
    # Pause between two chunks of the same message, in seconds
    chunk_cooldown: float = 0.0

    def __init__(self, timeout: float = 30, sleep: Callable[[float], None] = time.sleep):
        self.timeout = timeout
        self._sleep = sleep

    def prepare_text(self, text: str) -> str:
        """Adapt digest markdown to what the platform renders."""
        return text

    def split_message(self, text: str) -> List[str]:
        return split_text(self.prepare_text(text), self.max_message_length)

    def send_chunk(self, chat_id: str, chunk: str) -> None:
        raise NotImplementedError

    def _send_sync(self, chat_id: str, text: str) -> bool:
        chunks = self.split_message(text)
        for index, chunk in enumerate(chunks):
            if index and self.chunk_cooldown:
                self._sleep(self.chunk_cooldown)
            self.send_chunk(chat_id, chunk)
        return bool(chunks)

    async def send(self, chat_id: str, text: str) -> bool:
        return await asyncio.to_thread(self._send_sync, chat_id, text)

    async def send_template(self, chat_id: str, category: str) -> bool:
        raise NotificationError(
            f"{type(self).__name__} does not support re-engagement templates"
        )


@dataclass(frozen=True)
class PlatformCapabilities:
    """What the pipeline needs to know about one message app."""

    message_app: MessageApp
    sender: MessageSender
    concurrency_limit: int
    requires_reengagement: bool = False
    markdown_links: bool = True
