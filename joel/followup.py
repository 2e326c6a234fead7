"""Pending follow-up questions asked to a chat, answered by its next message."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

from .models import MessageApp

SessionKey = Tuple[MessageApp, str]


class ChatSession(Protocol):
    """Conversation with one user on one message app."""

    message_app: MessageApp
    chat_id: str

    async def send_message(self, text: str, options: Optional[Dict[str, Any]] = None) -> None:
        ...


FollowUpHandler = Callable[[ChatSession, str, Any], Awaitable[Any]]


@dataclass
class FollowUp:
    handler: FollowUpHandler
    context: Any = None


class FollowUpStore(Protocol):
    """Storage for pending follow-ups, keyed by (message app, chat id)."""

    def get(self, key: SessionKey) -> Optional[FollowUp]:
        ...

    def set(self, key: SessionKey, follow_up: FollowUp) -> None:
        ...

    def pop(self, key: SessionKey) -> Optional[FollowUp]:
        ...


class InMemoryFollowUpStore:
    """Process-local store, suitable for a single bot process."""

    def __init__(self):
        self._follow_ups: Dict[SessionKey, FollowUp] = {}

    def get(self, key: SessionKey) -> Optional[FollowUp]:
        return self._follow_ups.get(key)

    def set(self, key: SessionKey, follow_up: FollowUp) -> None:
        self._follow_ups[key] = follow_up

    def pop(self, key: SessionKey) -> Optional[FollowUp]:
        return self._follow_ups.pop(key, None)


def session_key(session: ChatSession) -> SessionKey:
    return (MessageApp(session.message_app), str(session.chat_id))


class FollowUpManager:
    """Asks questions whose answer is routed to a handler."""

    def __init__(self, store: Optional[FollowUpStore] = None):
        self.store = store if store is not None else InMemoryFollowUpStore()

    async def ask(
        self,
        session: ChatSession,
        question: str,
        handler: FollowUpHandler,
        context: Any = None,
        message_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Register handler for the next message, then send the question.

        The registration is rolled back if the question cannot be sent.
        """
        key = session_key(session)
        self.store.set(key, FollowUp(handler, context))
        if not question:
            return
        try:
            await session.send_message(question, message_options)
        except Exception:
            self.store.pop(key)
            raise

    async def handle(self, session: ChatSession, text: str) -> bool:
        """Route a message to the pending handler; False when there is none."""
        follow_up = self.store.pop(session_key(session))
        if follow_up is None:
            return False
        await follow_up.handler(session, text, follow_up.context)
        return True

    def has(self, session: ChatSession) -> bool:
        return self.store.get(session_key(session)) is not None

    def clear(self, session: ChatSession) -> None:
        self.store.pop(session_key(session))
