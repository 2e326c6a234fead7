"""Async access to the store for the notification pipeline.

Every call runs the blocking SQLite work in a worker thread, so each store
access is a suspension point for the event loop.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .database import DatabaseManager
from .models import MessageApp, NotificationType, PendingNotification, Person, User


class UserRepository:
    """Narrow async interface over DatabaseManager."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def find_users(self, query_filter: Mapping[str, Any]) -> List[User]:
        return await asyncio.to_thread(self.db.find_users, query_filter)

    async def get_user(self, user_id: int) -> Optional[User]:
        return await asyncio.to_thread(self.db.get_user, user_id)

    async def find_people_by_name_keys(self, name_keys: Iterable[str]) -> Dict[str, Person]:
        return await asyncio.to_thread(self.db.find_people_by_name_keys, list(name_keys))

    async def find_or_create_person(self, surname: str, given_name: str) -> Person:
        return await asyncio.to_thread(self.db.find_or_create_person, surname, given_name)

    async def list_organisations(self) -> Dict[str, str]:
        return await asyncio.to_thread(self.db.list_organisations)

    async def promote_followed_names(
        self,
        user_id: int,
        names: Iterable[str],
        person_ids: Iterable[int],
        timestamp: datetime,
    ) -> None:
        await asyncio.to_thread(
            self.db.promote_followed_names,
            user_id,
            list(names),
            list(person_ids),
            timestamp,
        )

    async def advance_follow_watermark(
        self,
        user_id: int,
        notification_type: NotificationType,
        follow_key: Any,
        timestamp: datetime,
    ) -> bool:
        return await asyncio.to_thread(
            self.db.advance_follow_watermark,
            user_id,
            notification_type,
            follow_key,
            timestamp,
        )

    async def insert_pending_notifications(
        self,
        user_id: int,
        message_app: MessageApp,
        notification_type: NotificationType,
        source_counts: Mapping[str, int],
        inserted_at: Optional[datetime] = None,
    ) -> Optional[int]:
        return await asyncio.to_thread(
            self.db.insert_pending_notifications,
            user_id,
            message_app,
            notification_type,
            dict(source_counts),
            inserted_at,
        )

    async def get_pending_notifications(self, user_id: int) -> List[PendingNotification]:
        return await asyncio.to_thread(self.db.get_pending_notifications, user_id)

    async def clear_pending_notifications(
        self,
        user_id: int,
        notification_types: Optional[Iterable[NotificationType]] = None,
    ) -> int:
        types = list(notification_types) if notification_types is not None else None
        return await asyncio.to_thread(self.db.clear_pending_notifications, user_id, types)

    async def record_successful_delivery(self, user_id: int, timestamp: datetime) -> None:
        await asyncio.to_thread(self.db.record_successful_delivery, user_id, timestamp)

    async def record_engagement(self, user_id: int, timestamp: datetime) -> None:
        await asyncio.to_thread(self.db.record_engagement, user_id, timestamp)

    async def set_waiting_reengagement(self, user_id: int, waiting: bool) -> None:
        await asyncio.to_thread(self.db.set_waiting_reengagement, user_id, waiting)

    async def mark_user_blocked(self, user_id: int) -> None:
        await asyncio.to_thread(self.db.mark_user_blocked, user_id)
