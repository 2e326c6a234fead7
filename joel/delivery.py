"""Delivery of one digest per user and the watermark commit that follows it."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Mapping, Optional

from .formatting import build_digest
from .models import MessageApp, NotificationTask, NotificationType, User
from .notifiers.base import NotificationError, PlatformCapabilities, RecipientBlockedError
from .repository import UserRepository
from .utils import latest_source_date, utcnow

logger = logging.getLogger(__name__)

DEFAULT_REENGAGEMENT_TIMEOUT = timedelta(hours=24)


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    DEFERRED = "deferred"
    BLOCKED = "blocked"
    EMPTY = "empty"
    DRY_RUN = "dry_run"


@dataclass
class NotificationReport:
    """Outcome counts of one cycle, per message app."""

    outcomes: Dict[MessageApp, Counter] = field(default_factory=dict)

    def record(self, message_app: MessageApp, outcome: DeliveryOutcome) -> None:
        self.outcomes.setdefault(message_app, Counter())[outcome] += 1

    def count(self, outcome: DeliveryOutcome, message_app: Optional[MessageApp] = None) -> int:
        if message_app is not None:
            return self.outcomes.get(message_app, Counter())[outcome]
        return sum(counter[outcome] for counter in self.outcomes.values())

    def summary(self) -> str:
        if not self.outcomes:
            return "no notification sent"
        parts = []
        for message_app, counter in self.outcomes.items():
            ordered = sorted(counter.items(), key=lambda item: item[0].value)
            details = ", ".join(f"{count} {outcome.value}" for outcome, count in ordered)
            parts.append(f"{message_app.value}: {details}")
        return "; ".join(parts)


def needs_reengagement(user: User, now: datetime, timeout: timedelta) -> bool:
    """Whether the platform's free messaging window may be closed for this user.

    A user who never engaged, or whose last engagement is at least timeout
    old, must first receive a template.
    """
    if user.last_engagement_at is None:
        return True
    return now - user.last_engagement_at >= timeout


class DeliveryService:
    """Sends digests and commits watermarks only after confirmed delivery."""

    def __init__(
        self,
        repository: UserRepository,
        capabilities: Mapping[MessageApp, PlatformCapabilities],
        reengagement_timeout: timedelta = DEFAULT_REENGAGEMENT_TIMEOUT,
        force_reengagement: bool = False,
        dry_run: bool = False,
        preview: Optional[Callable[[NotificationTask, str], None]] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.capabilities = capabilities
        self.reengagement_timeout = reengagement_timeout
        self.force_reengagement = force_reengagement
        self.dry_run = dry_run
        self.preview = preview
        self.now = now
        self.report = NotificationReport()

    async def deliver(self, task: NotificationTask) -> DeliveryOutcome:
        """Per-task handler for the dispatcher."""
        outcome = await self._deliver(task)
        self.report.record(task.message_app, outcome)
        return outcome

    async def _deliver(self, task: NotificationTask) -> DeliveryOutcome:
        capabilities = self.capabilities[task.message_app]
        text = build_digest(task.matches, markdown_links=capabilities.markdown_links)
        if self.dry_run:
            if not text:
                return DeliveryOutcome.EMPTY
            logger.info(
                f"[dry-run] {task.message_app.value} user {task.user_id}: "
                f"{task.record_count} records in {len(task.records_by_reference)} publications"
            )
            if self.preview is not None:
                self.preview(task, text)
            return DeliveryOutcome.DRY_RUN

        if not text:
            # Only names of people the user already follows matched
            await self.promote_names(task)
            return DeliveryOutcome.EMPTY

        if (
            capabilities.requires_reengagement
            and not self.force_reengagement
            and needs_reengagement(task.user, self.now(), self.reengagement_timeout)
        ):
            return await self._defer(task, capabilities)

        return await self._send(task, capabilities, text)

    async def _send(
        self, task: NotificationTask, capabilities: PlatformCapabilities, text: str
    ) -> DeliveryOutcome:
        try:
            delivered = await capabilities.sender.send(task.chat_id, text)
        except RecipientBlockedError as e:
            logger.warning(f"User {task.user_id} unreachable: {e}")
            await self.repository.mark_user_blocked(task.user_id)
            return DeliveryOutcome.BLOCKED
        except Exception as e:
            logger.error(
                f"Failed to deliver digest to {task.message_app.value} user "
                f"{task.user_id}: {e}"
            )
            return DeliveryOutcome.FAILED

        if not delivered:
            logger.error(
                f"{task.message_app.value} did not confirm delivery to user {task.user_id}"
            )
            return DeliveryOutcome.FAILED

        await self.commit_delivery(task)
        return DeliveryOutcome.DELIVERED

    async def commit_delivery(self, task: NotificationTask) -> None:
        """Advance each delivered follow to its newest delivered publication."""
        matches = task.matches
        watermarked = (
            (NotificationType.PEOPLE, matches.people),
            (NotificationType.FUNCTION, matches.functions),
            (NotificationType.ORGANISATION, matches.organisations),
        )
        for notification_type, records_by_follow in watermarked:
            for follow_key, records in records_by_follow.items():
                newest = latest_source_date(records)
                if newest is None:
                    continue
                await self.repository.advance_follow_watermark(
                    task.user_id, notification_type, follow_key, newest
                )

        await self.promote_names(task)
        await self.repository.record_successful_delivery(task.user_id, self.now())
        await self.repository.clear_pending_notifications(
            task.user_id, matches.categories()
        )
        logger.info(
            f"Delivered {task.record_count} records in {len(task.records_by_reference)} "
            f"publications to {task.message_app.value} user {task.user_id}"
        )

    async def promote_names(self, task: NotificationTask) -> None:
        """Replace matched followed names by person follows stamped with now."""
        names = task.matches.names
        if not names:
            return
        await self.repository.promote_followed_names(
            task.user_id,
            [match.followed_name for match in names],
            [match.person.id for match in names if not match.already_followed],
            self.now(),
        )
        logger.info(f"User {task.user_id}: promoted {len(names)} followed names to people")

    async def _defer(
        self, task: NotificationTask, capabilities: PlatformCapabilities
    ) -> DeliveryOutcome:
        """Hold the digest back until the user re-engages."""
        user = task.user
        categories = task.matches.categories()

        if user.waiting_reengagement:
            logger.info(f"User {user.id} already waiting for reengagement")
        else:
            try:
                sent = await capabilities.sender.send_template(
                    user.chat_id, categories[0].value
                )
            except NotificationError as e:
                logger.error(f"Failed to send reengagement template to user {user.id}: {e}")
                sent = False
            if sent:
                await self.repository.set_waiting_reengagement(user.id, True)
                logger.info(f"Reengagement template sent to user {user.id}")

        for category in categories:
            source_counts = Counter(
                record.source_id for record in task.matches.records_for(category)
            )
            await self.repository.insert_pending_notifications(
                user.id, task.message_app, category, source_counts, self.now()
            )

        return DeliveryOutcome.DEFERRED
