"""One notification cycle: fetch, correlate, dispatch, deliver."""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

import pytz

from .config import Settings
from .correlator import RecordCorrelator, build_notification_task
from .database import DatabaseManager
from .delivery import DeliveryService, NotificationReport
from .dispatch import dispatch_tasks_to_message_apps
from .gazette import GazetteClient
from .models import MessageApp, NotificationTask
from .notifiers import PlatformCapabilities, build_platform_capabilities
from .repository import UserRepository
from .utils import utcnow

logger = logging.getLogger(__name__)


class NotificationProcess:
    """Runs notification cycles against a store, a gazette source and senders."""

    def __init__(
        self,
        repository: UserRepository,
        gazette: GazetteClient,
        capabilities: Dict[MessageApp, PlatformCapabilities],
        lookback_days: int = 30,
        reengagement_timeout: timedelta = timedelta(hours=24),
        timezone_name: str = "Europe/Paris",
        now: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.gazette = gazette
        self.capabilities = capabilities
        self.lookback_days = lookback_days
        self.reengagement_timeout = reengagement_timeout
        self.timezone = pytz.timezone(timezone_name)
        self.now = now

    def today(self) -> date:
        return self.now().astimezone(self.timezone).date()

    async def run(
        self,
        message_apps: Optional[Iterable[MessageApp]] = None,
        user_ids: Optional[Iterable[int]] = None,
        force_reengagement: bool = False,
        dry_run: bool = False,
        preview: Optional[Callable[[NotificationTask, str], None]] = None,
    ) -> NotificationReport:
        """Notify users of every record they have not received yet.

        Raises:
            ValueError: If a requested message app has no configured sender
            GazetteFetchError: If the lookback window could not be fetched
        """
        apps: List[MessageApp] = list(
            message_apps if message_apps is not None else self.capabilities
        )
        for app in apps:
            if app not in self.capabilities:
                raise ValueError(
                    f"{app.value}: notification process skipped as its sender is not set"
                )

        today = self.today()
        start = today - timedelta(days=self.lookback_days)
        records = await self.gazette.fetch_records_window(start, today)

        correlator = RecordCorrelator(self.repository)
        user_matches = await correlator.correlate(records, apps, user_ids)
        tasks = [build_notification_task(matches) for matches in user_matches]

        delivery = DeliveryService(
            self.repository,
            self.capabilities,
            reengagement_timeout=self.reengagement_timeout,
            force_reengagement=force_reengagement,
            dry_run=dry_run,
            preview=preview,
            now=self.now,
        )
        try:
            await dispatch_tasks_to_message_apps(
                tasks,
                delivery.deliver,
                {app: self.capabilities[app].concurrency_limit for app in apps},
            )
        finally:
            app_names = ", ".join(app.value for app in apps)
            logger.info(
                f"{app_names}: notification cycle over {len(records)} records and "
                f"{len(tasks)} users finished ({delivery.report.summary()})"
            )
        return delivery.report

    async def handle_user_reengaged(self, user_id: int) -> NotificationReport:
        """Record an inbound interaction and replay what was held back."""
        await self.repository.record_engagement(user_id, self.now())
        user = await self.repository.get_user(user_id)
        if user is None:
            logger.warning(f"Reengagement for unknown user {user_id}")
            return NotificationReport()
        if user.message_app not in self.capabilities:
            logger.warning(
                f"Reengagement for user {user_id} on unconfigured {user.message_app.value}"
            )
            return NotificationReport()

        pending = await self.repository.get_pending_notifications(user_id)
        logger.info(
            f"User {user_id} re-engaged with {len(pending)} pending notification entries"
        )
        return await self.run(
            [user.message_app], user_ids=[user_id], force_reengagement=True
        )


def create_notification_process(
    settings: Settings, message_apps: Optional[Iterable[MessageApp]] = None
) -> NotificationProcess:
    """Wire a NotificationProcess from settings."""
    db = DatabaseManager(settings.database_file)
    db.ensure_schema()
    gazette = GazetteClient(
        base_url=settings.gazette_api_url,
        timeout=settings.http_timeout_seconds,
        retries=settings.http_retries,
        backoff=settings.http_backoff,
        fetch_concurrency=settings.gazette_fetch_concurrency,
    )
    return NotificationProcess(
        UserRepository(db),
        gazette,
        build_platform_capabilities(settings, message_apps),
        lookback_days=settings.notification_lookback_days,
        reengagement_timeout=settings.whatsapp_reengagement_timeout_with_margin,
        timezone_name=settings.scheduler_timezone,
    )
