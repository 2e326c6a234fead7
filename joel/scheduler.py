"""Daily trigger for notification cycles."""

import asyncio
import logging
import re
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable, Iterable, Optional, Tuple

import pytz

from .models import MessageApp
from .utils import format_duration

logger = logging.getLogger(__name__)

DAILY_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

# Apps whose users must have engaged recently for free-form messages
REENGAGEMENT_APPS = frozenset({MessageApp.WHATSAPP})


def parse_daily_time(value: str) -> Tuple[int, int]:
    """Parse DAILY_NOTIFICATION_TIME (HH:MM, 24h clock) into (hour, minute)."""
    match = DAILY_TIME_RE.match(value.strip() if value else "")
    if not match:
        raise ValueError(
            f"Invalid DAILY_NOTIFICATION_TIME {value!r}: expected HH:MM"
        )
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(
            f"Invalid DAILY_NOTIFICATION_TIME {value!r}: hour must be 0-23 "
            "and minute 0-59"
        )
    return hour, minute


def reengagement_shift_index(moment: datetime) -> int:
    """Weekday shift: Tue 0, Wed 1, Thu 2, Fri 3, Sat 4, Sun 4, Mon 5."""
    sunday_based_day = (moment.weekday() + 1) % 7
    return ((sunday_based_day - 2) + 6) % 6


def compute_next_occurrence(
    daily_time: Tuple[int, int],
    now: datetime,
    shift_for_reengagement: bool = False,
    margin: timedelta = timedelta(minutes=5),
) -> datetime:
    """Next run strictly after now, in now's timezone.

    When reengagement apps are targeted the run moves a little earlier each
    day of the week, so that a user who answered the previous notification is
    still inside the messaging window.
    """
    hour, minute = daily_time
    tz = now.tzinfo

    def at(day) -> datetime:
        naive = datetime.combine(day, time(hour, minute))
        if tz is None:
            return naive
        if hasattr(tz, "localize"):
            return tz.localize(naive)
        return naive.replace(tzinfo=tz)

    day = now.date()
    while True:
        candidate = at(day)
        if shift_for_reengagement:
            candidate -= reengagement_shift_index(candidate) * margin
            if hasattr(tz, "normalize"):
                candidate = tz.normalize(candidate)
        if candidate > now:
            return candidate
        day += timedelta(days=1)


class DailyNotificationScheduler:
    """Triggers a notification cycle every day at a fixed wall-clock time.

    A trigger that fires while the previous cycle is still running is
    skipped. Errors raised by a cycle are logged and do not stop the loop.
    """

    def __init__(
        self,
        run_cycle: Callable[[], Awaitable[object]],
        daily_time: Tuple[int, int],
        message_apps: Iterable[MessageApp],
        timezone_name: str = "Europe/Paris",
        reengagement_margin: timedelta = timedelta(minutes=5),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.run_cycle = run_cycle
        self.daily_time = daily_time
        self.message_apps = list(message_apps)
        self.timezone = pytz.timezone(timezone_name)
        self.reengagement_margin = reengagement_margin
        self._sleep = sleep
        self._running = False
        self._current: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def apps_label(self) -> str:
        return ", ".join(app.value for app in self.message_apps)

    def next_run(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(self.timezone)
        return compute_next_occurrence(
            self.daily_time,
            now.astimezone(self.timezone),
            shift_for_reengagement=any(
                app in REENGAGEMENT_APPS for app in self.message_apps
            ),
            margin=self.reengagement_margin,
        )

    async def trigger(self) -> bool:
        """Run one cycle now unless one is in progress; returns whether it ran."""
        if self._running:
            logger.warning(
                f"{self.apps_label}: previous notification process still running, "
                "skipping this run"
            )
            return False

        self._running = True
        try:
            await self.run_cycle()
        except Exception as e:
            logger.exception(f"{self.apps_label}: notification process failed: {e}")
        finally:
            self._running = False
        return True

    async def run_forever(self) -> None:
        previous: Optional[datetime] = None
        while True:
            now = datetime.now(self.timezone)
            next_run = self.next_run(max(now, previous) if previous else now)
            previous = next_run
            delay = next_run - now
            logger.info(
                f"{self.apps_label}: next notification process scheduled for "
                f"{next_run.isoformat()} (in {format_duration(delay)})"
            )
            await self._sleep(delay.total_seconds())
            if self._running:
                await self.trigger()
            else:
                self._current = asyncio.create_task(self.trigger())
