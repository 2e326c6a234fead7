"""Command line entry point for the JOEL notifier."""

import asyncio
import json
import logging
import sys
from datetime import timedelta
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler

from .config import settings
from .gazette import GazetteFetchError
from .models import MessageApp, NotificationTask
from .notify import create_notification_process
from .scheduler import DailyNotificationScheduler

console = Console()


# Configure logging
def setup_logging(level: str) -> None:
    """Set up logging with Rich handler or JSON lines."""
    log_level = getattr(logging, level.upper())
    if settings.log_json:

        class JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                payload = {
                    "level": record.levelname,
                    "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
                    "message": record.getMessage(),
                    "name": record.name,
                }
                return json.dumps(payload, ensure_ascii=False)

        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=log_level, handlers=[handler])
    else:
        logging.basicConfig(
            level=log_level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )


logger = logging.getLogger(__name__)


def parse_message_apps(values: Tuple[str, ...]) -> Optional[List[MessageApp]]:
    """Map --app options to MessageApp, None meaning every configured app."""
    if not values:
        return None
    by_name = {app.value.lower(): app for app in MessageApp}
    return [by_name[value.lower()] for value in values]


def print_preview(task: NotificationTask, text: str) -> None:
    console.print(
        f"\n[yellow]DRY RUN - {task.message_app.value} user {task.user_id} "
        f"({task.record_count} records, {len(task.records_by_reference)} publications):[/yellow]"
    )
    console.print("=" * 50)
    console.print(text, markup=False)
    console.print("=" * 50 + "\n")


APP_CHOICE = click.Choice([app.value for app in MessageApp], case_sensitive=False)
LOG_LEVEL_CHOICE = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"])


@click.group()
@click.option(
    "--log-level",
    default=None,
    type=LOG_LEVEL_CHOICE,
    help="Set logging level",
)
def cli(log_level: Optional[str]) -> None:
    """Notify users of new Journal Officiel publications they follow."""
    if log_level:
        settings.log_level = log_level
    setup_logging(settings.log_level)


@cli.command()
@click.option("--app", "apps", multiple=True, type=APP_CHOICE, help="Message app to notify")
@click.option("--user-id", "user_ids", multiple=True, type=int, help="Only notify these users")
@click.option(
    "--force-reengagement",
    is_flag=True,
    default=False,
    help="Send directly even to users outside the messaging window",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Print digests without sending them or touching watermarks",
)
def notify(
    apps: Tuple[str, ...],
    user_ids: Tuple[int, ...],
    force_reengagement: bool,
    dry_run: bool,
) -> None:
    """Run one notification cycle now."""
    if dry_run:
        settings.dry_run = True

    try:
        settings.validate_message_app_config()
        process = create_notification_process(settings, parse_message_apps(apps))
        report = asyncio.run(
            process.run(
                user_ids=list(user_ids) or None,
                force_reengagement=force_reengagement,
                dry_run=settings.dry_run,
                preview=print_preview,
            )
        )
    except ValueError as e:
        console.print(f"[red]❌ Configuration error:[/red] {e}")
        sys.exit(2)
    except GazetteFetchError as e:
        logger.error(f"Notification cycle aborted: {e}")
        console.print(f"[red]❌ Gazette fetch failed:[/red] {e}")
        sys.exit(1)

    logger.info(f"✅ Notification cycle completed: {report.summary()}")


@cli.command()
@click.option("--user-id", type=int, required=True, help="User who interacted again")
def replay(user_id: int) -> None:
    """Record a user interaction and deliver what was held back."""
    try:
        settings.validate_message_app_config()
        process = create_notification_process(settings)
        report = asyncio.run(process.handle_user_reengaged(user_id))
    except ValueError as e:
        console.print(f"[red]❌ Configuration error:[/red] {e}")
        sys.exit(2)

    logger.info(f"✅ Replay for user {user_id} completed: {report.summary()}")


@cli.command()
@click.option("--app", "apps", multiple=True, type=APP_CHOICE, help="Message app to notify")
def schedule(apps: Tuple[str, ...]) -> None:
    """Run a notification cycle every day at DAILY_NOTIFICATION_TIME."""
    try:
        settings.validate_message_app_config()
        daily_time = settings.parsed_daily_time()
        message_apps = parse_message_apps(apps) or settings.enabled_message_apps
        process = create_notification_process(settings, message_apps)
    except ValueError as e:
        console.print(f"[red]❌ Configuration error:[/red] {e}")
        sys.exit(2)

    scheduler = DailyNotificationScheduler(
        lambda: process.run(message_apps),
        daily_time,
        message_apps,
        timezone_name=settings.scheduler_timezone,
        reengagement_margin=timedelta(minutes=settings.whatsapp_reengagement_margin_minutes),
    )
    logger.info(f"🔍 Starting daily notifications for {scheduler.apps_label}")
    try:
        asyncio.run(scheduler.run_forever())
    except KeyboardInterrupt:
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    cli()
