"""Pytest configuration and fixtures."""

import tempfile
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Tuple

import pytest
import requests_mock

from joel.config import Settings
from joel.database import DatabaseManager
from joel.models import GazetteRecord, MessageApp, OrganisationRef
from joel.notifiers.base import PlatformCapabilities
from joel.repository import UserRepository

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeSender:
    """In-memory sender recording every call."""

    def __init__(
        self,
        result: bool = True,
        error: Optional[Exception] = None,
        template_result: bool = True,
    ):
        self.result = result
        self.error = error
        self.template_result = template_result
        self.sent: List[Tuple[str, str]] = []
        self.templates: List[Tuple[str, str]] = []

    async def send(self, chat_id: str, text: str) -> bool:
        self.sent.append((chat_id, text))
        if self.error is not None:
            raise self.error
        return self.result

    async def send_template(self, chat_id: str, category: str) -> bool:
        self.templates.append((chat_id, category))
        return self.template_result


@pytest.fixture
def temp_db() -> Generator[Path, None, None]:
    """Create a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    try:
        yield db_path
    finally:
        db_path.unlink(missing_ok=True)


@pytest.fixture
def db(temp_db: Path) -> DatabaseManager:
    """Database manager with the schema in place."""
    manager = DatabaseManager(str(temp_db))
    manager.ensure_schema()
    return manager


@pytest.fixture
def repository(db: DatabaseManager) -> UserRepository:
    return UserRepository(db)


@pytest.fixture
def make_record() -> Callable[..., GazetteRecord]:
    """Factory for gazette records with sensible defaults."""

    def _make(
        surname: str = "Dupont",
        given_name: str = "Jean",
        source_date: date = date(2024, 2, 1),
        source_id: str = "JORFTEXT000000000001",
        order_type: Optional[str] = "nomination",
        sex: Optional[str] = "M",
        organisations: Tuple[OrganisationRef, ...] = (),
        functions: Optional[Dict[str, str]] = None,
    ) -> GazetteRecord:
        return GazetteRecord(
            surname=surname,
            given_name=given_name,
            source_date=source_date,
            source_id=source_id,
            order_type=order_type,
            sex=sex,
            organisations=organisations,
            functions=functions or {},
        )

    return _make


@pytest.fixture
def telegram_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def whatsapp_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def capabilities(
    telegram_sender: FakeSender, whatsapp_sender: FakeSender
) -> Dict[MessageApp, PlatformCapabilities]:
    """Capability table backed by fake senders."""
    return {
        MessageApp.TELEGRAM: PlatformCapabilities(
            message_app=MessageApp.TELEGRAM,
            sender=telegram_sender,
            concurrency_limit=30,
        ),
        MessageApp.WHATSAPP: PlatformCapabilities(
            message_app=MessageApp.WHATSAPP,
            sender=whatsapp_sender,
            concurrency_limit=3,
            requires_reengagement=True,
            markdown_links=False,
        ),
    }


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def test_settings(temp_db: Path) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        database_file=str(temp_db),
        telegram_bot_token="123:TEST",
        log_level="DEBUG",
        dry_run=False,
    )


@pytest.fixture
def mock_telegram_api():
    """Mock Telegram Bot API requests."""
    with requests_mock.Mocker() as m:
        m.post(
            "https://api.telegram.org/bot123:TEST/sendMessage",
            json={"ok": True, "result": {"message_id": 1}},
        )
        yield m


def days_before(moment: datetime, days: float) -> datetime:
    return moment - timedelta(days=days)
