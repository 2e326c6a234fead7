"""Messaging platform senders for JOEL."""

from typing import Dict, Iterable, Optional

from ..config import Settings
from ..models import MessageApp
from .base import (
    BaseSender,
    MessageSender,
    NotificationError,
    PlatformCapabilities,
    RecipientBlockedError,
)
from .matrix import MatrixSender
from .signal import SignalSender
from .telegram import TelegramSender
from .whatsapp import WhatsAppSender

__all__ = [
    "BaseSender",
    "MatrixSender",
    "MessageSender",
    "NotificationError",
    "PlatformCapabilities",
    "RecipientBlockedError",
    "SignalSender",
    "TelegramSender",
    "WhatsAppSender",
    "build_platform_capabilities",
]


def _build_capabilities(app: MessageApp, settings: Settings) -> PlatformCapabilities:
    timeout = settings.http_timeout_seconds
    if app == MessageApp.TELEGRAM:
        return PlatformCapabilities(
            message_app=app,
            sender=TelegramSender(
                settings.telegram_bot_token, settings.telegram_api_url, timeout=timeout
            ),
            concurrency_limit=settings.telegram_sending_concurrency,
        )
    if app == MessageApp.WHATSAPP:
        return PlatformCapabilities(
            message_app=app,
            sender=WhatsAppSender(
                settings.whatsapp_user_token,
                settings.whatsapp_phone_number_id,
                api_version=settings.whatsapp_api_version,
                template_name=settings.whatsapp_template_name,
                template_language=settings.whatsapp_template_language,
                timeout=timeout,
            ),
            concurrency_limit=settings.whatsapp_sending_concurrency,
            requires_reengagement=True,
            markdown_links=False,
        )
    if app == MessageApp.SIGNAL:
        return PlatformCapabilities(
            message_app=app,
            sender=SignalSender(
                settings.signal_api_url, settings.signal_phone_number, timeout=timeout
            ),
            concurrency_limit=settings.signal_sending_concurrency,
            markdown_links=False,
        )
    return PlatformCapabilities(
        message_app=app,
        sender=MatrixSender(
            settings.matrix_home_url, settings.matrix_bot_token, timeout=timeout
        ),
        concurrency_limit=settings.matrix_sending_concurrency,
    )


def build_platform_capabilities(
    settings: Settings, message_apps: Optional[Iterable[MessageApp]] = None
) -> Dict[MessageApp, PlatformCapabilities]:
    """Capability table for the requested apps, or every configured app.

    Raises:
        ValueError: If a requested app is not configured
    """
    enabled = settings.enabled_message_apps
    requested = list(message_apps) if message_apps is not None else enabled
    missing = [app.value for app in requested if app not in enabled]
    if missing:
        raise ValueError(f"Message apps not configured: {', '.join(missing)}")
    return {app: _build_capabilities(app, settings) for app in requested}
