"""Configuration management for the JOEL notifier."""

from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

from .models import MessageApp


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_file: str = Field(default="joel.db")

    # Scheduling
    daily_notification_time: Optional[str] = Field(
        default=None, description="Daily notification time as HH:MM"
    )
    scheduler_timezone: str = Field(default="Europe/Paris")
    notification_lookback_days: int = Field(default=30, ge=0)

    # Gazette source (JORFSearch)
    gazette_api_url: str = Field(
        default="https://jorfsearch.steinertriples.ch",
        validation_alias=AliasChoices("GAZETTE_API_URL", "JORFSEARCH_URL"),
    )
    gazette_fetch_concurrency: int = Field(default=8, ge=1)

    # HTTP Client Defaults
    http_timeout_seconds: float = Field(default=15.0)
    http_retries: int = Field(default=3)
    http_backoff: float = Field(default=0.5)

    # Telegram
    telegram_bot_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("TELEGRAM_BOT_TOKEN", "BOT_TOKEN"),
    )
    telegram_api_url: str = Field(default="https://api.telegram.org")
    telegram_sending_concurrency: int = Field(default=30, ge=1)

    # WhatsApp Cloud API
    whatsapp_user_token: Optional[str] = Field(default=None)
    whatsapp_app_secret: Optional[str] = Field(default=None)
    whatsapp_verify_token: Optional[str] = Field(default=None)
    whatsapp_phone_number_id: Optional[str] = Field(default=None)
    whatsapp_api_version: str = Field(default="v21.0")
    whatsapp_template_name: str = Field(default="notification_ready")
    whatsapp_template_language: str = Field(default="fr")
    whatsapp_sending_concurrency: int = Field(default=10, ge=1)
    whatsapp_reengagement_timeout_hours: float = Field(default=24.0, gt=0)
    whatsapp_reengagement_margin_minutes: float = Field(default=5.0, ge=0)

    # Signal (signal-cli REST API)
    signal_api_url: Optional[str] = Field(default=None)
    signal_phone_number: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SIGNAL_PHONE_NUMBER", "SIGNAL_BAT_PHONE_NUMBER"),
    )
    signal_sending_concurrency: int = Field(default=1, ge=1)

    # Matrix
    matrix_home_url: Optional[str] = Field(default=None)
    matrix_bot_token: Optional[str] = Field(default=None)
    matrix_sending_concurrency: int = Field(default=5, ge=1)

    # Production Settings
    environment: str = Field(default="development")

    # Bot Configuration
    log_level: str = Field(default="INFO")
    dry_run: bool = Field(default=False)
    log_json: bool = Field(default=False, description="Emit logs as JSON lines")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    def _message_app_env(self) -> Dict[MessageApp, Dict[str, Optional[str]]]:
        return {
            MessageApp.TELEGRAM: {"TELEGRAM_BOT_TOKEN": self.telegram_bot_token},
            MessageApp.WHATSAPP: {
                "WHATSAPP_USER_TOKEN": self.whatsapp_user_token,
                "WHATSAPP_PHONE_NUMBER_ID": self.whatsapp_phone_number_id,
                "WHATSAPP_APP_SECRET": self.whatsapp_app_secret,
                "WHATSAPP_VERIFY_TOKEN": self.whatsapp_verify_token,
            },
            MessageApp.SIGNAL: {
                "SIGNAL_API_URL": self.signal_api_url,
                "SIGNAL_PHONE_NUMBER": self.signal_phone_number,
            },
            MessageApp.MATRIX: {
                "MATRIX_HOME_URL": self.matrix_home_url,
                "MATRIX_BOT_TOKEN": self.matrix_bot_token,
            },
        }

    @property
    def enabled_message_apps(self) -> List[MessageApp]:
        """Message apps whose credentials are fully configured."""
        return [
            app
            for app, env in self._message_app_env().items()
            if all(env.values())
        ]

    def validate_message_app_config(self) -> None:
        """Validate that every partially configured message app is complete."""
        for app, env in self._message_app_env().items():
            missing = [key for key, value in env.items() if not value]
            if missing and len(missing) < len(env):
                raise ValueError(
                    f"{app.value} misconfigured; missing: " + ", ".join(missing)
                )

        if not self.enabled_message_apps:
            raise ValueError(
                "No message app configured. Set TELEGRAM_BOT_TOKEN, the WHATSAPP_* "
                "variables, SIGNAL_API_URL and SIGNAL_PHONE_NUMBER, or "
                "MATRIX_HOME_URL and MATRIX_BOT_TOKEN."
            )

    @property
    def whatsapp_reengagement_timeout_with_margin(self) -> timedelta:
        """Age of the last engagement after which a template must be sent first."""
        return timedelta(hours=self.whatsapp_reengagement_timeout_hours) - timedelta(
            minutes=self.whatsapp_reengagement_margin_minutes
        )

    def parsed_daily_time(self) -> Tuple[int, int]:
        """Return DAILY_NOTIFICATION_TIME as (hour, minute)."""
        from .scheduler import parse_daily_time

        if not self.daily_notification_time:
            raise ValueError("DAILY_NOTIFICATION_TIME is not set")
        return parse_daily_time(self.daily_notification_time)

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


# Global settings instance
settings = Settings()
