"""
Runtime configuration for the notifier.

Settings are read from the environment (prefix NOTIFIER_) or a .env file.
Transport credentials are optional here: a missing credential only fails the
deliveries that need it, at dispatch time.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s"

SENSITIVE_KEYS = {"api_key", "apikey", "token", "secret", "password", "passkey", "authorization", "cookie"}


class NotifierSettings(BaseSettings):
    """Notifier settings."""

    email_webhook_url: Optional[str] = Field(
        default=None, description="Webhook that relays email notifications"
    )
    sms_api_key: Optional[str] = None
    sms_sender_id: str = "SKYSCOPE_"
    sms_api_url: str = "https://sms.blazetechscope.com/v1/sendsms"
    http_timeout: float = Field(default=10.0, gt=0, description="Per-call timeout in seconds")

    batch_size: int = Field(default=50, ge=1)
    max_retries: int = Field(default=0, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    dispatch_workers: int = Field(default=1, ge=1)

    database_path: Optional[Path] = Field(
        default=None, description="SQLite file; in-memory fixtures store when unset"
    )
    data_dir: Optional[Path] = None

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="NOTIFIER_",
        env_file=".env",
        extra="ignore",
    )


_settings: Optional[NotifierSettings] = None


def get_settings() -> NotifierSettings:
    """Get the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = NotifierSettings()
    return _settings


def reset_settings(settings: Optional[NotifierSettings] = None) -> None:
    """Replace (or clear) the cached settings (useful for testing)."""
    global _settings
    _settings = settings


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the notifier format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def redact(data: Any, depth: int = 0) -> Any:
    """
    Mask sensitive values in a payload before it is logged.

    Walks nested dicts and lists; keys such as api_key or token are replaced
    with "<redacted>".
    """
    if depth > 6:
        return data
    if isinstance(data, dict):
        return {
            key: "<redacted>" if str(key).lower() in SENSITIVE_KEYS else redact(value, depth + 1)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item, depth + 1) for item in data]
    return data
