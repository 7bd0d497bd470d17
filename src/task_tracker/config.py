"""
Environment-driven configuration.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_DB_PATH = "task_tracker.db"
DEFAULT_SMTP_PORT = 587


@dataclass(frozen=True)
class Settings:
    database_path: str = DEFAULT_DB_PATH
    log_level: str = "INFO"
    smtp_host: Optional[str] = None
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    email_sender: Optional[str] = None

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.smtp_host)

    @property
    def log_level_number(self) -> int:
        return getattr(logging, self.log_level.upper(), logging.INFO)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from TRACKER_* environment variables (os.environ by default)."""
    env = os.environ if env is None else env

    port = env.get("TRACKER_SMTP_PORT")
    try:
        smtp_port = int(port) if port else DEFAULT_SMTP_PORT
    except ValueError:
        raise ValueError(f"TRACKER_SMTP_PORT must be an integer, got {port!r}")

    return Settings(
        database_path=env.get("TRACKER_DATABASE_PATH", DEFAULT_DB_PATH),
        log_level=env.get("TRACKER_LOG_LEVEL", "INFO"),
        smtp_host=env.get("TRACKER_SMTP_HOST") or None,
        smtp_port=smtp_port,
        smtp_user=env.get("TRACKER_SMTP_USER") or None,
        smtp_password=env.get("TRACKER_SMTP_PASSWORD") or None,
        email_sender=env.get("TRACKER_EMAIL_SENDER") or env.get("TRACKER_SMTP_USER") or None,
    )
