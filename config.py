"""
config.py
Typed settings for the admin dashboard (env vars prefixed DASHBOARD_, or .env).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Environment:
        DASHBOARD_DB_PATH                  SQLite file (default: admin.db beside this file)
        DASHBOARD_PRINT_TIMEOUT_MS         how long a print watcher waits (25000)
        DASHBOARD_PRINT_POLL_INTERVAL_MS   print queue poll interval (1000)
        DASHBOARD_LOG_LEVEL                root log level (INFO)
    """

    db_path: Path = Path(__file__).with_name("admin.db")
    print_timeout_ms: int = 25000
    print_poll_interval_ms: int = 1000
    print_timeout_error_message: Optional[str] = "Utskrift tidsavbrutt."
    log_level: str = "INFO"
    bootstrap_admin_email: str = "admin@example.org"
    bootstrap_admin_password: str = "admin123"
    temporary_password_length: int = 18

    model_config = SettingsConfigDict(
        env_prefix="DASHBOARD_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    def validate_runtime(self) -> None:
        """Start-up checks that should not run at import time."""
        if self.print_timeout_ms <= 0:
            raise RuntimeError("DASHBOARD_PRINT_TIMEOUT_MS must be positive.")
        if self.print_poll_interval_ms <= 0:
            raise RuntimeError("DASHBOARD_PRINT_POLL_INTERVAL_MS must be positive.")
        if self.temporary_password_length < 3:
            raise RuntimeError("DASHBOARD_TEMPORARY_PASSWORD_LENGTH must be at least 3.")


settings = Settings()
