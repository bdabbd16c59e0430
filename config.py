"""
config.py
Runtime settings (env vars prefixed GYM_, or a local .env file).
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GYM_", env_file=".env", env_file_encoding="utf-8")

    # Storage
    DB_PATH: Path = Path(__file__).with_name("gym.db")
    DB_TIMEOUT_SECONDS: float = 5.0

    # Daily reconciliation slot
    SCHEDULER_TIMEZONE: str = "UTC"
    SWEEP_HOUR: int = 0
    SWEEP_MINUTE: int = 0

    # Console
    DEFAULT_ADMIN_PASSWORD: str = "admin123"

    DEBUG: bool = False
    LOG_JSON: bool = False


settings = Settings()
