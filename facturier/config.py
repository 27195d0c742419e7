"""Application configuration.

Values come from environment variables prefixed with ``FACTURIER_`` (or a
``.env`` file). Without any configuration the engine stores its data in a
SQLite file under ``<project>/data``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT_DIR / "data"


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FACTURIER_", env_file=".env", extra="ignore")

    data_dir: Path = DATA_DIR
    database_url: Optional[str] = None
    log_level: str = "INFO"
    # secondes d'attente sur le verrou SQLite avant d'abandonner la transaction
    sqlite_busy_timeout: float = 30.0

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{(self.data_dir / 'facturier.db').as_posix()}"


@lru_cache
def get_config() -> AppConfig:
    return AppConfig()
