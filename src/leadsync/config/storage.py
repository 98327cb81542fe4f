"""Where the sync ledger database and the tag-catalogue cache live."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "leadsync"
LEDGER_DB_FILENAME: Final[str] = "leadsync.db"
TAG_CACHE_FILENAME: Final[str] = "http_cache.sqlite"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path

    def ensure_data_dir(self) -> Path:
        data_dir = self.data_dir.expanduser().resolve()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def database_uri(self) -> str:
        """Async SQLite URI for the ledger and stage directory tables."""

        return f"sqlite+aiosqlite:///{self.ensure_data_dir() / LEDGER_DB_FILENAME}"

    def http_cache_path(self) -> Path:
        return self.ensure_data_dir() / TAG_CACHE_FILENAME


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def get_storage_config() -> StorageConfig:
    env_dir = os.getenv("LEADSYNC_DATA_DIR")
    if env_dir:
        return StorageConfig(data_dir=Path(env_dir))
    xdg_home = os.getenv("XDG_DATA_HOME")
    base = Path(xdg_home) if xdg_home else Path.home() / ".local" / "share"
    return StorageConfig(data_dir=base / APP_DIR_NAME)


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    env_uri = os.getenv("DATABASE_URI")
    if env_uri:
        return DatabaseConfig(uri=env_uri)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
