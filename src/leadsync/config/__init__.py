"""Application configuration helpers."""

from __future__ import annotations

from .env import env_bool, env_float, env_int, env_str, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import (
    CacheConfig,
    DispatchPolicy,
    RateLimit,
    ResilienceConfig,
    RetryPolicy,
)
from .logging import configure_logging
from .manychat import ManychatConfig, default_manychat_resilience, get_manychat_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import EXPECTED_STAGE_TAGS, SyncConfig, get_sync_config

__all__ = [
    "EXPECTED_STAGE_TAGS",
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "DispatchPolicy",
    "ManychatConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "configure_logging",
    "default_manychat_resilience",
    "env_bool",
    "env_float",
    "env_int",
    "env_str",
    "get_database_config",
    "get_manychat_config",
    "get_storage_config",
    "get_sync_config",
    "require_env_var",
    "require_env_vars",
]
