"""Synchronization defaults for the reconciliation engine and backlog."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from .env import env_bool, env_float, env_int, env_str

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_MAX_RETRY_COUNT = 3
DEFAULT_BATCH_SIZE = 10
DEFAULT_RECORD_DELAY_SECONDS = 5.0
DEFAULT_BATCH_DELAY_SECONDS = 1.0
DEFAULT_SETTLE_DELAY_SECONDS = 1.0
DEFAULT_BULK_DELAY_SECONDS = 0.2
DEFAULT_ORIGIN_FIELD = "origen"
DEFAULT_CLEANUP_DAYS = 30

# Stages whose automations depend on an exact tag name. A drift between these
# and the configured mapping is reported, never corrected.
EXPECTED_STAGE_TAGS: Mapping[str, str] = MappingProxyType(
    {
        "PREAPROBADO": "credito-preaprobado",
        "APROBADO": "credito-aprobado",
    }
)


@dataclass(frozen=True, slots=True)
class SyncConfig:
    max_retry_count: int = DEFAULT_MAX_RETRY_COUNT
    batch_size: int = DEFAULT_BATCH_SIZE
    record_delay: float = DEFAULT_RECORD_DELAY_SECONDS
    batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS
    settle_delay: float = DEFAULT_SETTLE_DELAY_SECONDS
    bulk_delay: float = DEFAULT_BULK_DELAY_SECONDS
    origin_field: str = DEFAULT_ORIGIN_FIELD
    cleanup_days: int = DEFAULT_CLEANUP_DAYS
    short_circuit_unchanged: bool = True
    expected_stage_tags: Mapping[str, str] = field(default_factory=lambda: EXPECTED_STAGE_TAGS)


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        max_retry_count=env_int("LEADSYNC_MAX_RETRY_COUNT", DEFAULT_MAX_RETRY_COUNT),
        batch_size=env_int("LEADSYNC_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        record_delay=env_float("LEADSYNC_RECORD_DELAY", DEFAULT_RECORD_DELAY_SECONDS),
        batch_delay=env_float("LEADSYNC_BATCH_DELAY", DEFAULT_BATCH_DELAY_SECONDS),
        settle_delay=env_float("LEADSYNC_SETTLE_DELAY", DEFAULT_SETTLE_DELAY_SECONDS),
        bulk_delay=env_float("LEADSYNC_BULK_DELAY", DEFAULT_BULK_DELAY_SECONDS),
        origin_field=env_str("LEADSYNC_ORIGIN_FIELD", DEFAULT_ORIGIN_FIELD),
        cleanup_days=env_int("LEADSYNC_CLEANUP_DAYS", DEFAULT_CLEANUP_DAYS),
        short_circuit_unchanged=env_bool("LEADSYNC_SHORT_CIRCUIT_UNCHANGED", True),
    )
