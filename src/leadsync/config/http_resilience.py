"""Configuration types for resilient HTTP clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_DISPATCH_INTERVAL_SECONDS = 0.01


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Attempt budget and backoff shape for a single logical request.

    ``max_attempts`` counts every dispatch, including the ones that follow a
    429 response. Backoff after attempt ``n`` (zero based) is
    ``backoff_base ** n`` seconds, capped at ``max_backoff_wait``.
    """

    max_attempts: int = 3
    backoff_base: float = 2.0
    max_backoff_wait: float = 60.0
    default_retry_after: float = 5.0


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class DispatchPolicy:
    """Minimum spacing between two dispatched requests, in seconds."""

    min_interval: float = DEFAULT_DISPATCH_INTERVAL_SECONDS


@dataclass(slots=True, frozen=True)
class CacheConfig:
    enabled: bool = True
    backend: Literal["sqlite", "memory"] = "memory"
    sqlite_path: str | None = None
    default_ttl_seconds: float | None = None
    refresh_ttl_on_access: bool = False
    cacheable_paths: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    dispatch: DispatchPolicy = field(default_factory=DispatchPolicy)
    cache: CacheConfig | None = field(default_factory=CacheConfig)
    default_headers: Mapping[str, str] | None = None
