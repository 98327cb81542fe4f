"""ManyChat configuration values."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .env import require_env_vars
from .http_resilience import CacheConfig, DispatchPolicy, RateLimit, ResilienceConfig

MANYCHAT_BASE_URL = "https://api.manychat.com"
MANYCHAT_TIMEOUT_SECONDS = 15.0
MANYCHAT_TAGS_PATH = "/fb/page/getTags"


@dataclass(frozen=True)
class ManychatConfig:
    """Holds ManyChat API configuration values."""

    api_key: str
    base_url: str = MANYCHAT_BASE_URL
    resilience: ResilienceConfig | None = None

    def resolved_resilience(self) -> ResilienceConfig:
        return self.resilience or default_manychat_resilience(self.base_url, self.api_key)

    @classmethod
    def from_environment(cls) -> ManychatConfig:
        values = require_env_vars(("MANYCHAT_API_KEY",))
        base_url = os.getenv("MANYCHAT_BASE_URL") or MANYCHAT_BASE_URL
        return cls(api_key=values["MANYCHAT_API_KEY"], base_url=base_url.rstrip("/"))


def default_manychat_resilience(base_url: str, api_key: str) -> ResilienceConfig:
    # ManyChat allows roughly 10 req/s on subscriber endpoints; the dispatch
    # queue additionally spaces every call by 10ms.
    return ResilienceConfig(
        name="manychat",
        base_url=base_url,
        timeout_seconds=MANYCHAT_TIMEOUT_SECONDS,
        ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
        dispatch=DispatchPolicy(min_interval=0.01),
        cache=CacheConfig(
            backend="memory",
            default_ttl_seconds=60.0,
            cacheable_paths=(MANYCHAT_TAGS_PATH,),
        ),
        default_headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        },
    )


def get_manychat_config(*, resilience: ResilienceConfig | None = None) -> ManychatConfig:
    config = ManychatConfig.from_environment()
    if resilience is None:
        return config
    return ManychatConfig(api_key=config.api_key, base_url=config.base_url, resilience=resilience)
