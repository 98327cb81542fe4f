from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypedDict, Unpack

import httpx
from aiolimiter import AsyncLimiter
from hishel import AsyncSqliteStorage, FilterPolicy, Request
from hishel import Response as HishelCacheResponse
from hishel._policies import BaseFilter
from hishel.httpx import AsyncCacheClient

from leadsync.config.http_resilience import (
    DEFAULT_DISPATCH_INTERVAL_SECONDS,
    CacheConfig,
    DispatchPolicy,
    RateLimit,
    ResilienceConfig,
    RetryPolicy,
)
from leadsync.config.storage import get_storage_config
from leadsync.domain.errors import ErrorKind
from leadsync.domain.timing import real_sleep

if TYPE_CHECKING:
    from types import TracebackType

    from httpx._client import UseClientDefault
    from httpx._types import (
        HeaderTypes,
        QueryParamTypes,
        RequestExtensions,
        TimeoutTypes,
        URLTypes,
    )

    from leadsync.domain.timing import MonotonicClock, Sleep

__all__ = [
    "CacheConfig",
    "DispatchPolicy",
    "DispatchQueue",
    "RateLimit",
    "ResilienceConfig",
    "ResilientClient",
    "RetryPolicy",
    "retry_delay",
]

# Kinds worth another attempt inside one logical request.
_INLINE_RETRY_KINDS = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT, ErrorKind.INVALID_RESPONSE}
)


def retry_delay(
    policy: RetryPolicy,
    kind: ErrorKind,
    attempt: int,
    retry_after: float | None = None,
) -> float | None:
    """Seconds to wait before retrying after a failed ``attempt`` (zero based).

    ``None`` means give up: the kind is not retryable inline or the attempt
    budget is spent. Rate-limited attempts draw from the same budget.
    """

    if kind not in _INLINE_RETRY_KINDS or attempt + 1 >= policy.max_attempts:
        return None
    if kind is ErrorKind.RATE_LIMITED:
        wait = policy.default_retry_after if retry_after is None else retry_after
    else:
        wait = policy.backoff_base**attempt
    return max(0.0, min(wait, policy.max_backoff_wait))


class DispatchQueue:
    """Ordered dispatch gate shared by every endpoint of a client.

    Callers are released first come, first served, and two releases are never
    closer together than ``min_interval`` seconds on ``clock``.
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_DISPATCH_INTERVAL_SECONDS,
        *,
        clock: MonotonicClock = time.monotonic,
        sleep: Sleep = real_sleep,
    ) -> None:
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_dispatch: float | None = None

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def submit[T](self, call: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            if self._last_dispatch is not None:
                wait = self._last_dispatch + self._min_interval - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_dispatch = self._clock()
        return await call()


class RequestOptions(TypedDict, total=False):
    json: object
    params: QueryParamTypes | None
    headers: HeaderTypes | None
    timeout: TimeoutTypes | UseClientDefault
    extensions: RequestExtensions | None


class AsyncClientOptions(TypedDict, total=False):
    base_url: str
    timeout: TimeoutTypes
    headers: HeaderTypes
    transport: httpx.AsyncBaseTransport


class ResilientClient:
    """``httpx.AsyncClient`` behind a dispatch queue, a rate limiter and a cache.

    Retries are left to the caller, which knows how to classify a response.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        dispatch_queue: DispatchQueue | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.dispatch_queue = dispatch_queue or DispatchQueue(config.dispatch.min_interval)
        self._limiter: AsyncLimiter | None = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit
            else None
        )

        storage, policy = _build_cache_components(config.cache)

        client_kwargs: AsyncClientOptions = {"timeout": config.timeout_seconds}
        if config.base_url is not None:
            client_kwargs["base_url"] = config.base_url
        if config.default_headers:
            client_kwargs["headers"] = dict(config.default_headers)
        if transport is not None:
            client_kwargs["transport"] = transport

        if storage is not None:
            self._client = AsyncCacheClient(**client_kwargs, storage=storage, policy=policy)
        else:
            self._client = httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        async def do_request() -> httpx.Response:
            return await self._client.request(method, url, **kwargs)

        return await self.dispatch_queue.submit(lambda: self._send(do_request))

    async def get(
        self,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(
        self,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def _send(self, func: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        if self._limiter is None:
            return await func()
        async with self._limiter:
            return await func()


class _CacheablePathFilter(BaseFilter[Request]):
    """Only GET requests to the configured paths reach the cache."""

    def __init__(self, paths: tuple[str, ...]) -> None:
        self._paths = frozenset(path.rstrip("/") for path in paths)

    def needs_body(self) -> bool:
        return False

    def apply(self, item: Request, body: bytes | None) -> bool:  # noqa: ARG002
        if item.method.upper() != "GET":
            return False
        return httpx.URL(str(item.url)).path.rstrip("/") in self._paths


class _SuccessfulResponseFilter(BaseFilter[HishelCacheResponse]):
    def needs_body(self) -> bool:
        return False

    def apply(self, item: HishelCacheResponse, body: bytes | None) -> bool:  # noqa: ARG002
        return item.status_code == httpx.codes.OK


def _build_cache_components(
    config: CacheConfig | None,
) -> tuple[AsyncSqliteStorage | None, FilterPolicy | None]:
    if config is None or not config.enabled or not config.cacheable_paths:
        return None, None

    if config.backend not in {"sqlite", "memory"}:
        msg = f"Unsupported cache backend: {config.backend}"
        raise ValueError(msg)

    if config.backend == "sqlite":
        database_path = config.sqlite_path or str(get_storage_config().http_cache_path())
    else:
        database_path = ":memory:"
    storage = AsyncSqliteStorage(
        database_path=database_path,
        default_ttl=config.default_ttl_seconds,
        refresh_ttl_on_access=config.refresh_ttl_on_access,
    )
    policy = FilterPolicy(
        request_filters=[_CacheablePathFilter(config.cacheable_paths)],
        response_filters=[_SuccessfulResponseFilter()],
    )
    return storage, policy
