"""HTTP client for the ManyChat API."""

from __future__ import annotations

import re
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, ValidationError

from leadsync.adapters.http_resilience import ResilientClient, retry_delay
from leadsync.config.manychat import MANYCHAT_TAGS_PATH, ManychatConfig
from leadsync.domain.errors import (
    Err,
    ErrorKind,
    InvalidResponseError,
    Ok,
    Result,
    TagNotRegisteredError,
    error_from_result,
)
from leadsync.domain.model import normalize_tag_name
from leadsync.domain.ports import MessagingPlatform, SendResult
from leadsync.domain.timing import real_sleep

from .schema import TAG_LIST_ADAPTER, ApiEnvelope, SubscriberPayload
from .translator import parse_subscriber, parse_tags

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from types import TracebackType

    from leadsync.config.http_resilience import ResilienceConfig
    from leadsync.domain.model import Subscriber, SubscriberLookup, Tag
    from leadsync.domain.timing import Sleep

log = getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_AUTH_STATUSES = frozenset({httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN})


def normalize_email(email: str | None) -> str | None:
    """Trimmed, lower-cased address, or ``None`` when it is not an email."""

    if not email:
        return None
    candidate = email.strip().lower()
    return candidate if _EMAIL_PATTERN.match(candidate) else None


def _subscriber_param(subscriber_id: str) -> int | str:
    return int(subscriber_id) if subscriber_id.isdigit() else subscriber_id


def _parse_retry_after(response: httpx.Response) -> float | None:
    header = response.headers.get("Retry-After")
    if header is None:
        return None
    try:
        return max(0.0, float(header))
    except ValueError:
        return None


def _looks_like_html(response: httpx.Response) -> bool:
    content_type = response.headers.get("Content-Type", "").lower()
    if "html" in content_type:
        return True
    return response.text.lstrip()[:1] == "<"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip()[:200] or response.reason_phrase
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return response.reason_phrase


def classify_response(response: httpx.Response) -> Result[object]:
    """Map one HTTP response onto ``Ok(data)`` or an ``Err`` with its ``ErrorKind``."""

    status = response.status_code
    if status == httpx.codes.NOT_FOUND:
        return Err(ErrorKind.NOT_FOUND, "Resource not found", status_code=status)
    if status == httpx.codes.TOO_MANY_REQUESTS:
        return Err(
            ErrorKind.RATE_LIMITED,
            "Rate limited by ManyChat",
            status_code=status,
            retry_after=_parse_retry_after(response),
        )
    if status in _AUTH_STATUSES:
        return Err(
            ErrorKind.AUTH_FAILED,
            f"ManyChat refused the credentials ({status})",
            status_code=status,
        )
    if response.is_error:
        return Err(
            ErrorKind.TRANSIENT,
            f"ManyChat API error {status}: {_error_message(response)}",
            status_code=status,
        )

    if _looks_like_html(response):
        return Err(
            ErrorKind.INVALID_RESPONSE,
            "ManyChat returned HTML instead of JSON",
            status_code=status,
        )
    try:
        envelope = ApiEnvelope.model_validate(response.json())
    except (ValueError, ValidationError):
        return Err(
            ErrorKind.INVALID_RESPONSE,
            "ManyChat returned a malformed response",
            status_code=status,
        )

    if envelope.is_success:
        return Ok(envelope.data)
    if envelope.looks_not_found:
        return Err(ErrorKind.NOT_FOUND, envelope.error_message, status_code=status)
    return Err(ErrorKind.REJECTED, envelope.error_message, status_code=status)


def _validate[TModel: BaseModel](model: type[TModel], data: object) -> TModel:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidResponseError(f"Unexpected ManyChat payload: {exc}") from exc


class ManychatClient:
    """Async ManyChat client implementing ``MessagingPlatform``.

    Every request runs through ``_execute``, which retries according to the
    configured ``RetryPolicy``. Not-found outcomes are returned as ``None`` or
    ``False``. Once ManyChat refuses the credentials the client latches and
    fails every later call without touching the network.
    """

    def __init__(
        self,
        config: ManychatConfig | None = None,
        *,
        client_factory: Callable[[ResilienceConfig], ResilientClient] = ResilientClient,
        sleep: Sleep = real_sleep,
    ) -> None:
        self.config = config or ManychatConfig.from_environment()
        self.resilience = self.config.resolved_resilience()
        self._client = client_factory(self.resilience)
        self._sleep = sleep
        self._auth_failure: str | None = None

    async def __aenter__(self) -> ManychatClient:
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

    @property
    def is_disabled(self) -> bool:
        return self._auth_failure is not None

    async def find_subscriber(self, lookup: SubscriberLookup) -> Subscriber | None:
        if lookup.is_empty:
            log.debug("ManyChat subscriber lookup without identifiers")
            return None
        if lookup.id:
            subscriber = await self.get_subscriber(lookup.id)
            if subscriber is not None:
                return subscriber
        if lookup.phone and lookup.phone.strip():
            subscriber = await self._find_by_system_field("phone", lookup.phone.strip())
            if subscriber is not None:
                return subscriber
        if lookup.email:
            email = normalize_email(lookup.email)
            if email is None:
                log.warning("Skipping ManyChat lookup by malformed email %r", lookup.email)
            else:
                return await self._find_by_system_field("email", email)
        return None

    async def get_subscriber(self, subscriber_id: str) -> Subscriber | None:
        data = self._unwrap(
            await self._execute(
                "GET",
                "/fb/subscriber/getInfo",
                params={"subscriber_id": subscriber_id},
            )
        )
        if not data:
            return None
        return parse_subscriber(_validate(SubscriberPayload, data))

    async def list_tags(self) -> list[Tag]:
        data = self._unwrap(await self._execute("GET", MANYCHAT_TAGS_PATH))
        if data is None:
            return []
        try:
            payloads = TAG_LIST_ADAPTER.validate_python(data)
        except ValidationError as exc:
            raise InvalidResponseError(f"Unexpected ManyChat tag list: {exc}") from exc
        return list(parse_tags(payloads))

    async def add_tag(self, subscriber_id: str, tag_name: str) -> bool:
        tag_id = await self._resolve_tag_id(tag_name)
        result = await self._execute(
            "POST",
            "/fb/subscriber/addTagById",
            json={"subscriber_id": _subscriber_param(subscriber_id), "tag_id": tag_id},
        )
        added = self._succeeded(result)
        log.debug("Added tag %s to subscriber %s: %s", tag_name, subscriber_id, added)
        return added

    async def remove_tag(self, subscriber_id: str, tag_name: str) -> bool:
        tag_id = await self._resolve_tag_id(tag_name)
        result = await self._execute(
            "POST",
            "/fb/subscriber/removeTagById",
            json={"subscriber_id": _subscriber_param(subscriber_id), "tag_id": tag_id},
        )
        removed = self._succeeded(result)
        log.debug("Removed tag %s from subscriber %s: %s", tag_name, subscriber_id, removed)
        return removed

    async def set_custom_field(self, subscriber_id: str, field: str, value: object) -> bool:
        result = await self._execute(
            "POST",
            "/fb/subscriber/setCustomField",
            json={
                "subscriber_id": _subscriber_param(subscriber_id),
                "field_name": field,
                "field_value": value,
            },
        )
        return self._succeeded(result)

    async def send_message(
        self,
        subscriber_id: str,
        messages: Sequence[Mapping[str, object]],
        tag: str | None = None,
    ) -> SendResult:
        content: dict[str, object] = {"version": "v2", "messages": [dict(m) for m in messages]}
        if tag:
            content["tag"] = tag
        result = await self._execute(
            "POST",
            "/fb/sending/sendContent",
            json={"subscriber_id": _subscriber_param(subscriber_id), "data": content},
        )
        if isinstance(result, Ok):
            return SendResult(success=True)
        if result.kind is ErrorKind.AUTH_FAILED:
            raise error_from_result(result)
        log.warning("Sending to subscriber %s failed: %s", subscriber_id, result.message)
        return SendResult(success=False, error=result.message)

    async def send_text(self, subscriber_id: str, text: str, tag: str | None = None) -> bool:
        result = await self.send_message(subscriber_id, [{"type": "text", "text": text}], tag)
        return result.success

    async def health_check(self) -> bool:
        result = await self._execute("GET", "/fb/page/getInfo")
        if isinstance(result, Err):
            log.warning("ManyChat health check failed: %s", result.message)
            return False
        return True

    async def _find_by_system_field(self, field_name: str, value: str) -> Subscriber | None:
        data = self._unwrap(
            await self._execute(
                "GET",
                "/fb/subscriber/findBySystemField",
                params={"field_name": field_name, "field_value": value},
            )
        )
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        return parse_subscriber(_validate(SubscriberPayload, data))

    async def _resolve_tag_id(self, tag_name: str) -> int:
        key = normalize_tag_name(tag_name)
        for tag in await self.list_tags():
            if tag.key == key and tag.id is not None:
                return tag.id
        log.error("Tag %r is not registered on ManyChat", tag_name)
        raise TagNotRegisteredError(tag_name)

    async def _execute(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, object] | None = None,
        json: object = None,
    ) -> Result[object]:
        if self._auth_failure is not None:
            return Err(ErrorKind.AUTH_FAILED, self._auth_failure)

        attempt = 0
        while True:
            result = await self._attempt(method, path, params=params, json=json)
            if isinstance(result, Ok):
                return result
            if result.kind is ErrorKind.AUTH_FAILED:
                self._auth_failure = result.message
                log.error("%s; disabling the ManyChat client", result.message)
                return result

            delay = retry_delay(self.resilience.retry, result.kind, attempt, result.retry_after)
            if delay is None:
                if result.kind is not ErrorKind.NOT_FOUND:
                    log.warning(
                        "ManyChat %s %s failed after %s attempt(s): %s",
                        method,
                        path,
                        attempt + 1,
                        result.message,
                    )
                return result
            log.warning(
                "ManyChat %s %s failed (%s), retrying in %.1fs",
                method,
                path,
                result.message,
                delay,
            )
            await self._sleep(delay)
            attempt += 1

    async def _attempt(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, object] | None,
        json: object,
    ) -> Result[object]:
        try:
            if json is None:
                response = await self._client.request(method, path, params=params)
            else:
                response = await self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            return Err(ErrorKind.TRANSIENT, f"Network error calling ManyChat: {exc}")
        return classify_response(response)

    @staticmethod
    def _unwrap(result: Result[object]) -> object:
        if isinstance(result, Ok):
            return result.value
        if result.kind is ErrorKind.NOT_FOUND:
            return None
        raise error_from_result(result)

    @staticmethod
    def _succeeded(result: Result[object]) -> bool:
        if isinstance(result, Ok):
            return True
        if result.kind is ErrorKind.NOT_FOUND:
            return False
        raise error_from_result(result)


if TYPE_CHECKING:
    _platform_check: MessagingPlatform = ManychatClient()
