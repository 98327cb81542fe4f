"""Reusable fakes for platform, clock and sleep dependencies."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from leadsync.domain.errors import TagNotRegisteredError
from leadsync.domain.model import Lead, Subscriber, Tag, normalize_tag_name
from leadsync.domain.ports import MessagingPlatform, SendResult

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from leadsync.domain.model import SubscriberLookup
    from leadsync.domain.ports import UnitOfWorkFactory


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays and advances an optional ``FakeClock``."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None and seconds > 0:
            self.clock.advance(seconds)
        await asyncio.sleep(0)


class FakeWallClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_subscriber(
    subscriber_id: str = "sub-1",
    *,
    tags: Iterable[str] = (),
    whatsapp_phone: str | None = "+5491155550000",
    phone: str | None = None,
    email: str | None = None,
    instagram_id: str | None = None,
) -> Subscriber:
    return Subscriber(
        id=subscriber_id,
        phone=phone,
        email=email,
        whatsapp_phone=whatsapp_phone,
        instagram_id=instagram_id,
        tags=tuple(Tag(name) for name in tags),
    )


class FakePlatform(MessagingPlatform):
    """In-memory ManyChat stand-in that applies tag mutations to its own state."""

    def __init__(
        self,
        subscribers: Iterable[Subscriber] = (),
        *,
        registered_tags: Iterable[str] | None = None,
    ) -> None:
        self.subscribers = {subscriber.id: subscriber for subscriber in subscribers}
        self.tags: dict[str, list[str]] = {
            subscriber.id: [tag.name for tag in subscriber.tags] for subscriber in subscribers
        }
        self.registered = (
            None if registered_tags is None else [name.strip() for name in registered_tags]
        )
        self.custom_fields: dict[str, dict[str, object]] = {}
        self.calls: list[tuple[object, ...]] = []
        self.failures: dict[str, Exception] = {}
        self.sent: list[tuple[str, list[Mapping[str, object]], str | None]] = []

    @property
    def mutations(self) -> list[tuple[object, ...]]:
        return [call for call in self.calls if call[0] in {"add_tag", "remove_tag"}]

    def tag_names(self, subscriber_id: str) -> list[str]:
        return list(self.tags[subscriber_id])

    async def find_subscriber(self, lookup: SubscriberLookup) -> Subscriber | None:
        self._record("find_subscriber", lookup)
        if lookup.id:
            return await self.get_subscriber(lookup.id)
        return None

    async def get_subscriber(self, subscriber_id: str) -> Subscriber | None:
        self._record("get_subscriber", subscriber_id)
        subscriber = self.subscribers.get(subscriber_id)
        if subscriber is None:
            return None
        return replace(subscriber, tags=tuple(Tag(name) for name in self.tags[subscriber_id]))

    async def list_tags(self) -> Sequence[Tag]:
        self._record("list_tags")
        names = self.registered
        if names is None:
            names = sorted({name for tags in self.tags.values() for name in tags})
        return [Tag(name, id=index) for index, name in enumerate(names, start=1)]

    async def add_tag(self, subscriber_id: str, tag_name: str) -> bool:
        self._record("add_tag", subscriber_id, tag_name)
        self._require_registered(tag_name)
        current = self.tags.setdefault(subscriber_id, [])
        if not any(normalize_tag_name(name) == normalize_tag_name(tag_name) for name in current):
            current.append(tag_name)
        return True

    async def remove_tag(self, subscriber_id: str, tag_name: str) -> bool:
        self._record("remove_tag", subscriber_id, tag_name)
        self._require_registered(tag_name)
        key = normalize_tag_name(tag_name)
        self.tags[subscriber_id] = [
            name for name in self.tags.get(subscriber_id, []) if normalize_tag_name(name) != key
        ]
        return True

    async def set_custom_field(self, subscriber_id: str, field: str, value: object) -> bool:
        self._record("set_custom_field", subscriber_id, field, value)
        self.custom_fields.setdefault(subscriber_id, {})[field] = value
        return True

    async def send_message(
        self,
        subscriber_id: str,
        messages: Sequence[Mapping[str, object]],
        tag: str | None = None,
    ) -> SendResult:
        self._record("send_message", subscriber_id)
        self.sent.append((subscriber_id, list(messages), tag))
        return SendResult(success=True)

    def _record(self, method: str, *args: object) -> None:
        self.calls.append((method, *args))
        failure = self.failures.get(method)
        if failure is not None:
            raise failure

    def _require_registered(self, tag_name: str) -> None:
        if self.registered is None:
            return
        if normalize_tag_name(tag_name) not in {normalize_tag_name(n) for n in self.registered}:
            raise TagNotRegisteredError(tag_name)


async def add_leads(unit_of_work_factory: UnitOfWorkFactory, *leads: Lead) -> None:
    async with unit_of_work_factory() as uow:
        for lead in leads:
            uow.repositories.leads.add(lead)
        await uow.commit()

