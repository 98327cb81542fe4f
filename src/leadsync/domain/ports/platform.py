"""Port for the external messaging/automation platform."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from leadsync.domain.model import Subscriber, SubscriberLookup, Tag


@dataclass(slots=True, frozen=True)
class SendResult:
    success: bool
    error: str | None = None


@runtime_checkable
class MessagingPlatform(Protocol):
    """Operations the reconciliation engine needs from the platform.

    Not-found outcomes are values (``None``/``False``); everything else that
    goes wrong is raised as a ``PlatformError``.
    """

    async def find_subscriber(self, lookup: SubscriberLookup) -> Subscriber | None: ...

    async def get_subscriber(self, subscriber_id: str) -> Subscriber | None: ...

    async def list_tags(self) -> Sequence[Tag]: ...

    async def add_tag(self, subscriber_id: str, tag_name: str) -> bool: ...

    async def remove_tag(self, subscriber_id: str, tag_name: str) -> bool: ...

    async def set_custom_field(self, subscriber_id: str, field: str, value: object) -> bool: ...

    async def send_message(
        self,
        subscriber_id: str,
        messages: Sequence[Mapping[str, object]],
        tag: str | None = None,
    ) -> SendResult: ...
