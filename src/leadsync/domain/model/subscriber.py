"""Subscriber snapshot as read from the messaging platform."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .tags import Tag, normalize_tag_name

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(slots=True, frozen=True)
class Subscriber:
    id: str
    phone: str | None = None
    email: str | None = None
    whatsapp_phone: str | None = None
    instagram_id: str | None = None
    page_id: str | None = None
    tags: tuple[Tag, ...] = ()
    custom_fields: Mapping[str, object] = field(default_factory=dict)

    def has_tag(self, name: str) -> bool:
        key = normalize_tag_name(name)
        return any(tag.key == key for tag in self.tags)


@dataclass(slots=True, frozen=True)
class SubscriberLookup:
    """Identifiers to search a subscriber by, in priority order: id, phone, email."""

    id: str | None = None
    phone: str | None = None
    email: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.id or self.phone or self.email)
