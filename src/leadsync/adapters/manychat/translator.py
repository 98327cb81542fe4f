"""Translate ManyChat payloads into domain values."""

from __future__ import annotations

from typing import TYPE_CHECKING

from leadsync.domain.model import Subscriber, Tag

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .schema import SubscriberPayload, TagPayload


def parse_tag(payload: TagPayload) -> Tag:
    return Tag(name=payload.name, id=payload.id)


def parse_tags(payloads: Iterable[TagPayload]) -> tuple[Tag, ...]:
    return tuple(parse_tag(payload) for payload in payloads if payload.name)


def parse_subscriber(payload: SubscriberPayload) -> Subscriber:
    return Subscriber(
        id=payload.id,
        phone=payload.phone,
        email=payload.email,
        whatsapp_phone=payload.whatsapp_phone,
        instagram_id=payload.instagram_id,
        page_id=payload.page_id,
        tags=parse_tags(payload.tags),
        custom_fields=dict(payload.custom_fields),
    )
