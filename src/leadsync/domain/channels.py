"""Detect which messaging channel a subscriber is reachable on."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from leadsync.domain.model import Channel

if TYPE_CHECKING:
    from leadsync.domain.model import Subscriber

_E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


def is_e164(phone: str | None) -> bool:
    if not phone:
        return False
    return bool(_E164_PATTERN.match(phone.strip()))


def detect_channel(subscriber: Subscriber) -> Channel:
    """Return the subscriber's channel, preferring WhatsApp over Instagram over Messenger."""

    if subscriber.whatsapp_phone:
        return Channel.WHATSAPP
    if is_e164(subscriber.phone):
        return Channel.WHATSAPP
    if subscriber.instagram_id:
        return Channel.INSTAGRAM
    if subscriber.email:
        return Channel.FACEBOOK
    return Channel.UNKNOWN
