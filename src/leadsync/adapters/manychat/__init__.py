"""Public interface for the ManyChat adapter."""

from __future__ import annotations

from .client import ManychatClient, classify_response, normalize_email
from .schema import ApiEnvelope, SubscriberPayload, TagPayload
from .translator import parse_subscriber, parse_tag, parse_tags

__all__ = [
    "ApiEnvelope",
    "ManychatClient",
    "SubscriberPayload",
    "TagPayload",
    "classify_response",
    "normalize_email",
    "parse_subscriber",
    "parse_tag",
    "parse_tags",
]
