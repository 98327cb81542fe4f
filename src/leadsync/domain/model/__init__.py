"""Domain model for stage/tag synchronisation."""

from __future__ import annotations

from .enums import Channel, SyncDirection, SyncStatus, SyncType, TagKind
from .lead import Lead
from .ledger import SyncRecord
from .subscriber import Subscriber, SubscriberLookup
from .tags import StageTagMapping, Tag, TagDelta, normalize_tag_name

__all__ = [
    "Channel",
    "Lead",
    "StageTagMapping",
    "Subscriber",
    "SubscriberLookup",
    "SyncDirection",
    "SyncRecord",
    "SyncStatus",
    "SyncType",
    "Tag",
    "TagDelta",
    "TagKind",
    "normalize_tag_name",
]
