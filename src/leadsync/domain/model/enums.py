"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class TagKind(StrEnum):
    """Pipeline tags are mutually exclusive per lead; business tags are left alone."""

    PIPELINE = "pipeline"
    BUSINESS = "business"


class SyncStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class SyncDirection(StrEnum):
    TO_MANYCHAT = "to_manychat"
    FROM_MANYCHAT = "from_manychat"


class SyncType(StrEnum):
    PIPELINE_STAGE_CHANGE = "pipeline_stage_change"


class Channel(StrEnum):
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    UNKNOWN = "unknown"
