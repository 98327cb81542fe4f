"""Pydantic models describing the ManyChat API payloads."""

from __future__ import annotations

from collections.abc import Mapping
from typing import cast

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _id_to_str(value: object) -> object:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return _blank_to_none(value)


class ManychatBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TagPayload(ManychatBaseModel):
    """A tag as ManyChat reports it: either a bare name or ``{id, name}``."""

    name: str
    id: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_name(cls, value: object) -> object:
        if isinstance(value, str):
            return {"name": value}
        return value

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class SubscriberPayload(ManychatBaseModel):
    id: str
    page_id: str | None = None
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    whatsapp_phone: str | None = None
    instagram_id: str | None = Field(default=None, alias="ig_id")
    tags: list[TagPayload] = Field(default_factory=list)
    custom_fields: dict[str, object] = Field(default_factory=dict)

    _normalize_ids = field_validator("id", "page_id", "instagram_id", mode="before")(_id_to_str)
    _normalize_contact = field_validator(
        "name", "first_name", "last_name", "phone", "email", "whatsapp_phone", mode="before"
    )(_blank_to_none)

    @field_validator("tags", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return [] if value is None else value

    @field_validator("tags")
    @classmethod
    def _drop_unnamed_tags(cls, value: list[TagPayload]) -> list[TagPayload]:
        return [tag for tag in value if tag.name]

    @field_validator("custom_fields", mode="before")
    @classmethod
    def _flatten_custom_fields(cls, value: object) -> object:
        # getInfo returns a list of {id, name, type, value}; webhooks send a mapping.
        if value is None:
            return {}
        if isinstance(value, list):
            flattened: dict[str, object] = {}
            for item in cast(list[object], value):
                if isinstance(item, Mapping):
                    entry = cast(Mapping[str, object], item)
                    name = entry.get("name")
                    if isinstance(name, str) and name:
                        flattened[name] = entry.get("value")
            return flattened
        return value


class ApiEnvelope(ManychatBaseModel):
    """Outer ``{"status": ..., "data": ...}`` wrapper of every ManyChat response."""

    status: str
    data: object = None
    message: str | None = None
    error: str | None = None
    error_code: str | None = None
    details: object = None

    _normalize_code = field_validator("error_code", mode="before")(_id_to_str)

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def error_message(self) -> str:
        return self.error or self.message or "Unknown ManyChat error"

    @property
    def looks_not_found(self) -> bool:
        code = (self.error_code or "").upper()
        return code.endswith("NOT_FOUND") or "not found" in self.error_message.lower()


TAG_LIST_ADAPTER: TypeAdapter[list[TagPayload]] = TypeAdapter(list[TagPayload])
