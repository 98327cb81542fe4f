"""Tag values and the stage-to-tag mapping entity."""

from __future__ import annotations

from dataclasses import dataclass

from .enums import TagKind


def normalize_tag_name(name: str) -> str:
    """Comparison key for tag names: trimmed and case-folded."""

    return name.strip().casefold()


@dataclass(slots=True, frozen=True)
class Tag:
    """A tag as known to the messaging platform.

    ``id`` is ``None`` when the platform only reported the name.
    """

    name: str
    id: int | None = None

    @property
    def key(self) -> str:
        return normalize_tag_name(self.name)


@dataclass(eq=False)
class StageTagMapping:
    """Maps a pipeline stage to the platform tag that represents it.

    Business mappings usually carry no stage. ``force_retrigger`` marks stages
    whose automations only fire reliably after an explicit remove/re-add cycle.
    """

    stage: str | None
    external_tag: str
    tag_kind: TagKind = TagKind.PIPELINE
    active: bool = True
    force_retrigger: bool = False
    description: str | None = None
    id: int | None = None


@dataclass(slots=True, frozen=True)
class TagDelta:
    """Changes needed to move a subscriber onto a target pipeline tag.

    Never persisted; recomputed from live platform state on every attempt.
    """

    target_tag: str
    tags_to_add: tuple[str, ...]
    tags_to_remove: tuple[str, ...]
    target_already_present: bool = False

    @property
    def has_removals(self) -> bool:
        return bool(self.tags_to_remove)
