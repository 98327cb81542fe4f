"""Pure tag-delta computation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from leadsync.domain.model import TagDelta, normalize_tag_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from leadsync.domain.model import Tag


def compute_tag_delta(
    current_tags: Iterable[Tag],
    *,
    target_tag: str,
    pipeline_tags: Iterable[str],
    business_tags: Iterable[str] = (),
) -> TagDelta:
    """Work out which tags move a subscriber onto ``target_tag``.

    Every live pipeline tag other than the target is removed, so drift that
    left several pipeline tags behind is cleaned up in one pass. Business and
    unknown tags are never touched, and a name listed as both pipeline and
    business counts as business. The target is always added, even when
    already present, because the platform only fires automations on a
    tag-added event. Removals keep the casing the platform reported and are
    deduplicated by normalised name.
    """

    target_key = normalize_tag_name(target_tag)
    pipeline_keys = {normalize_tag_name(tag) for tag in pipeline_tags}
    business_keys = {normalize_tag_name(tag) for tag in business_tags}

    to_remove: list[str] = []
    seen: set[str] = set()
    target_present = False
    for tag in current_tags:
        key = tag.key
        if not key:
            continue
        if key == target_key:
            target_present = True
            continue
        if key in business_keys or key not in pipeline_keys or key in seen:
            continue
        seen.add(key)
        to_remove.append(tag.name)

    return TagDelta(
        target_tag=target_tag,
        tags_to_add=(target_tag,),
        tags_to_remove=tuple(to_remove),
        target_already_present=target_present,
    )
