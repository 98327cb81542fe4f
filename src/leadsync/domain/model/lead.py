"""Lead reference consumed by the sync subsystem (owned by the CRM)."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class Lead:
    id: str
    manychat_id: str | None = None
    stage: str | None = None

    @property
    def is_linked(self) -> bool:
        return bool(self.manychat_id)
