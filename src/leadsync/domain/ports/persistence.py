"""Ports for persisting domain aggregates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from leadsync.domain.model import Lead, StageTagMapping, SyncRecord, SyncStatus, TagKind

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class StageTagRepository(Repository[StageTagMapping], Protocol):
    """Read access to the stage/tag directory (maintained by configuration)."""

    async def list_active(self, kind: TagKind | None = None) -> Sequence[StageTagMapping]: ...

    async def find_active_for_stage(
        self, stage: str, kind: TagKind
    ) -> Sequence[StageTagMapping]: ...

    async def find(self, stage: str | None, external_tag: str) -> StageTagMapping | None: ...


@runtime_checkable
class SyncRecordRepository(Repository[SyncRecord], Protocol):
    """Persistence contract for the sync ledger."""

    async def get(self, record_id: str) -> SyncRecord | None: ...

    async def list_retryable(self, *, max_retry: int, limit: int) -> Sequence[SyncRecord]: ...

    async def count_by_status(self) -> dict[SyncStatus, int]: ...

    async def delete_succeeded_before(self, cutoff: datetime) -> int: ...

    async def list_for_lead(self, lead_id: str, *, limit: int) -> Sequence[SyncRecord]: ...


@runtime_checkable
class LeadRepository(Repository[Lead], Protocol):
    """Lookup of CRM leads; the CRM owns writes, the sync only reads."""

    async def get(self, lead_id: str) -> Lead | None: ...

    async def list_linked(self, *, limit: int | None = None) -> Sequence[Lead]: ...
