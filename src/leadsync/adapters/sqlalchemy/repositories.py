"""Repository implementations backed by async SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select

from leadsync.adapters.sqlalchemy.mappings import (
    lead_table,
    stage_tag_table,
    sync_record_table,
)
from leadsync.domain.model import Lead, StageTagMapping, SyncRecord, SyncStatus, TagKind

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession


class SqlAlchemyStageTagRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def add(self, entity: StageTagMapping) -> None:
        self.session.add(entity)

    async def list_active(self, kind: TagKind | None = None) -> Sequence[StageTagMapping]:
        stmt = (
            select(StageTagMapping)
            .where(stage_tag_table.c.active.is_(True))
            .order_by(stage_tag_table.c.id)
        )
        if kind is not None:
            stmt = stmt.where(stage_tag_table.c.tag_kind == kind)
        return (await self.session.scalars(stmt)).all()

    async def find_active_for_stage(
        self, stage: str, kind: TagKind
    ) -> Sequence[StageTagMapping]:
        stmt = (
            select(StageTagMapping)
            .where(stage_tag_table.c.stage == stage)
            .where(stage_tag_table.c.tag_kind == kind)
            .where(stage_tag_table.c.active.is_(True))
            .order_by(stage_tag_table.c.id)
        )
        return (await self.session.scalars(stmt)).all()

    async def find(self, stage: str | None, external_tag: str) -> StageTagMapping | None:
        stage_clause = (
            stage_tag_table.c.stage.is_(None) if stage is None else stage_tag_table.c.stage == stage
        )
        stmt = (
            select(StageTagMapping)
            .where(stage_clause)
            .where(stage_tag_table.c.external_tag == external_tag)
        )
        return (await self.session.scalars(stmt)).first()


class SqlAlchemySyncRecordRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def add(self, entity: SyncRecord) -> None:
        self.session.add(entity)

    async def get(self, record_id: str) -> SyncRecord | None:
        return await self.session.get(SyncRecord, record_id)

    async def list_retryable(self, *, max_retry: int, limit: int) -> Sequence[SyncRecord]:
        stmt = (
            select(SyncRecord)
            .where(sync_record_table.c.status.in_((SyncStatus.PENDING, SyncStatus.FAILED)))
            .where(sync_record_table.c.retry_count < max_retry)
            .order_by(sync_record_table.c.created_at, sync_record_table.c.id)
            .limit(limit)
        )
        return (await self.session.scalars(stmt)).all()

    async def count_by_status(self) -> dict[SyncStatus, int]:
        stmt = select(sync_record_table.c.status, func.count()).group_by(
            sync_record_table.c.status
        )
        rows = (await self.session.execute(stmt)).all()
        return {SyncStatus(status): count for status, count in rows}

    async def delete_succeeded_before(self, cutoff: datetime) -> int:
        stmt = (
            delete(sync_record_table)
            .where(sync_record_table.c.status == SyncStatus.SUCCESS)
            .where(sync_record_table.c.completed_at < cutoff)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def list_for_lead(self, lead_id: str, *, limit: int) -> Sequence[SyncRecord]:
        stmt = (
            select(SyncRecord)
            .where(sync_record_table.c.lead_id == lead_id)
            .order_by(sync_record_table.c.created_at.desc())
            .limit(limit)
        )
        return (await self.session.scalars(stmt)).all()


class SqlAlchemyLeadRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def add(self, entity: Lead) -> None:
        self.session.add(entity)

    async def get(self, lead_id: str) -> Lead | None:
        return await self.session.get(Lead, lead_id)

    async def list_linked(self, *, limit: int | None = None) -> Sequence[Lead]:
        stmt = (
            select(Lead)
            .where(lead_table.c.manychat_id.is_not(None))
            .order_by(lead_table.c.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return (await self.session.scalars(stmt)).all()
