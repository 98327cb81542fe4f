"""Append-only audit trail and retry queue for reconciliation attempts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from leadsync.config.sync import DEFAULT_BATCH_SIZE, DEFAULT_MAX_RETRY_COUNT
from leadsync.domain.model import SyncDirection, SyncRecord, SyncStatus, SyncType
from leadsync.domain.timing import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from leadsync.domain.ports import UnitOfWorkFactory
    from leadsync.domain.timing import WallClock

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SyncStats:
    pending: int
    failed: int
    succeeded: int
    total: int


class SyncLedger:
    """Writes and queries ``SyncRecord`` rows.

    Every mutation is a single-row update keyed by record id, inside its own
    unit of work. A record is terminal once it succeeded or once its
    ``retry_count`` reached ``max_retry``; non-retryable failures jump straight
    to the budget.
    """

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        max_retry: int = DEFAULT_MAX_RETRY_COUNT,
        clock: WallClock = utcnow,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._max_retry = max_retry
        self._clock = clock

    @property
    def max_retry(self) -> int:
        return self._max_retry

    async def record(
        self,
        lead_id: str,
        *,
        status: SyncStatus,
        payload: Mapping[str, object] | None = None,
        error: str | None = None,
        sync_type: SyncType | str = SyncType.PIPELINE_STAGE_CHANGE,
        direction: SyncDirection = SyncDirection.TO_MANYCHAT,
        retryable: bool = True,
    ) -> SyncRecord:
        now = self._clock()
        record = SyncRecord(
            lead_id=lead_id,
            sync_type=sync_type,
            direction=direction,
            payload=dict(payload or {}),
            created_at=now,
        )
        if status is not SyncStatus.PENDING:
            record.complete(status, now=now, error=error)
            if status is SyncStatus.FAILED and not retryable:
                record.retry_count = self._max_retry
        async with self._uow_factory() as uow:
            uow.repositories.sync_records.add(record)
            await uow.commit()
        log.debug("Recorded %s sync %s for lead %s", status, record.id, lead_id)
        return record

    async def open(
        self,
        lead_id: str,
        *,
        payload: Mapping[str, object] | None = None,
        sync_type: SyncType | str = SyncType.PIPELINE_STAGE_CHANGE,
        direction: SyncDirection = SyncDirection.TO_MANYCHAT,
    ) -> SyncRecord:
        return await self.record(
            lead_id,
            status=SyncStatus.PENDING,
            payload=payload,
            sync_type=sync_type,
            direction=direction,
        )

    async def mark_success(
        self,
        record: SyncRecord,
        payload: Mapping[str, object] | None = None,
    ) -> SyncRecord:
        def mutate(stored: SyncRecord) -> None:
            if payload:
                stored.payload = {**stored.payload, **payload}
            stored.complete(SyncStatus.SUCCESS, now=self._clock())

        return await self._update(record.id, mutate)

    async def mark_failed(
        self,
        record: SyncRecord,
        error: str,
        *,
        retryable: bool = True,
    ) -> SyncRecord:
        def mutate(stored: SyncRecord) -> None:
            stored.complete(SyncStatus.FAILED, now=self._clock(), error=error)
            if not retryable:
                stored.retry_count = max(stored.retry_count, self._max_retry)

        return await self._update(record.id, mutate)

    async def register_retry_failure(self, record: SyncRecord, error: str) -> SyncRecord:
        """Count one more failed replay; the record turns terminal at the budget."""

        def mutate(stored: SyncRecord) -> None:
            stored.retry_count += 1
            message = error
            if stored.retry_count >= self._max_retry:
                message = f"Max retries reached: {error}"
                log.warning(
                    "Sync %s for lead %s failed permanently after %s attempts",
                    stored.id,
                    stored.lead_id,
                    stored.retry_count,
                )
            stored.complete(SyncStatus.FAILED, now=self._clock(), error=message)

        return await self._update(record.id, mutate)

    async def list_retryable(
        self,
        max_retry: int | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> list[SyncRecord]:
        """Pending or failed records still under the retry budget, oldest first."""

        async with self._uow_factory() as uow:
            records = await uow.repositories.sync_records.list_retryable(
                max_retry=self._max_retry if max_retry is None else max_retry,
                limit=batch_size,
            )
        return list(records)

    async def has_retryable(self) -> bool:
        return bool(await self.list_retryable(batch_size=1))

    async def stats(self) -> SyncStats:
        async with self._uow_factory() as uow:
            counts = await uow.repositories.sync_records.count_by_status()
        pending = counts.get(SyncStatus.PENDING, 0)
        failed = counts.get(SyncStatus.FAILED, 0)
        succeeded = counts.get(SyncStatus.SUCCESS, 0)
        return SyncStats(
            pending=pending,
            failed=failed,
            succeeded=succeeded,
            total=pending + failed + succeeded,
        )

    async def cleanup(self, days_to_keep: int = 30) -> int:
        """Delete successful records completed more than ``days_to_keep`` days ago."""

        cutoff = self._clock() - timedelta(days=days_to_keep)
        async with self._uow_factory() as uow:
            deleted = await uow.repositories.sync_records.delete_succeeded_before(cutoff)
            await uow.commit()
        log.info("Cleaned up %s old syncs", deleted)
        return deleted

    async def history(self, lead_id: str, *, limit: int = 50) -> list[SyncRecord]:
        async with self._uow_factory() as uow:
            return list(await uow.repositories.sync_records.list_for_lead(lead_id, limit=limit))

    async def _update(
        self,
        record_id: str,
        mutate: Callable[[SyncRecord], None],
    ) -> SyncRecord:
        async with self._uow_factory() as uow:
            stored = await uow.repositories.sync_records.get(record_id)
            if stored is None:
                raise LookupError(f"Unknown sync record {record_id}")
            mutate(stored)
            await uow.commit()
        return stored
