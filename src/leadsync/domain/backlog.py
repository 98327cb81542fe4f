"""Replays pending and failed ledger entries with a bounded retry budget."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from leadsync.config.sync import (
    DEFAULT_BATCH_DELAY_SECONDS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_RECORD_DELAY_SECONDS,
)
from leadsync.domain.errors import AuthenticationError, SyncFailure
from leadsync.domain.model import SyncType
from leadsync.domain.timing import real_sleep

if TYPE_CHECKING:
    from leadsync.domain.model import Lead, SyncRecord
    from leadsync.domain.ports import UnitOfWorkFactory
    from leadsync.domain.reconciliation import ReconciliationEngine
    from leadsync.domain.sync_ledger import SyncLedger
    from leadsync.domain.timing import Sleep

log = getLogger(__name__)


@dataclass(slots=True)
class BacklogResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass(slots=True)
class BacklogProcessor:
    """Drains ``SyncLedger.list_retryable`` batch by batch until it is empty.

    Records inside a batch run concurrently, each one started ``record_delay``
    seconds after the previous; batches run one after another.
    """

    ledger: SyncLedger
    engine: ReconciliationEngine
    unit_of_work_factory: UnitOfWorkFactory
    batch_size: int = DEFAULT_BATCH_SIZE
    record_delay: float = DEFAULT_RECORD_DELAY_SECONDS
    batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS
    sleep: Sleep = real_sleep

    async def drain(self, *, max_batches: int | None = None) -> BacklogResult:
        result = BacklogResult()
        batches = 0
        while max_batches is None or batches < max_batches:
            records = await self.ledger.list_retryable(batch_size=self.batch_size)
            if not records:
                break
            if batches:
                await self.sleep(self.batch_delay)
            batches += 1
            log.info("Processing batch %s with %s pending syncs", batches, len(records))

            outcomes = await asyncio.gather(
                *(self._process_staggered(index, record) for index, record in enumerate(records)),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
                result.processed += 1
                if outcome:
                    result.succeeded += 1
                else:
                    result.failed += 1

        log.info(
            "Backlog drained: processed=%s, succeeded=%s, failed=%s",
            result.processed,
            result.succeeded,
            result.failed,
        )
        return result

    async def _process_staggered(self, index: int, record: SyncRecord) -> bool:
        if index:
            await self.sleep(index * self.record_delay)
        return await self._process(record)

    async def _process(self, record: SyncRecord) -> bool:
        lead = await self._load_lead(record.lead_id)
        if lead is None:
            await self.ledger.mark_failed(record, "Lead not found", retryable=False)
            return False
        if not lead.manychat_id:
            await self.ledger.mark_failed(
                record, "Lead has no ManyChat subscriber id", retryable=False
            )
            return False
        if record.sync_type != SyncType.PIPELINE_STAGE_CHANGE:
            await self.ledger.mark_failed(
                record, f"Unknown sync type {record.sync_type}", retryable=False
            )
            return False

        new_stage = record.payload.get("newStage")
        previous_stage = record.payload.get("previousStage")
        if not isinstance(new_stage, str) or not new_stage:
            await self.ledger.mark_failed(record, "Sync payload has no newStage", retryable=False)
            return False

        try:
            outcome = await self.engine.apply(
                record.lead_id,
                lead.manychat_id,
                previous_stage if isinstance(previous_stage, str) else None,
                new_stage,
            )
        except SyncFailure as failure:
            if failure.retryable:
                await self.ledger.register_retry_failure(record, failure.reason)
            else:
                await self.ledger.mark_failed(record, failure.reason, retryable=False)
            return False
        except AuthenticationError:
            raise
        except Exception as exc:
            log.exception("Unexpected error replaying sync %s", record.id)
            await self.ledger.register_retry_failure(record, str(exc) or type(exc).__name__)
            return False

        await self.ledger.mark_success(record, outcome.to_payload())
        return True

    async def _load_lead(self, lead_id: str) -> Lead | None:
        async with self.unit_of_work_factory() as uow:
            return await uow.repositories.leads.get(lead_id)
