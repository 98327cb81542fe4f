"""Application orchestration entry points."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from leadsync.adapters.manychat import ManychatClient
from leadsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    is_started,
    startup,
)
from leadsync.config import get_manychat_config, get_sync_config
from leadsync.domain.backlog import BacklogProcessor, BacklogResult
from leadsync.domain.model import normalize_tag_name
from leadsync.domain.reconciliation import BulkSyncResult, ReconciliationEngine, StageChange
from leadsync.domain.sync_ledger import SyncLedger, SyncStats
from leadsync.domain.tag_directory import SeedResult, TagDirectory, default_stage_tags
from leadsync.domain.timing import real_sleep

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from leadsync.config import SyncConfig
    from leadsync.domain.ports import MessagingPlatform, UnitOfWorkFactory
    from leadsync.domain.timing import Sleep

log = getLogger(__name__)


@dataclass(slots=True)
class SyncServices:
    """Constructed services sharing one platform client and one store."""

    platform: MessagingPlatform
    directory: TagDirectory
    ledger: SyncLedger
    engine: ReconciliationEngine
    backlog: BacklogProcessor
    unit_of_work_factory: UnitOfWorkFactory
    config: SyncConfig
    _owned_client: ManychatClient | None = None

    async def aclose(self) -> None:
        if self._owned_client is not None:
            await self._owned_client.aclose()


@dataclass(slots=True, frozen=True)
class TagVerification:
    missing_tags: list[str] = field(default_factory=list)
    mismatched_stages: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing_tags and not self.mismatched_stages


def build_services(
    *,
    platform: MessagingPlatform | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    sync_config: SyncConfig | None = None,
    sleep: Sleep = real_sleep,
) -> SyncServices:
    """Wire the sync services; a ManyChat client is built from the environment if needed."""

    config = sync_config or get_sync_config()
    uow_factory = unit_of_work_factory or SqlAlchemySyncUnitOfWork
    owned_client: ManychatClient | None = None
    if platform is None:
        owned_client = ManychatClient(get_manychat_config(), sleep=sleep)
        platform = owned_client

    directory = TagDirectory(uow_factory, expected_stage_tags=config.expected_stage_tags)
    ledger = SyncLedger(uow_factory, max_retry=config.max_retry_count)
    engine = ReconciliationEngine(
        platform=platform,
        directory=directory,
        ledger=ledger,
        settle_delay=config.settle_delay,
        origin_field=config.origin_field,
        short_circuit_unchanged=config.short_circuit_unchanged,
        sleep=sleep,
    )
    backlog = BacklogProcessor(
        ledger=ledger,
        engine=engine,
        unit_of_work_factory=uow_factory,
        batch_size=config.batch_size,
        record_delay=config.record_delay,
        batch_delay=config.batch_delay,
        sleep=sleep,
    )
    return SyncServices(
        platform=platform,
        directory=directory,
        ledger=ledger,
        engine=engine,
        backlog=backlog,
        unit_of_work_factory=uow_factory,
        config=config,
        _owned_client=owned_client,
    )


async def ensure_storage() -> None:
    if not is_started():
        await startup()


@asynccontextmanager
async def _open_services(services: SyncServices | None) -> AsyncIterator[SyncServices]:
    if services is not None:
        yield services
        return
    await ensure_storage()
    built = build_services()
    try:
        yield built
    finally:
        await built.aclose()


async def handle_stage_change(
    lead_id: str,
    subscriber_id: str | None,
    previous_stage: str | None,
    new_stage: str,
    *,
    services: SyncServices | None = None,
) -> bool:
    """Hook for the CRM's lead-update path.

    The stage change itself has already been stored, so this never raises:
    any sync failure is logged and left in the ledger for the backlog.
    """

    try:
        async with _open_services(services) as active:
            return await active.engine.reconcile(lead_id, subscriber_id, previous_stage, new_stage)
    except Exception:
        log.exception("ManyChat sync failed for lead %s; stage change kept", lead_id)
        return False


async def reconcile_lead(
    lead_id: str,
    *,
    new_stage: str | None = None,
    previous_stage: str | None = None,
    services: SyncServices | None = None,
) -> bool:
    """Reconcile a stored lead, defaulting to its current stage."""

    async with _open_services(services) as active:
        async with active.unit_of_work_factory() as uow:
            lead = await uow.repositories.leads.get(lead_id)
        if lead is None:
            raise LookupError(f"Unknown lead {lead_id}")
        stage = new_stage or lead.stage
        if not stage:
            raise ValueError(f"Lead {lead_id} has no pipeline stage")
        return await active.engine.reconcile(lead.id, lead.manychat_id, previous_stage, stage)


async def reconcile_linked_leads(
    *,
    limit: int | None = None,
    services: SyncServices | None = None,
) -> BulkSyncResult:
    """Re-assert the current stage tag of every lead linked to ManyChat."""

    async with _open_services(services) as active:
        async with active.unit_of_work_factory() as uow:
            leads = await uow.repositories.leads.list_linked(limit=limit)
        changes = [
            StageChange(lead_id=lead.id, subscriber_id=lead.manychat_id, new_stage=lead.stage)
            for lead in leads
            if lead.stage
        ]
        log.info("Starting bulk sync of %s leads", len(changes))
        return await active.engine.reconcile_many(changes, delay=active.config.bulk_delay)


async def drain_backlog(
    *,
    max_batches: int | None = None,
    services: SyncServices | None = None,
) -> BacklogResult:
    async with _open_services(services) as active:
        return await active.backlog.drain(max_batches=max_batches)


async def sync_stats(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    sync_config: SyncConfig | None = None,
) -> SyncStats:
    ledger = await _ledger(unit_of_work_factory, sync_config)
    return await ledger.stats()


async def cleanup_ledger(
    *,
    days_to_keep: int | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    sync_config: SyncConfig | None = None,
) -> int:
    config = sync_config or get_sync_config()
    ledger = await _ledger(unit_of_work_factory, config)
    return await ledger.cleanup(config.cleanup_days if days_to_keep is None else days_to_keep)


async def seed_stage_tags(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> SeedResult:
    if unit_of_work_factory is None:
        await ensure_storage()
    directory = TagDirectory(unit_of_work_factory or SqlAlchemySyncUnitOfWork)
    return await directory.seed(default_stage_tags())


async def verify_stage_tags(*, services: SyncServices | None = None) -> TagVerification:
    """Check the directory against ManyChat's tag catalogue and the expected mappings."""

    async with _open_services(services) as active:
        platform_keys = {tag.key for tag in await active.platform.list_tags()}
        missing = [
            mapping.external_tag
            for mapping in await active.directory.list_mappings()
            if normalize_tag_name(mapping.external_tag) not in platform_keys
        ]
        for tag in missing:
            log.error("Tag %r is configured but not registered on ManyChat", tag)
        mismatched = await active.directory.validate_expected()
    return TagVerification(missing_tags=missing, mismatched_stages=mismatched)


async def _ledger(
    unit_of_work_factory: UnitOfWorkFactory | None,
    sync_config: SyncConfig | None,
) -> SyncLedger:
    if unit_of_work_factory is None:
        await ensure_storage()
    config = sync_config or get_sync_config()
    return SyncLedger(
        unit_of_work_factory or SqlAlchemySyncUnitOfWork,
        max_retry=config.max_retry_count,
    )
