from __future__ import annotations

from collections.abc import Callable  # noqa: TC003

import pytest

from leadsync import app as app_module
from leadsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork  # noqa: TC001
from leadsync.app import (
    SyncServices,
    build_services,
    cleanup_ledger,
    drain_backlog,
    handle_stage_change,
    reconcile_lead,
    reconcile_linked_leads,
    seed_stage_tags,
    sync_stats,
    verify_stage_tags,
)
from leadsync.config import SyncConfig
from leadsync.domain.errors import TransientPlatformError
from leadsync.domain.model import Lead, StageTagMapping, SyncStatus
from leadsync.domain.tag_directory import TagDirectory
from tests.helpers.fakes import FakePlatform, FakeSleep, add_leads, make_subscriber

type UowFactory = Callable[[], SqlAlchemySyncUnitOfWork]


def _services(uow_factory: UowFactory, platform: FakePlatform, sleep: FakeSleep) -> SyncServices:
    return build_services(
        platform=platform,
        unit_of_work_factory=uow_factory,
        sync_config=SyncConfig(record_delay=0.0, batch_delay=0.0),
        sleep=sleep,
    )


@pytest.mark.asyncio
async def test_handle_stage_change_syncs_tags(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    platform = FakePlatform([make_subscriber(tags=["lead-consultando"])])
    services = _services(seeded_unit_of_work_factory, platform, fake_sleep)

    synced = await handle_stage_change(
        "lead-1", "sub-1", "CONSULTANDO_CREDITO", "PREAPROBADO", services=services
    )

    assert synced is True
    assert platform.tag_names("sub-1") == ["credito-preaprobado"]


@pytest.mark.asyncio
async def test_handle_stage_change_never_raises(
    seeded_unit_of_work_factory: UowFactory,
    fake_sleep: FakeSleep,
    caplog: pytest.LogCaptureFixture,
) -> None:
    platform = FakePlatform([make_subscriber()])
    platform.failures["get_subscriber"] = RuntimeError("database exploded")
    services = _services(seeded_unit_of_work_factory, platform, fake_sleep)

    synced = await handle_stage_change("lead-1", "sub-1", None, "APROBADO", services=services)

    assert synced is False
    assert "stage change kept" in caplog.text
    records = await services.ledger.history("lead-1")
    assert records[0].status is SyncStatus.FAILED
    assert records[0].is_retryable(services.ledger.max_retry)


@pytest.mark.asyncio
async def test_transient_failure_is_recovered_by_backlog(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", "APROBADO"))
    platform = FakePlatform([make_subscriber(tags=["lead-nuevo"])])
    platform.failures["add_tag"] = TransientPlatformError("ManyChat API error 502")
    services = _services(seeded_unit_of_work_factory, platform, fake_sleep)

    assert not await handle_stage_change(
        "lead-1", "sub-1", "CLIENTE_NUEVO", "APROBADO", services=services
    )
    del platform.failures["add_tag"]
    result = await drain_backlog(services=services)

    assert (result.processed, result.succeeded) == (1, 1)
    assert platform.tag_names("sub-1") == ["credito-aprobado"]
    stats = await sync_stats(unit_of_work_factory=seeded_unit_of_work_factory)
    assert (stats.succeeded, stats.failed, stats.pending) == (1, 0, 0)


@pytest.mark.asyncio
async def test_reconcile_lead_defaults_to_stored_stage(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", "EN_SEGUIMIENTO"))
    platform = FakePlatform([make_subscriber()])
    services = _services(seeded_unit_of_work_factory, platform, fake_sleep)

    assert await reconcile_lead("lead-1", services=services)
    assert platform.tag_names("sub-1") == ["en-seguimiento"]

    assert await reconcile_lead("lead-1", new_stage="APROBADO", services=services)
    assert platform.tag_names("sub-1") == ["credito-aprobado"]


@pytest.mark.asyncio
async def test_reconcile_lead_rejects_unknown_or_stageless_leads(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", None))
    services = _services(seeded_unit_of_work_factory, FakePlatform(), fake_sleep)

    with pytest.raises(LookupError):
        await reconcile_lead("ghost", services=services)
    with pytest.raises(ValueError, match="no pipeline stage"):
        await reconcile_lead("lead-1", services=services)


@pytest.mark.asyncio
async def test_reconcile_linked_leads(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(
        seeded_unit_of_work_factory,
        Lead("lead-1", "sub-1", "APROBADO"),
        Lead("lead-2", "sub-2", "RECHAZADO"),
        Lead("lead-3", None, "APROBADO"),
        Lead("lead-4", "sub-4", None),
    )
    platform = FakePlatform([make_subscriber("sub-1"), make_subscriber("sub-2")])
    services = _services(seeded_unit_of_work_factory, platform, fake_sleep)

    result = await reconcile_linked_leads(services=services)

    assert (result.success, result.failed) == (2, 0)
    assert platform.tag_names("sub-1") == ["credito-aprobado"]
    assert platform.tag_names("sub-2") == ["credito-rechazado"]


@pytest.mark.asyncio
async def test_cleanup_ledger_uses_requested_window(
    seeded_unit_of_work_factory: UowFactory,
) -> None:
    ledger_config = SyncConfig(cleanup_days=30)
    services = _services(seeded_unit_of_work_factory, FakePlatform(), FakeSleep())
    record = await services.ledger.open("lead-1")
    await services.ledger.mark_success(record)

    kept = await cleanup_ledger(
        unit_of_work_factory=seeded_unit_of_work_factory, sync_config=ledger_config
    )
    dropped = await cleanup_ledger(
        days_to_keep=-1, unit_of_work_factory=seeded_unit_of_work_factory
    )

    assert (kept, dropped) == (0, 1)


@pytest.mark.asyncio
async def test_seed_stage_tags(unit_of_work_factory: UowFactory) -> None:
    first = await seed_stage_tags(unit_of_work_factory=unit_of_work_factory)
    second = await seed_stage_tags(unit_of_work_factory=unit_of_work_factory)

    assert first.inserted > 0
    assert second.inserted == 0
    assert second.updated == first.inserted


@pytest.mark.asyncio
async def test_verify_stage_tags_reports_missing_and_drift(
    unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await TagDirectory(unit_of_work_factory).seed(
        [
            StageTagMapping("PREAPROBADO", "credito-preaprobado"),
            StageTagMapping("APROBADO", "aprobado-v2"),
        ]
    )
    platform = FakePlatform(registered_tags=["Credito-Preaprobado"])
    services = _services(unit_of_work_factory, platform, fake_sleep)

    verification = await verify_stage_tags(services=services)

    assert not verification.ok
    assert verification.missing_tags == ["aprobado-v2"]
    assert verification.mismatched_stages == ["APROBADO"]


@pytest.mark.asyncio
async def test_verify_stage_tags_passes_for_registered_defaults(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    directory = TagDirectory(seeded_unit_of_work_factory)
    names = [mapping.external_tag for mapping in await directory.list_mappings()]
    services = _services(
        seeded_unit_of_work_factory, FakePlatform(registered_tags=names), fake_sleep
    )

    assert (await verify_stage_tags(services=services)).ok


@pytest.mark.asyncio
async def test_build_services_owns_environment_client(
    monkeypatch: pytest.MonkeyPatch, unit_of_work_factory: UowFactory
) -> None:
    monkeypatch.setenv("MANYCHAT_API_KEY", "secret")
    closed: list[bool] = []

    async def fake_aclose(self: object) -> None:
        closed.append(True)

    monkeypatch.setattr(app_module.ManychatClient, "aclose", fake_aclose)

    services = build_services(unit_of_work_factory=unit_of_work_factory)
    await services.aclose()

    assert isinstance(services.platform, app_module.ManychatClient)
    assert closed == [True]
