from __future__ import annotations

from collections.abc import Callable  # noqa: TC003

import pytest

from leadsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork  # noqa: TC001
from leadsync.domain.backlog import BacklogProcessor
from leadsync.domain.errors import AuthenticationError, TransientPlatformError
from leadsync.domain.model import Lead, SyncRecord, SyncStatus
from leadsync.domain.reconciliation import ReconciliationEngine
from leadsync.domain.sync_ledger import SyncLedger
from leadsync.domain.tag_directory import TagDirectory
from tests.helpers.fakes import FakePlatform, FakeSleep, add_leads, make_subscriber

type UowFactory = Callable[[], SqlAlchemySyncUnitOfWork]

STAGE_CHANGE = {"previousStage": "CLIENTE_NUEVO", "newStage": "APROBADO"}


def _processor(
    uow_factory: UowFactory,
    platform: FakePlatform,
    sleep: FakeSleep,
    *,
    batch_size: int = 10,
) -> BacklogProcessor:
    ledger = SyncLedger(uow_factory, max_retry=3)
    engine = ReconciliationEngine(
        platform=platform,
        directory=TagDirectory(uow_factory),
        ledger=ledger,
        sleep=sleep,
    )
    return BacklogProcessor(
        ledger=ledger,
        engine=engine,
        unit_of_work_factory=uow_factory,
        batch_size=batch_size,
        record_delay=5.0,
        batch_delay=1.0,
        sleep=sleep,
    )


async def _stored(processor: BacklogProcessor, lead_id: str) -> SyncRecord:
    records = await processor.ledger.history(lead_id)
    assert len(records) == 1
    return records[0]


@pytest.mark.asyncio
async def test_failed_sync_is_replayed(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", "APROBADO"))
    platform = FakePlatform([make_subscriber(tags=["lead-nuevo", "atencion-humana"])])
    processor = _processor(seeded_unit_of_work_factory, platform, fake_sleep)
    await processor.ledger.record(
        "lead-1", status=SyncStatus.FAILED, payload=STAGE_CHANGE, error="timeout"
    )

    result = await processor.drain()

    assert (result.processed, result.succeeded, result.failed) == (1, 1, 0)
    assert platform.tag_names("sub-1") == ["atencion-humana", "credito-aprobado"]
    record = await _stored(processor, "lead-1")
    assert record.status is SyncStatus.SUCCESS
    assert record.error is None
    assert record.payload["newTag"] == "credito-aprobado"
    assert record.payload["tagsRemoved"] == ["lead-nuevo"]


@pytest.mark.asyncio
async def test_pending_record_is_picked_up(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", "APROBADO"))
    platform = FakePlatform([make_subscriber()])
    processor = _processor(seeded_unit_of_work_factory, platform, fake_sleep)
    await processor.ledger.open("lead-1", payload=STAGE_CHANGE)

    result = await processor.drain()

    assert result.succeeded == 1
    assert (await _stored(processor, "lead-1")).status is SyncStatus.SUCCESS


@pytest.mark.asyncio
async def test_missing_lead_fails_permanently(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    processor = _processor(seeded_unit_of_work_factory, FakePlatform(), fake_sleep)
    await processor.ledger.open("ghost", payload=STAGE_CHANGE)

    first = await processor.drain()
    second = await processor.drain()

    assert (first.processed, first.failed) == (1, 1)
    assert second.processed == 0
    record = await _stored(processor, "ghost")
    assert record.error == "Lead not found"
    assert record.retry_count == 3


@pytest.mark.asyncio
async def test_unlinked_lead_fails_permanently(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", None, "APROBADO"))
    platform = FakePlatform()
    processor = _processor(seeded_unit_of_work_factory, platform, fake_sleep)
    await processor.ledger.open("lead-1", payload=STAGE_CHANGE)

    result = await processor.drain()

    assert result.failed == 1
    assert platform.calls == []
    record = await _stored(processor, "lead-1")
    assert record.error == "Lead has no ManyChat subscriber id"
    assert not record.is_retryable(3)


@pytest.mark.asyncio
async def test_retry_budget_is_exhausted(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", "APROBADO"))
    platform = FakePlatform([make_subscriber()])
    platform.failures["add_tag"] = TransientPlatformError("ManyChat API error 503")
    processor = _processor(seeded_unit_of_work_factory, platform, fake_sleep)
    await processor.ledger.open("lead-1", payload=STAGE_CHANGE)

    result = await processor.drain()

    assert (result.processed, result.succeeded, result.failed) == (3, 0, 3)
    assert fake_sleep.calls == [1.0, 1.0]
    record = await _stored(processor, "lead-1")
    assert record.status is SyncStatus.FAILED
    assert record.retry_count == 3
    assert record.error == "Max retries reached: ManyChat API error 503"
    assert not await processor.ledger.has_retryable()


@pytest.mark.asyncio
async def test_max_batches_limits_work(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", "APROBADO"))
    platform = FakePlatform([make_subscriber()])
    platform.failures["add_tag"] = TransientPlatformError("503")
    processor = _processor(seeded_unit_of_work_factory, platform, fake_sleep)
    await processor.ledger.open("lead-1", payload=STAGE_CHANGE)

    result = await processor.drain(max_batches=1)

    assert result.processed == 1
    assert (await _stored(processor, "lead-1")).retry_count == 1


@pytest.mark.asyncio
async def test_non_retryable_failure_during_replay(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "ghost", "APROBADO"))
    processor = _processor(seeded_unit_of_work_factory, FakePlatform(), fake_sleep)
    await processor.ledger.open("lead-1", payload=STAGE_CHANGE)

    result = await processor.drain()

    assert result.processed == 1
    record = await _stored(processor, "lead-1")
    assert record.retry_count == 3
    assert record.error is not None
    assert "not found" in record.error


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("sync_type", "payload", "error"),
    [
        ("lead_created", STAGE_CHANGE, "Unknown sync type lead_created"),
        ("pipeline_stage_change", {"previousStage": "X"}, "Sync payload has no newStage"),
    ],
)
async def test_unprocessable_records_fail_permanently(
    seeded_unit_of_work_factory: UowFactory,
    fake_sleep: FakeSleep,
    sync_type: str,
    payload: dict[str, object],
    error: str,
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", "APROBADO"))
    platform = FakePlatform([make_subscriber()])
    processor = _processor(seeded_unit_of_work_factory, platform, fake_sleep)
    await processor.ledger.record(
        "lead-1", status=SyncStatus.FAILED, payload=payload, sync_type=sync_type, error="x"
    )

    result = await processor.drain()

    assert (result.processed, result.failed) == (1, 1)
    assert platform.mutations == []
    record = await _stored(processor, "lead-1")
    assert record.error == error
    assert record.retry_count == 3


@pytest.mark.asyncio
async def test_authentication_error_aborts_drain(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    await add_leads(seeded_unit_of_work_factory, Lead("lead-1", "sub-1", "APROBADO"))
    platform = FakePlatform([make_subscriber()])
    platform.failures["get_subscriber"] = AuthenticationError("bad key")
    processor = _processor(seeded_unit_of_work_factory, platform, fake_sleep)
    await processor.ledger.open("lead-1", payload=STAGE_CHANGE)

    with pytest.raises(AuthenticationError):
        await processor.drain()

    record = await _stored(processor, "lead-1")
    assert record.status is SyncStatus.PENDING
    assert record.retry_count == 0


@pytest.mark.asyncio
async def test_records_in_a_batch_are_staggered(
    seeded_unit_of_work_factory: UowFactory, fake_sleep: FakeSleep
) -> None:
    leads = [Lead(f"lead-{i}", f"sub-{i}", "APROBADO") for i in range(3)]
    await add_leads(seeded_unit_of_work_factory, *leads)
    platform = FakePlatform([make_subscriber(f"sub-{i}") for i in range(3)])
    processor = _processor(seeded_unit_of_work_factory, platform, fake_sleep)
    for lead in leads:
        await processor.ledger.open(lead.id, payload=STAGE_CHANGE)

    result = await processor.drain(max_batches=1)

    assert (result.processed, result.succeeded) == (3, 3)
    assert sorted(fake_sleep.calls) == [5.0, 10.0]
    assert all(platform.tag_names(f"sub-{i}") == ["credito-aprobado"] for i in range(3))
