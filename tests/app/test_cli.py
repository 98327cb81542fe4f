from __future__ import annotations

import pytest

from leadsync.app import TagVerification
from leadsync.domain.backlog import BacklogResult
from leadsync.domain.reconciliation import BulkSyncResult
from leadsync.domain.sync_ledger import SyncStats
from leadsync.domain.tag_directory import SeedResult
from leadsync.ui import cli as cli_module


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> dict[str, object]:
    calls: dict[str, object] = {"shutdown": 0}

    async def fake_reconcile_lead(lead_id: str, **kwargs: object) -> bool:
        calls["reconcile_lead"] = {"lead_id": lead_id, **kwargs}
        return True

    async def fake_reconcile_linked_leads(**kwargs: object) -> BulkSyncResult:
        calls["reconcile_linked_leads"] = kwargs
        return BulkSyncResult(success=1, failed=1, errors=[("lead-2", "not synced")])

    async def fake_drain_backlog(**kwargs: object) -> BacklogResult:
        calls["drain_backlog"] = kwargs
        return BacklogResult(processed=2, succeeded=1, failed=1)

    async def fake_sync_stats() -> SyncStats:
        calls["sync_stats"] = True
        return SyncStats(pending=1, failed=2, succeeded=3, total=6)

    async def fake_cleanup_ledger(**kwargs: object) -> int:
        calls["cleanup_ledger"] = kwargs
        return 4

    async def fake_seed_stage_tags() -> SeedResult:
        calls["seed_stage_tags"] = True
        return SeedResult(inserted=13, updated=0)

    async def fake_verify_stage_tags() -> TagVerification:
        calls["verify_stage_tags"] = True
        return TagVerification(missing_tags=["credito-aprobado"])

    async def fake_shutdown() -> None:
        calls["shutdown"] = int(calls["shutdown"]) + 1  # type: ignore[arg-type]

    monkeypatch.setattr(cli_module, "reconcile_lead", fake_reconcile_lead)
    monkeypatch.setattr(cli_module, "reconcile_linked_leads", fake_reconcile_linked_leads)
    monkeypatch.setattr(cli_module, "drain_backlog", fake_drain_backlog)
    monkeypatch.setattr(cli_module, "sync_stats", fake_sync_stats)
    monkeypatch.setattr(cli_module, "cleanup_ledger", fake_cleanup_ledger)
    monkeypatch.setattr(cli_module, "seed_stage_tags", fake_seed_stage_tags)
    monkeypatch.setattr(cli_module, "verify_stage_tags", fake_verify_stage_tags)
    monkeypatch.setattr(cli_module, "shutdown", fake_shutdown)
    return calls


def test_reconcile_single_lead(captured: dict[str, object]) -> None:
    cli_module.main(["reconcile", "lead-1", "--stage", "APROBADO", "--previous-stage", "X"])

    assert captured["reconcile_lead"] == {
        "lead_id": "lead-1",
        "new_stage": "APROBADO",
        "previous_stage": "X",
    }
    assert captured["shutdown"] == 1


def test_reconcile_all_linked_leads(captured: dict[str, object]) -> None:
    cli_module.main(["reconcile", "--all", "--limit", "5"])

    assert captured["reconcile_linked_leads"] == {"limit": 5}


def test_drain_backlog_defaults(captured: dict[str, object]) -> None:
    cli_module.main(["--log-level", "debug", "drain-backlog"])

    assert captured["drain_backlog"] == {"max_batches": None}


def test_maintenance_commands(captured: dict[str, object]) -> None:
    cli_module.main(["stats"])
    cli_module.main(["cleanup", "--days", "7"])
    cli_module.main(["seed-tags"])
    cli_module.main(["verify-tags"])

    assert captured["sync_stats"] is True
    assert captured["cleanup_ledger"] == {"days_to_keep": 7}
    assert captured["seed_stage_tags"] is True
    assert captured["verify_stage_tags"] is True
    assert captured["shutdown"] == 4


@pytest.mark.parametrize(
    "argv",
    [
        ["reconcile"],
        ["reconcile", "lead-1", "--all"],
        ["reconcile", "--all", "--limit", "0"],
        ["drain-backlog", "--max-batches", "0"],
        ["cleanup", "--days", "-1"],
        ["--log-level", "LOUD", "stats"],
    ],
)
def test_invalid_arguments_exit_with_usage_error(
    captured: dict[str, object], argv: list[str]
) -> None:
    with pytest.raises(SystemExit) as exc:
        cli_module.main(argv)

    assert exc.value.code == 2
    assert captured["shutdown"] == 0


def test_fatal_errors_exit_non_zero(
    captured: dict[str, object], monkeypatch: pytest.MonkeyPatch
) -> None:
    async def failing_reconcile_lead(lead_id: str, **kwargs: object) -> bool:
        raise LookupError(f"Unknown lead {lead_id}")

    monkeypatch.setattr(cli_module, "reconcile_lead", failing_reconcile_lead)

    with pytest.raises(SystemExit) as exc:
        cli_module.main(["reconcile", "ghost"])

    assert exc.value.code == 1
    assert captured["shutdown"] == 1
