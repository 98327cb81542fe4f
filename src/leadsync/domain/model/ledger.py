"""Sync ledger entity."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .enums import SyncDirection, SyncStatus, SyncType


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(eq=False)
class SyncRecord:
    """Audit and retry-queue entry for one reconciliation attempt.

    ``completed_at`` is set exactly when ``status`` is not pending. A failed
    record stays eligible for replay while ``retry_count`` is below the
    ledger's retry budget.
    """

    lead_id: str
    sync_type: SyncType | str = SyncType.PIPELINE_STAGE_CHANGE
    direction: SyncDirection = SyncDirection.TO_MANYCHAT
    status: SyncStatus = SyncStatus.PENDING
    payload: dict[str, object] = field(default_factory=dict)
    error: str | None = None
    retry_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def complete(
        self,
        status: SyncStatus,
        *,
        now: datetime,
        error: str | None = None,
    ) -> None:
        if status is SyncStatus.PENDING:
            raise ValueError("A sync record cannot be completed as pending")
        self.status = status
        self.error = error
        self.completed_at = now

    def is_retryable(self, max_retry: int) -> bool:
        return self.status is not SyncStatus.SUCCESS and self.retry_count < max_retry
