"""Ports the domain services depend on."""

from __future__ import annotations

from .persistence import LeadRepository, StageTagRepository, SyncRecordRepository
from .platform import MessagingPlatform, SendResult
from .unit_of_work import SyncRepositories, SyncUnitOfWork, UnitOfWork, UnitOfWorkFactory

__all__ = [
    "LeadRepository",
    "MessagingPlatform",
    "SendResult",
    "StageTagRepository",
    "SyncRecordRepository",
    "SyncRepositories",
    "SyncUnitOfWork",
    "UnitOfWork",
    "UnitOfWorkFactory",
]
