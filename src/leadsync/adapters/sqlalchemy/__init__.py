"""SQLAlchemy adapter package for leadsync."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyLeadRepository,
    SqlAlchemyStageTagRepository,
    SqlAlchemySyncRecordRepository,
)
from .unit_of_work import SqlAlchemySyncUnitOfWork, StartupError, shutdown, startup

__all__ = [
    "SqlAlchemyLeadRepository",
    "SqlAlchemyStageTagRepository",
    "SqlAlchemySyncRecordRepository",
    "SqlAlchemySyncUnitOfWork",
    "StartupError",
    "create_all_tables",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
