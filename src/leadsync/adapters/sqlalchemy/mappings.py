"""SQLAlchemy mapping metadata for the leadsync domain model."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    and_,
    orm,
)
from sqlalchemy.orm import configure_mappers

from leadsync.domain.model import (
    Lead,
    StageTagMapping,
    SyncDirection,
    SyncRecord,
    SyncStatus,
    TagKind,
)

if TYPE_CHECKING:
    from enum import StrEnum

    from sqlalchemy.ext.asyncio import AsyncEngine

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _enum_values(enum_cls: type[StrEnum]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum_column_type(enum_cls: type[StrEnum]) -> Enum:
    return Enum(enum_cls, native_enum=False, values_callable=_enum_values, length=32)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

stage_tag_table = Table(
    "pipeline_stage_tags",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("stage", String(64), nullable=True),
    Column("manychat_tag", String(128), key="external_tag", nullable=False),
    Column("tag_type", _enum_column_type(TagKind), key="tag_kind", nullable=False),
    Column("is_active", Boolean, key="active", nullable=False, default=True),
    Column("force_retrigger", Boolean, nullable=False, default=False),
    Column("description", String(255), nullable=True),
    UniqueConstraint("stage", "external_tag"),
)

# At most one active pipeline tag per stage.
Index(
    "uq_pipeline_stage_tags_active_pipeline_stage",
    stage_tag_table.c.stage,
    unique=True,
    sqlite_where=and_(
        stage_tag_table.c.tag_kind == TagKind.PIPELINE,
        stage_tag_table.c.active.is_(True),
    ),
    postgresql_where=and_(
        stage_tag_table.c.tag_kind == TagKind.PIPELINE,
        stage_tag_table.c.active.is_(True),
    ),
)

sync_record_table = Table(
    "manychat_sync",
    mapper_registry.metadata,
    Column("id", String(32), primary_key=True),
    Column("lead_id", String(64), nullable=False, index=True),
    Column("sync_type", String(64), nullable=False),
    Column("status", _enum_column_type(SyncStatus), nullable=False, index=True),
    Column("direction", _enum_column_type(SyncDirection), nullable=False),
    Column("data", JSON, key="payload", nullable=False, default=dict),
    Column("error", Text, nullable=True),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("completed_at", UTCDateTime(), nullable=True),
)

lead_table = Table(
    "lead",
    mapper_registry.metadata,
    Column("id", String(64), primary_key=True),
    Column("manychat_id", String(64), nullable=True),
    Column("stage", String(64), nullable=True),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(StageTagMapping, stage_tag_table)
    mapper_registry.map_imperatively(SyncRecord, sync_record_table)
    mapper_registry.map_imperatively(Lead, lead_table)

    configure_mappers()
    return mapper_registry


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    async with engine.begin() as connection:
        await connection.run_sync(mapper_registry.metadata.create_all)
