"""Stage-to-tag directory backed by the ``pipeline_stage_tags`` table."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from leadsync.domain.errors import MappingConfigurationError
from leadsync.domain.model import StageTagMapping, TagKind, normalize_tag_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from leadsync.domain.ports import UnitOfWorkFactory

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SeedResult:
    inserted: int
    updated: int


class TagDirectory:
    """Resolves pipeline stages to platform tag names.

    Stage lookups are exact (case-sensitive). Tag names coming back from the
    directory are compared case-insensitively by callers. The stored mapping is
    authoritative: drift against ``expected_stage_tags`` is logged, not fixed.
    """

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        expected_stage_tags: Mapping[str, str] | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._expected = dict(expected_stage_tags or {})

    async def mapping_for(self, stage: str | None) -> StageTagMapping | None:
        mapping = await self._lookup(stage)
        if mapping is not None and mapping.stage in self._expected:
            self._matches_expected(mapping.stage, mapping.external_tag)
        return mapping

    async def resolve_tag(self, stage: str | None) -> str | None:
        """Return the active pipeline tag for ``stage`` or ``None`` if unmapped."""

        mapping = await self.mapping_for(stage)
        return mapping.external_tag if mapping else None

    async def list_pipeline_tags(self) -> list[str]:
        return await self._list_tags(TagKind.PIPELINE)

    async def list_business_tags(self) -> list[str]:
        return await self._list_tags(TagKind.BUSINESS)

    async def classify(self, tag_name: str) -> TagKind | None:
        key = normalize_tag_name(tag_name)
        if key in {normalize_tag_name(t) for t in await self.list_business_tags()}:
            return TagKind.BUSINESS
        if key in {normalize_tag_name(t) for t in await self.list_pipeline_tags()}:
            return TagKind.PIPELINE
        return None

    async def list_mappings(self) -> list[StageTagMapping]:
        async with self._uow_factory() as uow:
            return list(await uow.repositories.stage_tags.list_active())

    async def validate_expected(self) -> list[str]:
        """Log every critical stage whose configured tag drifted; return those stages."""

        mismatched: list[str] = []
        for stage in sorted(self._expected):
            mapping = await self._lookup(stage)
            if mapping is None:
                log.error("No active tag mapping for critical stage %s", stage)
                mismatched.append(stage)
            elif not self._matches_expected(stage, mapping.external_tag):
                mismatched.append(stage)
        return mismatched

    async def seed(self, mappings: Iterable[StageTagMapping]) -> SeedResult:
        """Insert or refresh directory rows, keyed by ``(stage, external_tag)``."""

        inserted = 0
        updated = 0
        async with self._uow_factory() as uow:
            repo = uow.repositories.stage_tags
            for mapping in mappings:
                existing = await repo.find(mapping.stage, mapping.external_tag)
                if existing is None:
                    repo.add(mapping)
                    inserted += 1
                    continue
                existing.tag_kind = mapping.tag_kind
                existing.active = mapping.active
                existing.force_retrigger = mapping.force_retrigger
                existing.description = mapping.description
                updated += 1
            await uow.commit()
        log.info("Seeded stage tag directory: inserted=%s, updated=%s", inserted, updated)
        return SeedResult(inserted=inserted, updated=updated)

    async def _lookup(self, stage: str | None) -> StageTagMapping | None:
        if not stage:
            return None
        async with self._uow_factory() as uow:
            mappings = await uow.repositories.stage_tags.find_active_for_stage(
                stage, TagKind.PIPELINE
            )
        if not mappings:
            return None
        if len(mappings) > 1:
            tags = ", ".join(sorted(m.external_tag for m in mappings))
            raise MappingConfigurationError(
                f"Stage {stage!r} has {len(mappings)} active pipeline tags: {tags}"
            )
        return mappings[0]

    async def _list_tags(self, kind: TagKind) -> list[str]:
        async with self._uow_factory() as uow:
            mappings = await uow.repositories.stage_tags.list_active(kind)
        return [mapping.external_tag for mapping in mappings]

    def _matches_expected(self, stage: str, tag: str) -> bool:
        expected = self._expected[stage]
        if normalize_tag_name(tag) == normalize_tag_name(expected):
            return True
        log.error(
            "Configured tag for critical stage %s is %r but %r was expected; "
            "keeping the configured value",
            stage,
            tag,
            expected,
        )
        return False


def default_stage_tags() -> list[StageTagMapping]:
    """Stage mapping shipped with the CRM, used by the ``seed-tags`` command."""

    return [
        StageTagMapping("CLIENTE_NUEVO", "lead-nuevo", description="Cliente nuevo"),
        StageTagMapping(
            "CONSULTANDO_CREDITO", "lead-consultando", description="Consultando crédito"
        ),
        StageTagMapping(
            "SOLICITANDO_DOCS", "solicitando-documentos", description="Solicitando documentación"
        ),
        StageTagMapping(
            "LISTO_ANALISIS", "solicitud-en-proceso", description="Documentación completa"
        ),
        StageTagMapping(
            "PREAPROBADO",
            "credito-preaprobado",
            force_retrigger=True,
            description="Crédito preaprobado",
        ),
        StageTagMapping("APROBADO", "credito-aprobado", description="Crédito aprobado"),
        StageTagMapping("EN_SEGUIMIENTO", "en-seguimiento", description="Seguimiento"),
        StageTagMapping("CERRADO_GANADO", "venta-cerrada", description="Venta cerrada"),
        StageTagMapping("ENCUESTA", "encuesta-pendiente", description="Encuesta pendiente"),
        StageTagMapping("RECHAZADO", "credito-rechazado", description="Crédito rechazado"),
        StageTagMapping(
            "SOLICITAR_REFERIDO", "solicitar-referido", description="Solicitar referidos"
        ),
        StageTagMapping(
            None, "atencion-humana", TagKind.BUSINESS, description="Requiere atención humana"
        ),
        StageTagMapping(
            None, "venta-concretada", TagKind.BUSINESS, description="Venta concretada"
        ),
    ]
