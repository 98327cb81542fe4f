"""Stage-change reconciliation against live platform tag state."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from leadsync.config.sync import (
    DEFAULT_BULK_DELAY_SECONDS,
    DEFAULT_ORIGIN_FIELD,
    DEFAULT_SETTLE_DELAY_SECONDS,
)
from leadsync.domain.channels import detect_channel
from leadsync.domain.errors import (
    AuthenticationError,
    ErrorKind,
    MappingConfigurationError,
    PlatformError,
    SyncFailure,
)
from leadsync.domain.model import Channel, SyncStatus
from leadsync.domain.timing import real_sleep

from .delta import compute_tag_delta

if TYPE_CHECKING:
    from collections.abc import Iterable

    from leadsync.domain.model import StageTagMapping, Subscriber
    from leadsync.domain.ports import MessagingPlatform
    from leadsync.domain.sync_ledger import SyncLedger
    from leadsync.domain.tag_directory import TagDirectory
    from leadsync.domain.timing import Sleep

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StageChange:
    """One pipeline-stage transition as reported by the CRM."""

    lead_id: str
    subscriber_id: str | None
    new_stage: str
    previous_stage: str | None = None


@dataclass(slots=True, frozen=True)
class SyncOutcome:
    previous_stage: str | None
    new_stage: str
    previous_tag: str | None
    new_tag: str
    tags_added: tuple[str, ...] = ()
    tags_removed: tuple[str, ...] = ()
    channel: Channel = Channel.UNKNOWN
    short_circuited: bool = False
    retriggered: bool = False

    def to_payload(self) -> dict[str, object]:
        """Ledger payload, keyed the way the CRM's sync-status view reads it."""

        return {
            "previousStage": self.previous_stage,
            "newStage": self.new_stage,
            "previousTag": self.previous_tag,
            "newTag": self.new_tag,
            "tagsAdded": list(self.tags_added),
            "tagsRemoved": list(self.tags_removed),
            "channel": str(self.channel),
            "shortCircuited": self.short_circuited,
            "retriggered": self.retriggered,
        }


@dataclass(slots=True)
class BulkSyncResult:
    success: int = 0
    failed: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class ReconciliationEngine:
    """Move a subscriber's platform tags onto the tag of a lead's new stage.

    Live tags are always fetched from the platform. The remove phase finishes
    (including the settle delay) before anything is added, because platform
    automations fire on tag edges.
    """

    platform: MessagingPlatform
    directory: TagDirectory
    ledger: SyncLedger
    settle_delay: float = DEFAULT_SETTLE_DELAY_SECONDS
    origin_field: str = DEFAULT_ORIGIN_FIELD
    short_circuit_unchanged: bool = True
    sleep: Sleep = real_sleep

    async def reconcile(
        self,
        lead_id: str,
        subscriber_id: str | None,
        previous_stage: str | None,
        new_stage: str,
    ) -> bool:
        """Reconcile one stage change and record the attempt in the ledger.

        Business failures come back as ``False``. Authentication errors and
        unexpected exceptions are recorded as retryable and re-raised.
        """

        payload: dict[str, object] = {"previousStage": previous_stage, "newStage": new_stage}
        if not subscriber_id:
            log.warning("Lead %s is not linked to ManyChat; skipping tag sync", lead_id)
            await self.ledger.record(
                lead_id,
                status=SyncStatus.FAILED,
                payload=payload,
                error="Lead has no ManyChat subscriber id",
                retryable=False,
            )
            return False

        try:
            mapping = await self._target_mapping(new_stage)
            previous_tag = await self._previous_tag(previous_stage)
        except SyncFailure as failure:
            log.error("Cannot sync lead %s: %s", lead_id, failure.reason)
            await self.ledger.record(
                lead_id,
                status=SyncStatus.FAILED,
                payload=payload,
                error=failure.reason,
                retryable=False,
            )
            return False
        if mapping is None:
            log.warning(
                "No active tag mapping for stage %s; lead %s not synced", new_stage, lead_id
            )
            return False

        record = await self.ledger.open(
            lead_id,
            payload={**payload, "previousTag": previous_tag, "newTag": mapping.external_tag},
        )
        try:
            outcome = await self._apply(
                lead_id, subscriber_id, previous_stage, new_stage, mapping, previous_tag
            )
        except SyncFailure as failure:
            log.warning(
                "Tag sync for lead %s failed (%s, retryable=%s): %s",
                lead_id,
                failure.kind,
                failure.retryable,
                failure.reason,
            )
            await self.ledger.mark_failed(record, failure.reason, retryable=failure.retryable)
            return False
        except Exception as exc:
            await self.ledger.mark_failed(record, str(exc) or type(exc).__name__)
            raise

        await self.ledger.mark_success(record, outcome.to_payload())
        log.info(
            "Synced lead %s: %s -> %s (added=%s, removed=%s)",
            lead_id,
            previous_stage,
            new_stage,
            list(outcome.tags_added),
            list(outcome.tags_removed),
        )
        return True

    async def apply(
        self,
        lead_id: str,
        subscriber_id: str,
        previous_stage: str | None,
        new_stage: str,
    ) -> SyncOutcome:
        """Run the tag changes without touching the ledger; raise ``SyncFailure``."""

        mapping = await self._target_mapping(new_stage)
        if mapping is None:
            raise SyncFailure(
                f"No active tag mapping for stage {new_stage!r}",
                kind=ErrorKind.CONFIGURATION,
                retryable=False,
            )
        previous_tag = await self._previous_tag(previous_stage)
        return await self._apply(
            lead_id, subscriber_id, previous_stage, new_stage, mapping, previous_tag
        )

    async def reconcile_many(
        self,
        changes: Iterable[StageChange],
        *,
        delay: float = DEFAULT_BULK_DELAY_SECONDS,
    ) -> BulkSyncResult:
        """Reconcile leads one after another, pausing ``delay`` seconds between them."""

        result = BulkSyncResult()
        for index, change in enumerate(changes):
            if index:
                await self.sleep(delay)
            try:
                synced = await self.reconcile(
                    change.lead_id,
                    change.subscriber_id,
                    change.previous_stage,
                    change.new_stage,
                )
            except AuthenticationError:
                raise
            except Exception as exc:
                log.exception("Bulk sync failed for lead %s", change.lead_id)
                result.failed += 1
                result.errors.append((change.lead_id, str(exc) or type(exc).__name__))
                continue
            if synced:
                result.success += 1
            else:
                result.failed += 1
                result.errors.append((change.lead_id, "not synced"))
        log.info("Bulk sync finished: success=%s, failed=%s", result.success, result.failed)
        return result

    async def _target_mapping(self, stage: str) -> StageTagMapping | None:
        try:
            return await self.directory.mapping_for(stage)
        except MappingConfigurationError as exc:
            raise SyncFailure(str(exc), kind=exc.kind, retryable=False) from exc

    async def _previous_tag(self, stage: str | None) -> str | None:
        if not stage:
            return None
        try:
            return await self.directory.resolve_tag(stage)
        except MappingConfigurationError as exc:
            raise SyncFailure(str(exc), kind=exc.kind, retryable=False) from exc

    async def _apply(
        self,
        lead_id: str,
        subscriber_id: str,
        previous_stage: str | None,
        new_stage: str,
        mapping: StageTagMapping,
        previous_tag: str | None,
    ) -> SyncOutcome:
        try:
            return await self._apply_tags(
                lead_id, subscriber_id, previous_stage, new_stage, mapping, previous_tag
            )
        except AuthenticationError:
            raise
        except PlatformError as exc:
            raise SyncFailure(str(exc), kind=exc.kind, retryable=exc.retryable) from exc
        except MappingConfigurationError as exc:
            raise SyncFailure(str(exc), kind=exc.kind, retryable=False) from exc

    async def _apply_tags(
        self,
        lead_id: str,
        subscriber_id: str,
        previous_stage: str | None,
        new_stage: str,
        mapping: StageTagMapping,
        previous_tag: str | None,
    ) -> SyncOutcome:
        new_tag = mapping.external_tag
        subscriber = await self.platform.get_subscriber(subscriber_id)
        if subscriber is None:
            raise SyncFailure(
                f"Subscriber {subscriber_id} not found on ManyChat",
                kind=ErrorKind.NOT_FOUND,
                retryable=False,
            )

        delta = compute_tag_delta(
            subscriber.tags,
            target_tag=new_tag,
            pipeline_tags=await self.directory.list_pipeline_tags(),
            business_tags=await self.directory.list_business_tags(),
        )
        log.debug(
            "Lead %s tag delta: remove=%s add=%s target_present=%s",
            lead_id,
            list(delta.tags_to_remove),
            list(delta.tags_to_add),
            delta.target_already_present,
        )

        if (
            self.short_circuit_unchanged
            and not delta.has_removals
            and delta.target_already_present
            and not mapping.force_retrigger
        ):
            log.info("Lead %s already carries %s; nothing to change", lead_id, new_tag)
            return SyncOutcome(
                previous_stage=previous_stage,
                new_stage=new_stage,
                previous_tag=previous_tag,
                new_tag=new_tag,
                channel=detect_channel(subscriber),
                short_circuited=True,
            )

        channel = await self._set_origin(subscriber)

        # A target that is already live is dropped first so the add below is a
        # real tag-added edge.
        removals = list(delta.tags_to_remove)
        if delta.target_already_present:
            removals.append(new_tag)

        removed: list[str] = []
        for tag in removals:
            if await self.platform.remove_tag(subscriber_id, tag):
                removed.append(tag)
            else:
                log.warning("Could not remove tag %s from subscriber %s", tag, subscriber_id)
        if removals and delta.tags_to_add:
            await self.sleep(self.settle_delay)

        for tag in delta.tags_to_add:
            if not await self.platform.add_tag(subscriber_id, tag):
                raise SyncFailure(
                    f"ManyChat did not add tag {tag!r} to subscriber {subscriber_id}",
                    kind=ErrorKind.REJECTED,
                    retryable=True,
                )

        retriggered = False
        if mapping.force_retrigger and delta.target_already_present:
            retriggered = await self._retrigger(subscriber_id, new_tag)

        return SyncOutcome(
            previous_stage=previous_stage,
            new_stage=new_stage,
            previous_tag=previous_tag,
            new_tag=new_tag,
            tags_added=delta.tags_to_add,
            tags_removed=tuple(removed),
            channel=channel,
            retriggered=retriggered,
        )

    async def _set_origin(self, subscriber: Subscriber) -> Channel:
        channel = detect_channel(subscriber)
        if channel is Channel.UNKNOWN:
            return channel
        try:
            updated = await self.platform.set_custom_field(
                subscriber.id, self.origin_field, str(channel)
            )
        except AuthenticationError:
            raise
        except PlatformError as exc:
            log.warning(
                "Could not set %s on subscriber %s: %s", self.origin_field, subscriber.id, exc
            )
            return channel
        if not updated:
            log.warning(
                "ManyChat refused %s=%s for subscriber %s",
                self.origin_field,
                channel,
                subscriber.id,
            )
        return channel

    async def _retrigger(self, subscriber_id: str, tag: str) -> bool:
        """Remove and re-add ``tag`` so the platform emits a fresh tag-added event."""

        try:
            await self.platform.remove_tag(subscriber_id, tag)
            await self.sleep(self.settle_delay)
            added = await self.platform.add_tag(subscriber_id, tag)
        except AuthenticationError:
            raise
        except PlatformError as exc:
            log.warning("Re-trigger of %s on subscriber %s failed: %s", tag, subscriber_id, exc)
            return False
        if not added:
            log.warning("Re-trigger of %s on subscriber %s was not applied", tag, subscriber_id)
        return added
