"""Reconciliation engine: moves records between a provider and local storage.

One call to ``ReconciliationEngine.sync`` is one sync run. Inbound records are
matched through ``RecordMapping`` first and business keys second; outbound
local records are pushed through the same mappings. Record-level problems are
collected on the run, while anything that makes further progress impossible
finalizes the run as failed. Either way the caller gets a ``SyncSummary``.
"""

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.integration import Integration, IntegrationProvider, SyncDirection
from app.models.linked_resource import LinkedResource
from app.models.record_mapping import RecordMapping
from app.models.shared import as_utc, parse_timestamp, utc_now
from app.models.sync_run import SyncRun, SyncRunStatus, SyncType
from app.repositories.integration_repository import IntegrationRepository
from app.repositories.linked_resource_repository import LinkedResourceRepository
from app.repositories.record_mapping_repository import RecordMappingRepository
from app.repositories.sync_run_repository import SyncRunRepository
from app.services.integrations.base import (
    Capability,
    NormalizedRecord,
    ProviderAdapter,
    get_provider_adapter,
)
from app.services.integrations.errors import (
    AmbiguousMatch,
    IntegrationNotFound,
    MalformedRecord,
    NotConnected,
    ProviderError,
    ReauthRequired,
    RecordWriteFailed,
    SyncCancelled,
    SyncError,
    TransientNetworkError,
)
from app.services.integrations.ledger import SyncRunLedger
from app.services.integrations.local_records import LocalRecordStore, get_local_store
from app.services.integrations.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"

DEFAULT_CURSOR_KEY = "default"


@dataclass
class BatchOutcome:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def count(self, result: str) -> None:
        setattr(self, result, getattr(self, result) + 1)

    def skip(self, error: SyncError) -> None:
        self.skipped += 1
        self.errors.append(error.to_dict())

    def merge(self, other: "BatchOutcome") -> None:
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.errors.extend(other.errors)


@dataclass
class SyncSummary:
    """What a caller learns about a finished run."""

    run_id: UUID | None
    status: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    reauth_required: bool = False

    @property
    def success(self) -> bool:
        return self.status in (
            SyncRunStatus.COMPLETED.value,
            SyncRunStatus.COMPLETED_WITH_ERRORS.value,
        )

    @classmethod
    def from_run(cls, run: SyncRun, reauth_required: bool = False) -> "SyncSummary":
        return cls(
            run_id=run.id,
            status=run.status,
            created=run.records_created,
            updated=run.records_updated,
            skipped=run.records_skipped,
            errors=list(run.errors or []),
            reauth_required=reauth_required,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "run_id": self.run_id,
            "status": self.status,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "reauth_required": self.reauth_required,
        }


@dataclass
class _RunContext:
    run_id: UUID
    integration: Integration
    adapter: ProviderAdapter
    store: LocalRecordStore
    sync_type: SyncType
    watermark: datetime | None = None
    cursors: dict[str, str] = field(default_factory=dict)
    resources: list[LinkedResource] = field(default_factory=list)


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _cursor_key(resource: LinkedResource | None) -> str:
    return str(resource.id) if resource is not None else DEFAULT_CURSOR_KEY


def _not_newer(remote: datetime | None, known: datetime | None) -> bool:
    if remote is None or known is None:
        return False
    return as_utc(remote) <= as_utc(known)


class ReconciliationEngine:
    def __init__(
        self,
        db: Session,
        adapter_factory: Callable[..., ProviderAdapter] = get_provider_adapter,
        token_manager: TokenLifecycleManager | None = None,
        ledger: SyncRunLedger | None = None,
        batch_size: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.adapter_factory = adapter_factory
        self.tokens = token_manager or TokenLifecycleManager(db, adapter_factory=adapter_factory)
        self.ledger = ledger or SyncRunLedger(db, clock=clock)
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.clock = clock
        self.mappings = RecordMappingRepository(db)

    # ── entry points ────────────────────────────────────────────────────

    def sync(
        self,
        integration_id: UUID,
        organization_id: UUID | None = None,
        sync_type: SyncType | str = SyncType.FULL,
        external_ids: list[str] | None = None,
        linked_resource_id: UUID | None = None,
    ) -> SyncSummary:
        """Run one sync for an integration.

        ``selective`` runs fetch the given external ids when the provider can
        read records; for push-only providers the ids name local records to
        push instead.

        Raises ``IntegrationNotFound``, ``NotConnected`` or
        ``RunAlreadyInProgress`` before a run starts. Once a run exists, every
        failure is reported through the returned summary.
        """
        sync_type = SyncType(sync_type)
        integration = self._load_integration(integration_id, organization_id)
        adapter = self.adapter_factory(integration.provider, integration=integration)
        targets = self._targets(integration, adapter, linked_resource_id)

        run = self.ledger.start(
            integration.id,
            sync_type.value,
            self._run_direction(adapter, targets),
            linked_resource_id=linked_resource_id,
        )
        ctx = _RunContext(
            run_id=run.id,
            integration=integration,
            adapter=adapter,
            store=get_local_store(adapter.record_type.value, self.db, integration.organization_id),
            sync_type=sync_type,
            resources=[resource for resource, _ in targets if resource is not None],
        )
        if sync_type is SyncType.SCHEDULED:
            ctx.watermark = parse_timestamp((integration.settings or {}).get("sync_watermark"))

        try:
            for resource, direction in targets:
                self._sync_target(ctx, resource, direction, external_ids)
        except SyncCancelled as exc:
            return self._fail(ctx, exc)
        except ReauthRequired as exc:
            return self._fail(ctx, exc, reauth_required=True)
        except SyncError as exc:
            return self._fail(ctx, exc)
        except Exception as exc:
            logger.exception("Sync run %s crashed", ctx.run_id)
            return self._fail(ctx, SyncError(f"Unexpected error: {exc}"))
        return self._complete(ctx)

    def cancel(self, run_id: UUID) -> bool:
        """Ask a running run to stop at its next batch boundary."""
        return self.ledger.request_cancel(run_id)

    def preview_remote_records(
        self,
        integration_id: UUID,
        organization_id: UUID | None = None,
        page_token: str | None = None,
        linked_resource_id: UUID | None = None,
    ) -> tuple[list[NormalizedRecord], str | None, list[dict[str, Any]]]:
        """One page of normalized remote records, for picking a selective sync.

        Returns the records, the next page token and errors for records that
        could not be normalized.
        """
        integration = self._load_integration(integration_id, organization_id)
        adapter = self.adapter_factory(integration.provider, integration=integration)
        adapter.require(Capability.LIST)
        resource = None
        if linked_resource_id is not None:
            resource = self._load_resource(integration, linked_resource_id)
        page = self.tokens.with_valid_token(
            integration,
            partial(adapter.list_remote_records, page_token=page_token, resource=resource),
        )
        field_mapping = self._field_mapping(integration, resource)
        records = []
        errors = []
        for raw in page.records:
            try:
                records.append(adapter.map_remote_to_local(raw, field_mapping))
            except MalformedRecord as exc:
                errors.append(exc.to_dict())
        return records, page.next_page_token, errors

    # ── setup ───────────────────────────────────────────────────────────

    def _load_integration(
        self, integration_id: UUID, organization_id: UUID | None
    ) -> Integration:
        integration = IntegrationRepository(self.db).get_by_id(integration_id, organization_id)
        if integration is None:
            raise IntegrationNotFound(f"Integration {integration_id} not found")
        if not integration.is_active:
            raise NotConnected(f"Integration {integration_id} is not connected")
        return integration

    def _load_resource(self, integration: Integration, resource_id: UUID) -> LinkedResource:
        resource = LinkedResourceRepository(self.db).get_by_id(resource_id, integration.id)
        if resource is None:
            raise IntegrationNotFound(f"Linked resource {resource_id} not found")
        return resource

    def _targets(
        self,
        integration: Integration,
        adapter: ProviderAdapter,
        linked_resource_id: UUID | None,
    ) -> list[tuple[LinkedResource | None, SyncDirection]]:
        """Each linked resource syncs in its own direction; without any, the integration's."""
        if linked_resource_id is not None:
            resource = self._load_resource(integration, linked_resource_id)
            return [(resource, SyncDirection(resource.sync_direction))]
        resources = LinkedResourceRepository(self.db).get_all(
            integration.id, limit=1000, is_active=True
        )
        if resources:
            return [(r, SyncDirection(r.sync_direction)) for r in resources]
        if integration.provider == IntegrationProvider.GOOGLE_SHEETS.value:
            logger.info("Integration %s has no linked sheet tabs", integration.id)
            return []
        direction = (integration.settings or {}).get("sync_direction") or adapter.default_direction
        return [(None, SyncDirection(direction))]

    @staticmethod
    def _run_direction(
        adapter: ProviderAdapter,
        targets: list[tuple[LinkedResource | None, SyncDirection]],
    ) -> str:
        directions = {direction for _, direction in targets}
        if not directions:
            return SyncDirection(adapter.default_direction).value
        if len(directions) == 1:
            return directions.pop().value
        return SyncDirection.BIDIRECTIONAL.value

    @staticmethod
    def _field_mapping(
        integration: Integration, resource: LinkedResource | None
    ) -> dict[str, str] | None:
        if resource is not None:
            return resource.field_mapping or None
        return (integration.settings or {}).get("field_mapping") or None

    def _sync_target(
        self,
        ctx: _RunContext,
        resource: LinkedResource | None,
        direction: SyncDirection,
        external_ids: list[str] | None,
    ) -> None:
        inbound = direction in (SyncDirection.INBOUND, SyncDirection.BIDIRECTIONAL)
        outbound = direction in (SyncDirection.OUTBOUND, SyncDirection.BIDIRECTIONAL)

        if ctx.sync_type is SyncType.SELECTIVE:
            ids = list(external_ids or [])
            if inbound:
                self._inbound_selective(ctx, resource, direction, ids)
            else:
                self._outbound(ctx, resource, local_ids=self._local_ids(ctx, ids))
            return

        if inbound:
            self._inbound(ctx, resource, direction)
        if outbound:
            self._outbound(ctx, resource)

    def _check_cancelled(self, ctx: _RunContext) -> None:
        if self.ledger.is_cancel_requested(ctx.run_id):
            logger.info("Sync run %s cancelled", ctx.run_id)
            raise SyncCancelled("cancelled")
        if not self.ledger.is_running(ctx.run_id):
            logger.warning("Sync run %s was finalized elsewhere, stopping", ctx.run_id)
            raise SyncCancelled("run no longer running")

    def _record(self, ctx: _RunContext, outcome: BatchOutcome) -> None:
        recorded = self.ledger.record_batch(
            ctx.run_id,
            created=outcome.created,
            updated=outcome.updated,
            skipped=outcome.skipped,
            errors=outcome.errors,
        )
        if not recorded:
            raise SyncCancelled("run no longer running")

    def _synced_at(self, ctx: _RunContext, local: Any) -> datetime:
        """Sync time no earlier than the local write it records."""
        now = as_utc(self.clock())
        written = ctx.store.updated_at(local)
        return max(now, written) if written is not None else now

    # ── inbound ─────────────────────────────────────────────────────────

    def _inbound(
        self,
        ctx: _RunContext,
        resource: LinkedResource | None,
        direction: SyncDirection,
    ) -> None:
        ctx.adapter.require(Capability.LIST)
        cursor = None
        if ctx.sync_type is SyncType.SCHEDULED:
            cursors = (ctx.integration.settings or {}).get("sync_cursors") or {}
            cursor = cursors.get(_cursor_key(resource))

        page_token: str | None = None
        while True:
            self._check_cancelled(ctx)
            page = self.tokens.with_valid_token(
                ctx.integration,
                partial(
                    ctx.adapter.list_remote_records,
                    page_token=page_token,
                    resource=resource,
                    since=ctx.watermark,
                    cursor=cursor,
                ),
            )
            for chunk in _chunks(page.records, self.batch_size):
                self._check_cancelled(ctx)
                self._apply_inbound_batch(ctx, chunk, resource, direction)

            if not page.next_page_token:
                if page.sync_cursor:
                    ctx.cursors[_cursor_key(resource)] = page.sync_cursor
                return
            page_token = page.next_page_token
            self.ledger.checkpoint(ctx.run_id, page_token)

    def _inbound_selective(
        self,
        ctx: _RunContext,
        resource: LinkedResource | None,
        direction: SyncDirection,
        external_ids: list[str],
    ) -> None:
        ctx.adapter.require(Capability.FETCH_BATCH)
        for chunk in _chunks(external_ids, self.batch_size):
            self._check_cancelled(ctx)
            try:
                raws = self.tokens.with_valid_token(
                    ctx.integration,
                    partial(
                        ctx.adapter.fetch_remote_record_batch,
                        external_ids=list(chunk),
                        resource=resource,
                    ),
                )
            except (TransientNetworkError, ProviderError) as exc:
                logger.warning(
                    "Fetching %d records failed for run %s: %s", len(chunk), ctx.run_id, exc
                )
                failed = BatchOutcome()
                for external_id in chunk:
                    failed.skip(type(exc)(exc.message, external_id=external_id))
                self._record(ctx, failed)
                continue

            missing = len(chunk) - len(raws)
            if missing > 0:
                logger.info("%d requested records no longer exist remotely", missing)
            self._apply_inbound_batch(ctx, raws, resource, direction, missing=max(missing, 0))

    def _apply_inbound_batch(
        self,
        ctx: _RunContext,
        raws: Sequence[dict[str, Any]],
        resource: LinkedResource | None,
        direction: SyncDirection,
        missing: int = 0,
    ) -> None:
        """Reconcile one batch in one transaction.

        If the transaction fails the batch is replayed record by record, so a
        single bad write costs one error instead of the whole batch.
        """
        outcome = BatchOutcome(skipped=missing)
        field_mapping = self._field_mapping(ctx.integration, resource)
        records: list[NormalizedRecord] = []
        for raw in raws:
            try:
                records.append(ctx.adapter.map_remote_to_local(raw, field_mapping))
            except MalformedRecord as exc:
                logger.warning("Skipping malformed %s record: %s", ctx.integration.provider, exc)
                outcome.skip(exc)

        batch = BatchOutcome()
        try:
            for record in records:
                try:
                    batch.count(self._reconcile(ctx, record, resource, direction))
                except AmbiguousMatch as exc:
                    logger.warning("Skipping %s: %s", record.external_id, exc)
                    batch.skip(exc)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning(
                "Batch of %d records failed for run %s, replaying one by one",
                len(records),
                ctx.run_id,
            )
            batch = self._replay(ctx, records, resource, direction)

        outcome.merge(batch)
        self._record(ctx, outcome)

    def _replay(
        self,
        ctx: _RunContext,
        records: list[NormalizedRecord],
        resource: LinkedResource | None,
        direction: SyncDirection,
    ) -> BatchOutcome:
        outcome = BatchOutcome()
        for record in records:
            try:
                result = self._reconcile(ctx, record, resource, direction)
                self.db.commit()
            except AmbiguousMatch as exc:
                self.db.rollback()
                outcome.skip(exc)
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("Failed to write record %s: %s", record.external_id, exc)
                outcome.skip(
                    RecordWriteFailed(
                        f"Failed to write record: {exc.__class__.__name__}",
                        external_id=record.external_id,
                    )
                )
            else:
                outcome.count(result)
        return outcome

    def _reconcile(
        self,
        ctx: _RunContext,
        record: NormalizedRecord,
        resource: LinkedResource | None,
        direction: SyncDirection,
    ) -> str:
        """Apply one remote record locally and return what happened to it."""
        integration = ctx.integration
        store = ctx.store
        mapping = self.mappings.get_by_external_id(integration.id, record.external_id)

        if mapping is not None:
            local = store.get(mapping.local_id)
            if local is None:
                logger.warning(
                    "Skipping %s: stale mapping to missing local record %s",
                    record.external_id,
                    mapping.local_id,
                )
                return SKIPPED
            if record.deleted:
                if not store.mark_deleted(local):
                    return SKIPPED
                self.mappings.touch(mapping, self._synced_at(ctx, local), record.updated_at)
                return UPDATED
            if _not_newer(record.updated_at, mapping.external_updated_at):
                return SKIPPED
            if direction is SyncDirection.BIDIRECTIONAL and self._local_wins(
                ctx, local, mapping, record
            ):
                logger.debug("Local copy of %s is newer, leaving it for outbound", record.external_id)
                return SKIPPED
            if store.is_unchanged(local, record.fields):
                self.mappings.touch(mapping, self._synced_at(ctx, local), record.updated_at)
                return SKIPPED
            store.update(local, record.fields)
            self.mappings.touch(mapping, self._synced_at(ctx, local), record.updated_at)
            return UPDATED

        if record.deleted:
            return SKIPPED

        candidates = store.find_by_business_key(record.fields)
        if len(candidates) > 1:
            raise AmbiguousMatch(
                f"{len(candidates)} local records match remote record {record.external_id}",
                external_id=record.external_id,
            )
        if candidates:
            local = candidates[0]
            linked = self.mappings.get_by_local_id(integration.id, local.id)
            if linked is not None:
                raise AmbiguousMatch(
                    f"Local record is already linked to remote record {linked.external_id}",
                    external_id=record.external_id,
                    local_id=local.id,
                )
            store.update(local, record.fields)
            result = UPDATED
        else:
            local = store.create(record.fields, source=integration.provider)
            result = CREATED

        self.mappings.add(
            integration.id,
            store.record_type.value,
            record.external_id,
            local.id,
            synced_at=self._synced_at(ctx, local),
            external_updated_at=record.updated_at,
            linked_resource_id=resource.id if resource is not None else None,
        )
        return result

    def _local_wins(
        self,
        ctx: _RunContext,
        local: Any,
        mapping: RecordMapping,
        record: NormalizedRecord,
    ) -> bool:
        """Last write wins; a tie or an unknown remote time goes to the remote side."""
        local_changed = ctx.store.updated_at(local)
        synced = as_utc(mapping.last_synced_at)
        remote_changed = as_utc(record.updated_at)
        if local_changed is None or synced is None or local_changed <= synced:
            return False
        if remote_changed is None:
            return False
        return local_changed > remote_changed

    # ── outbound ────────────────────────────────────────────────────────

    def _local_ids(self, ctx: _RunContext, ids: list[str]) -> list[UUID]:
        parsed = []
        invalid = BatchOutcome()
        for value in ids:
            try:
                parsed.append(UUID(str(value)))
            except ValueError:
                invalid.skip(MalformedRecord(f"Not a local record id: {value}", local_id=value))
        if invalid.errors:
            self._record(ctx, invalid)
        return parsed

    def _outbound(
        self,
        ctx: _RunContext,
        resource: LinkedResource | None,
        local_ids: list[UUID] | None = None,
    ) -> None:
        ctx.adapter.require(Capability.PUSH)
        mappings = self.mappings.mapped_local_ids(ctx.integration.id, ctx.store.record_type.value)
        resource_id = resource.id if resource is not None else None

        pending = []
        for local in ctx.store.pending_outbound(since=ctx.watermark, ids=local_ids):
            mapping = mappings.get(local.id)
            if mapping is None:
                pending.append((local, None))
                continue
            if resource_id is not None and mapping.linked_resource_id not in (None, resource_id):
                continue
            changed = ctx.store.updated_at(local)
            synced = as_utc(mapping.last_synced_at)
            if local_ids is not None or synced is None or (changed is not None and changed > synced):
                pending.append((local, mapping))

        for chunk in _chunks(pending, self.batch_size):
            self._check_cancelled(ctx)
            outcome = BatchOutcome()
            for local, mapping in chunk:
                result = self._push(ctx, local, mapping, resource)
                if isinstance(result, SyncError):
                    outcome.skip(result)
                else:
                    outcome.count(result)
            self._record(ctx, outcome)

    def _push(
        self,
        ctx: _RunContext,
        local: Any,
        mapping: RecordMapping | None,
        resource: LinkedResource | None,
    ) -> str | SyncError:
        """Push one local record, committing its mapping on success."""
        adapter = ctx.adapter
        fields = ctx.store.to_fields(local)
        local_id = local.id
        try:
            if mapping is not None:
                self.tokens.with_valid_token(
                    ctx.integration,
                    partial(
                        adapter.push_record,
                        fields=fields,
                        external_id=mapping.external_id,
                        resource=resource,
                    ),
                )
                self.mappings.touch(mapping, self._synced_at(ctx, local))
                result = UPDATED
            else:
                external_id = None
                if adapter.supports(Capability.FIND_REMOTE):
                    external_id = self.tokens.with_valid_token(
                        ctx.integration,
                        partial(adapter.find_remote_record, fields=fields, resource=resource),
                    )
                if external_id:
                    owner = self.mappings.get_by_external_id(ctx.integration.id, external_id)
                    if owner is not None:
                        raise AmbiguousMatch(
                            f"Remote record {external_id} is already linked to another local record",
                            external_id=external_id,
                            local_id=local_id,
                        )
                    self.tokens.with_valid_token(
                        ctx.integration,
                        partial(
                            adapter.push_record,
                            fields=fields,
                            external_id=external_id,
                            resource=resource,
                        ),
                    )
                    result = UPDATED
                else:
                    external_id = self._create_remote(ctx, fields, resource, local_id)
                    result = CREATED
                self.mappings.add(
                    ctx.integration.id,
                    ctx.store.record_type.value,
                    external_id,
                    local_id,
                    synced_at=self._synced_at(ctx, local),
                    linked_resource_id=resource.id if resource is not None else None,
                )
            self.db.commit()
            return result
        except ReauthRequired:
            raise
        except SyncError as exc:
            self.db.rollback()
            logger.warning("Failed to push local record %s: %s", local_id, exc)
            if exc.context.get("local_id") is None:
                exc.context["local_id"] = local_id
            return exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to record push of local record %s: %s", local_id, exc)
            return RecordWriteFailed(
                f"Failed to write mapping: {exc.__class__.__name__}", local_id=local_id
            )

    def _create_remote(
        self,
        ctx: _RunContext,
        fields: dict[str, Any],
        resource: LinkedResource | None,
        local_id: UUID,
    ) -> str:
        """Create a remote record without risking a duplicate.

        A create that fails with an unknown outcome is retried under the same
        idempotency key when the provider honors one; otherwise the provider
        is searched before trying again.
        """
        adapter = ctx.adapter
        create = partial(
            adapter.push_record, fields=fields, resource=resource, idempotency_key=local_id.hex
        )
        try:
            return self.tokens.with_valid_token(ctx.integration, create)
        except TransientNetworkError as exc:
            if adapter.supports(Capability.IDEMPOTENT_PUSH):
                logger.warning("Create of %s had unknown outcome (%s), retrying", local_id, exc)
                return self.tokens.with_valid_token(ctx.integration, create)
            if not adapter.supports(Capability.FIND_REMOTE):
                raise
            found = self.tokens.with_valid_token(
                ctx.integration,
                partial(adapter.find_remote_record, fields=fields, resource=resource),
            )
            if found:
                logger.info("Create of %s had landed remotely as %s", local_id, found)
                return found
            return self.tokens.with_valid_token(ctx.integration, create)

    # ── finalization ────────────────────────────────────────────────────

    def _summary(self, run_id: UUID, reauth_required: bool = False) -> SyncSummary:
        run = SyncRunRepository(self.db).get_by_id(run_id)
        return SyncSummary.from_run(run, reauth_required=reauth_required)

    def _complete(self, ctx: _RunContext) -> SyncSummary:
        run = SyncRunRepository(self.db).get_by_id(ctx.run_id)
        clean = not run.errors
        status = SyncRunStatus.COMPLETED if clean else SyncRunStatus.COMPLETED_WITH_ERRORS
        started_at = run.started_at
        if not self.ledger.finish(ctx.run_id, status):
            logger.warning("Sync run %s was finalized elsewhere, progress not saved", ctx.run_id)
            return self._summary(ctx.run_id)

        integration = ctx.integration
        integration.last_synced_at = started_at
        for resource in ctx.resources:
            resource.last_synced_at = started_at
        if clean and ctx.sync_type is not SyncType.SELECTIVE:
            current = dict(integration.settings or {})
            if ctx.cursors:
                current["sync_cursors"] = {**(current.get("sync_cursors") or {}), **ctx.cursors}
            current["sync_watermark"] = as_utc(started_at).isoformat()
            integration.settings = current
        if clean:
            integration.error_details = None
        self.db.commit()
        return self._summary(ctx.run_id)

    def _fail(
        self,
        ctx: _RunContext,
        exc: SyncError,
        reauth_required: bool = False,
    ) -> SyncSummary:
        self.db.rollback()
        logger.warning("Sync run %s failed: %s", ctx.run_id, exc)
        if not reauth_required and not isinstance(exc, SyncCancelled):
            ctx.integration.error_details = {
                "reason": exc.message,
                "code": exc.code,
                "run_id": str(ctx.run_id),
            }
            self.db.commit()
        self.ledger.finish(ctx.run_id, SyncRunStatus.FAILED, error=exc.to_dict())
        return self._summary(ctx.run_id, reauth_required=reauth_required)
