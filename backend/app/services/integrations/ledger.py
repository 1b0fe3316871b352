"""Durable record of sync runs.

Every write here commits immediately so progress survives a crash of the
process running the sync, and every status change is conditional on the run
still being ``running``.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from app.core.config import settings
from app.models.shared import utc_now
from app.models.sync_run import SyncRun, SyncRunStatus
from app.repositories.sync_run_repository import SyncRunRepository
from app.services.integrations.errors import RunAlreadyInProgress

logger = logging.getLogger(__name__)

STALE_RUN_MESSAGE = "run did not complete"


class SyncRunLedger:
    def __init__(
        self,
        db: Session,
        stale_after_minutes: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        if stale_after_minutes is None:
            stale_after_minutes = settings.SYNC_STALE_RUN_MINUTES
        self.stale_after = timedelta(minutes=stale_after_minutes)
        self.clock = clock
        self.repo = SyncRunRepository(db)

    def _running(self, run_id: UUID) -> Query:
        return self.db.query(SyncRun).filter(
            SyncRun.id == run_id,
            SyncRun.status == SyncRunStatus.RUNNING.value,
        )

    def start(
        self,
        integration_id: UUID,
        sync_type: str,
        direction: str,
        linked_resource_id: UUID | None = None,
    ) -> SyncRun:
        """Open a run, or raise ``RunAlreadyInProgress``.

        The partial unique index on running rows settles races between two
        starts that both passed the existence check.
        """
        self.reap_stale(integration_id)
        if self.repo.get_running(integration_id) is not None:
            raise RunAlreadyInProgress(
                f"A sync is already running for integration {integration_id}"
            )

        now = self.clock()
        run = SyncRun(
            integration_id=integration_id,
            linked_resource_id=linked_resource_id,
            sync_type=str(sync_type),
            direction=str(direction),
            status=SyncRunStatus.RUNNING.value,
            records_created=0,
            records_updated=0,
            records_skipped=0,
            errors=[],
            cancel_requested=False,
            started_at=now,
            last_heartbeat_at=now,
        )
        self.db.add(run)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise RunAlreadyInProgress(
                f"A sync is already running for integration {integration_id}"
            ) from exc
        self.db.refresh(run)
        logger.info(
            "Started %s sync run %s for integration %s (%s)",
            run.sync_type,
            run.id,
            integration_id,
            run.direction,
        )
        return run

    def record_batch(
        self,
        run_id: UUID,
        created: int = 0,
        updated: int = 0,
        skipped: int = 0,
        errors: list[dict[str, Any]] | None = None,
    ) -> bool:
        """Add a batch's counts to the run and refresh its heartbeat.

        Returns False when the run is no longer running, for example after
        the reaper failed it; nothing is recorded then.
        """
        rows = self._running(run_id).update(
            {
                SyncRun.records_created: SyncRun.records_created + created,
                SyncRun.records_updated: SyncRun.records_updated + updated,
                SyncRun.records_skipped: SyncRun.records_skipped + skipped,
                SyncRun.last_heartbeat_at: self.clock(),
            },
            synchronize_session=False,
        )
        if rows and errors:
            run = self._running(run_id).populate_existing().first()
            if run is not None:
                run.errors = [*(run.errors or []), *errors]
        self.db.commit()
        if not rows:
            logger.warning("Sync run %s is no longer running, batch not recorded", run_id)
        return bool(rows)

    def checkpoint(self, run_id: UUID, page_token: str | None) -> None:
        self._running(run_id).update(
            {
                SyncRun.checkpoint: page_token[:2048] if page_token else None,
                SyncRun.last_heartbeat_at: self.clock(),
            },
            synchronize_session=False,
        )
        self.db.commit()

    def finish(
        self,
        run_id: UUID,
        status: SyncRunStatus,
        error: dict[str, Any] | None = None,
    ) -> bool:
        """Move a running run to a terminal status.

        Returns False when the run was already terminal, in which case
        nothing changes.
        """
        run = self._running(run_id).populate_existing().first()
        if run is None:
            logger.info("Sync run %s already finalized", run_id)
            return False
        now = self.clock()
        values: dict[Any, Any] = {
            SyncRun.status: SyncRunStatus(status).value,
            SyncRun.completed_at: now,
            SyncRun.last_heartbeat_at: now,
        }
        if error:
            values[SyncRun.errors] = [*(run.errors or []), error]
        updated = self._running(run_id).update(values, synchronize_session=False)
        self.db.commit()
        if updated:
            logger.info("Sync run %s finished: %s", run_id, SyncRunStatus(status).value)
        return bool(updated)

    def request_cancel(self, run_id: UUID) -> bool:
        updated = self._running(run_id).update(
            {SyncRun.cancel_requested: True}, synchronize_session=False
        )
        self.db.commit()
        return bool(updated)

    def is_running(self, run_id: UUID) -> bool:
        return self._running(run_id).count() > 0

    def is_cancel_requested(self, run_id: UUID) -> bool:
        value = (
            self.db.query(SyncRun.cancel_requested).filter(SyncRun.id == run_id).scalar()
        )
        return bool(value)

    def reap_stale(self, integration_id: UUID | None = None) -> int:
        """Fail running runs whose heartbeat is older than the stale window."""
        cutoff = self.clock() - self.stale_after
        query = self.db.query(SyncRun.id).filter(
            SyncRun.status == SyncRunStatus.RUNNING.value,
            SyncRun.last_heartbeat_at < cutoff,
        )
        if integration_id is not None:
            query = query.filter(SyncRun.integration_id == integration_id)
        reaped = 0
        for (run_id,) in query.all():
            if self.finish(
                run_id,
                SyncRunStatus.FAILED,
                error={"code": "stale_run", "message": STALE_RUN_MESSAGE},
            ):
                logger.warning("Reaped stale sync run %s", run_id)
                reaped += 1
        return reaped
