"""SyncRun repository for data access."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from app.core.sorting import apply_order_by
from app.models.sync_run import SyncRun, SyncRunStatus


class SyncRunRepository:
    """Read access to the sync run ledger.

    Writes go through ``SyncRunLedger`` so that counters and finalization
    stay conditional.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_all(
        self,
        integration_id: UUID,
        skip: int = 0,
        limit: int = 100,
        status: str | None = None,
        order_by: str | None = None,
    ) -> list[SyncRun]:
        query = self.db.query(SyncRun).filter(SyncRun.integration_id == integration_id)
        if status:
            query = query.filter(SyncRun.status == status)
        query = apply_order_by(query, SyncRun, order_by, default_field="started_at")
        return query.offset(skip).limit(limit).all()

    def count(self, integration_id: UUID, status: str | None = None) -> int:
        query = self.db.query(SyncRun).filter(SyncRun.integration_id == integration_id)
        if status:
            query = query.filter(SyncRun.status == status)
        return query.count()

    def get_by_id(self, run_id: UUID, integration_id: UUID | None = None) -> SyncRun | None:
        query = self.db.query(SyncRun).filter(SyncRun.id == run_id)
        if integration_id is not None:
            query = query.filter(SyncRun.integration_id == integration_id)
        return query.first()

    def get_running(self, integration_id: UUID) -> SyncRun | None:
        return (
            self.db.query(SyncRun)
            .filter(
                SyncRun.integration_id == integration_id,
                SyncRun.status == SyncRunStatus.RUNNING.value,
            )
            .first()
        )
