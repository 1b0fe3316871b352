"""SyncRun model recording one execution of the sync process."""

from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid


class SyncRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class SyncType(str, Enum):
    FULL = "full"
    SELECTIVE = "selective"
    SCHEDULED = "scheduled"


class SyncRun(Base):
    """Ledger row for a sync run.

    The partial unique index lets at most one ``running`` row exist per
    integration, so two racing starts cannot both succeed.
    """

    __tablename__ = "sync_runs"
    __table_args__ = (
        Index(
            "uq_sync_runs_one_running_per_integration",
            "integration_id",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    integration_id = Column(
        UUIDType,
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    linked_resource_id = Column(
        UUIDType,
        ForeignKey("linked_resources.id", ondelete="SET NULL"),
        nullable=True,
    )
    sync_type = Column(String(20), nullable=False)
    direction = Column(String(20), nullable=False)
    status = Column(String(30), nullable=False, default=SyncRunStatus.RUNNING.value)
    records_created = Column(Integer, nullable=False, default=0)
    records_updated = Column(Integer, nullable=False, default=0)
    records_skipped = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    checkpoint = Column(String(2048), nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    last_heartbeat_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
