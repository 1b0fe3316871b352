"""RecordMapping model joining external record IDs to local record IDs."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, func

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid


class RecordType(str, Enum):
    CONTACT = "contact"
    CALENDAR_EVENT = "calendar_event"


class RecordMapping(Base):
    """Durable link between one external record and one local record.

    There is at most one mapping per external ID and at most one per local ID
    within an integration. Rows are removed only when a linked resource is
    unlinked.
    """

    __tablename__ = "record_mappings"
    __table_args__ = (
        UniqueConstraint(
            "integration_id",
            "external_id",
            name="uq_record_mappings_integration_external",
        ),
        UniqueConstraint(
            "integration_id",
            "local_id",
            name="uq_record_mappings_integration_local",
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
        index=True,
    )
    record_type = Column(String(50), nullable=False)
    external_id = Column(String(255), nullable=False)
    local_id = Column(UUIDType, nullable=False)
    external_updated_at = Column(DateTime(timezone=True), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
