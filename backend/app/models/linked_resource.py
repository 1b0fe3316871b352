"""LinkedResource model: a spreadsheet tab, calendar or channel chosen for sync."""

from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    func,
)

from app.core.database import Base
from app.models.integration import SyncDirection
from app.models.shared import UUIDType, generate_uuid


class LinkedResourceType(str, Enum):
    SPREADSHEET_TAB = "spreadsheet_tab"
    CALENDAR = "calendar"
    CHANNEL = "channel"


class LinkedResource(Base):
    __tablename__ = "linked_resources"
    __table_args__ = (
        UniqueConstraint(
            "integration_id",
            "external_resource_id",
            name="uq_linked_resources_integration_resource",
        ),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    integration_id = Column(
        UUIDType,
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resource_type = Column(String(30), nullable=False)
    external_resource_id = Column(String(255), nullable=False)
    external_resource_name = Column(String(255), nullable=True)
    # external field name -> internal field name
    field_mapping = Column(JSON, nullable=False, default=dict)
    sync_direction = Column(String(20), nullable=False, default=SyncDirection.INBOUND.value)
    is_active = Column(Boolean, nullable=False, default=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
