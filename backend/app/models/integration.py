"""Integration model for external provider connections."""

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
from app.models.shared import DEFAULT_ORGANIZATION_ID, UUIDType, generate_uuid


class IntegrationProvider(str, Enum):
    """Supported external providers."""

    GOOGLE_CALENDAR = "google_calendar"
    MICROSOFT_OUTLOOK = "microsoft_outlook"
    GOOGLE_SHEETS = "google_sheets"
    HUBSPOT = "hubspot"
    PIPEDRIVE = "pipedrive"
    SALESFORCE = "salesforce"
    SLACK = "slack"


class SyncDirection(str, Enum):
    """Which way records flow for an integration or linked resource."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    BIDIRECTIONAL = "bidirectional"


class Integration(Base):
    """A tenant's authorized connection to one external provider.

    Disconnecting flips ``is_active`` instead of deleting the row so that
    record mappings and run history survive a reconnect.
    """

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("organization_id", "provider", name="uq_integrations_org_provider"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    organization_id = Column(
        UUIDType,
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        default=DEFAULT_ORGANIZATION_ID,
    )
    provider = Column(String(50), nullable=False)
    owning_user_id = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    provider_account_id = Column(String(255), nullable=True)
    provider_account_email = Column(String(255), nullable=True)
    settings = Column(JSON, nullable=False, default=dict)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    error_details = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def credential_ref(self) -> str:
        """Key under which the credential store holds this integration's tokens."""
        return str(self.id)
