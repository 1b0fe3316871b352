"""IntegrationCredential model holding OAuth tokens for an integration."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text, func

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid


class IntegrationCredential(Base):
    """OAuth tokens for exactly one integration.

    Only the credential store reads or writes this table.
    """

    __tablename__ = "integration_credentials"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    integration_id = Column(
        UUIDType,
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    scopes = Column(JSON, nullable=False, default=list)
    token_type = Column(String(30), nullable=False, default="Bearer")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
