"""Contact model: the tenant's local address book."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text

from app.core.database import Base
from app.models.shared import DEFAULT_ORGANIZATION_ID, UUIDType, generate_uuid, utc_now


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    organization_id = Column(
        UUIDType,
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        default=DEFAULT_ORGANIZATION_ID,
    )
    contact_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True)
    # Business keys used for cross-provider matching
    email_normalized = Column(String(255), nullable=True, index=True)
    phone_normalized = Column(String(50), nullable=True, index=True)
    company_name = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    source = Column(String(50), nullable=False, default="manual")
    tags = Column(JSON, nullable=False, default=list)
    custom_fields = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
