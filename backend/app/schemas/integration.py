from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class IntegrationUpdate(BaseModel):
    settings: dict[str, Any] | None = None
    error_details: dict[str, Any] | None = None
    is_active: bool | None = None
    last_synced_at: datetime | None = None


class IntegrationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    provider: str
    owning_user_id: str | None = None
    is_active: bool
    provider_account_id: str | None = None
    provider_account_email: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    last_synced_at: datetime | None = None
    error_details: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class IntegrationStatusResponse(BaseModel):
    """Connection state of one provider for the current organization."""

    provider: str
    connected: bool
    integration_id: UUID | None = None
    provider_account_email: str | None = None
    last_synced_at: datetime | None = None
    reauth_required: bool = False
