from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.integration import SyncDirection
from app.models.linked_resource import LinkedResourceType


class LinkedResourceCreate(BaseModel):
    resource_type: LinkedResourceType
    external_resource_id: str = Field(..., min_length=1, max_length=255)
    external_resource_name: str | None = Field(default=None, max_length=255)
    field_mapping: dict[str, str] = Field(default_factory=dict)
    sync_direction: SyncDirection = SyncDirection.INBOUND

    @field_validator("field_mapping")
    @classmethod
    def validate_field_mapping(cls, v: dict[str, str]) -> dict[str, str]:
        for external, internal in v.items():
            if not external.strip() or not internal.strip():
                raise ValueError("field_mapping keys and values must be non-empty")
        return v


class LinkedResourceUpdate(BaseModel):
    external_resource_name: str | None = Field(default=None, max_length=255)
    field_mapping: dict[str, str] | None = None
    sync_direction: SyncDirection | None = None
    is_active: bool | None = None


class LinkedResourceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    integration_id: UUID
    resource_type: str
    external_resource_id: str
    external_resource_name: str | None = None
    field_mapping: dict[str, str]
    sync_direction: str
    is_active: bool
    last_synced_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
