from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class RecordMappingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    integration_id: UUID
    linked_resource_id: UUID | None = None
    record_type: str
    external_id: str
    local_id: UUID
    external_updated_at: datetime | None = None
    last_synced_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
