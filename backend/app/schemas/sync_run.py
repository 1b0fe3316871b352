from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SyncRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    integration_id: UUID
    linked_resource_id: UUID | None = None
    sync_type: str
    direction: str
    status: str
    records_created: int
    records_updated: int
    records_skipped: int
    errors: list[dict[str, Any]]
    cancel_requested: bool
    checkpoint: str | None = None
    started_at: datetime
    last_heartbeat_at: datetime
    completed_at: datetime | None = None
