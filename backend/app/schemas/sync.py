from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.sync_run import SyncType


class SyncRequest(BaseModel):
    sync_type: SyncType = SyncType.FULL
    external_ids: list[str] | None = Field(default=None, max_length=5000)
    linked_resource_id: UUID | None = None

    @model_validator(mode="after")
    def check_selective_ids(self) -> "SyncRequest":
        if self.sync_type == SyncType.SELECTIVE and not self.external_ids:
            raise ValueError("external_ids is required for a selective sync")
        return self


class SyncErrorDetail(BaseModel):
    code: str
    message: str
    external_id: str | None = None
    local_id: str | None = None


class SyncSummaryResponse(BaseModel):
    success: bool
    run_id: UUID | None = None
    status: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[SyncErrorDetail] = Field(default_factory=list)
    reauth_required: bool = False


class SyncEnqueueResponse(BaseModel):
    integration_id: UUID
    job_id: str | None = None
    enqueued: bool


class RemoteRecordResponse(BaseModel):
    external_id: str
    record_type: str
    fields: dict[str, Any]
    updated_at: datetime | None = None
    deleted: bool = False


class RemoteRecordPageResponse(BaseModel):
    records: list[RemoteRecordResponse]
    next_page_token: str | None = None
    errors: list[SyncErrorDetail] = Field(default_factory=list)
