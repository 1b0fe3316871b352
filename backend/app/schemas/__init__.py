from app.schemas.integration import (
    IntegrationResponse,
    IntegrationStatusResponse,
    IntegrationUpdate,
)
from app.schemas.linked_resource import (
    LinkedResourceCreate,
    LinkedResourceResponse,
    LinkedResourceUpdate,
)
from app.schemas.oauth import OAuthConnectResponse, OAuthState
from app.schemas.record_mapping import RecordMappingResponse
from app.schemas.sync import (
    RemoteRecordPageResponse,
    RemoteRecordResponse,
    SyncEnqueueResponse,
    SyncErrorDetail,
    SyncRequest,
    SyncSummaryResponse,
)
from app.schemas.sync_run import SyncRunResponse

__all__ = [
    "IntegrationResponse",
    "IntegrationStatusResponse",
    "IntegrationUpdate",
    "LinkedResourceCreate",
    "LinkedResourceResponse",
    "LinkedResourceUpdate",
    "OAuthConnectResponse",
    "OAuthState",
    "RecordMappingResponse",
    "RemoteRecordPageResponse",
    "RemoteRecordResponse",
    "SyncEnqueueResponse",
    "SyncErrorDetail",
    "SyncRequest",
    "SyncRunResponse",
    "SyncSummaryResponse",
]
