"""Integrations router: connections, linked resources, sync runs and mappings."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from app.core.auth import get_current_organization
from app.core.database import get_db
from app.models.integration import Integration, IntegrationProvider
from app.models.linked_resource import LinkedResource
from app.models.record_mapping import RecordMapping
from app.models.sync_run import SyncRun
from app.repositories.integration_repository import IntegrationRepository
from app.repositories.linked_resource_repository import LinkedResourceRepository
from app.repositories.record_mapping_repository import RecordMappingRepository
from app.repositories.sync_run_repository import SyncRunRepository
from app.schemas.integration import (
    IntegrationResponse,
    IntegrationStatusResponse,
    IntegrationUpdate,
)
from app.schemas.linked_resource import LinkedResourceCreate, LinkedResourceResponse
from app.schemas.record_mapping import RecordMappingResponse
from app.schemas.sync import (
    RemoteRecordPageResponse,
    RemoteRecordResponse,
    SyncEnqueueResponse,
    SyncRequest,
    SyncSummaryResponse,
)
from app.schemas.sync_run import SyncRunResponse
from app.services.integrations.errors import (
    CapabilityNotSupported,
    IntegrationNotFound,
    NotConnected,
    ReauthRequired,
    RunAlreadyInProgress,
    SyncError,
)
from app.services.integrations.oauth import OAuthService
from app.services.integrations.reconciliation import ReconciliationEngine
from app.tasks import enqueue_integration_sync

router = APIRouter()


def _get_integration_or_404(
    integration_id: UUID,
    organization_id: UUID,
    db: Session,
) -> Integration:
    """Fetch an integration or raise 404."""
    repo = IntegrationRepository(db)
    integration = repo.get_by_id(integration_id, organization_id)
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


@router.get(
    "/",
    response_model=list[IntegrationResponse],
    summary="List integrations",
)
async def list_integrations(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    is_active: bool | None = Query(default=None),
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[Integration]:
    """List integrations for the organization."""
    repo = IntegrationRepository(db)
    response.headers["X-Total-Count"] = str(repo.count(organization_id))
    return repo.get_all(organization_id, skip=skip, limit=limit, is_active=is_active)


@router.get(
    "/status",
    response_model=list[IntegrationStatusResponse],
    summary="Connection status per provider",
)
async def integration_status(
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[IntegrationStatusResponse]:
    """One entry per supported provider, connected or not."""
    by_provider = {
        i.provider: i for i in IntegrationRepository(db).get_all(organization_id, limit=1000)
    }
    statuses = []
    for provider in IntegrationProvider:
        integration = by_provider.get(provider.value)
        if integration is None:
            statuses.append(IntegrationStatusResponse(provider=provider.value, connected=False))
            continue
        statuses.append(
            IntegrationStatusResponse(
                provider=provider.value,
                connected=bool(integration.is_active),
                integration_id=integration.id,
                provider_account_email=integration.provider_account_email,
                last_synced_at=integration.last_synced_at,
                reauth_required=bool((integration.error_details or {}).get("reauth_required")),
            )
        )
    return statuses


@router.get(
    "/{integration_id}",
    response_model=IntegrationResponse,
    summary="Get integration",
    responses={404: {"description": "Integration not found"}},
)
async def get_integration(
    integration_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> Integration:
    """Get an integration by ID."""
    return _get_integration_or_404(integration_id, organization_id, db)


@router.put(
    "/{integration_id}",
    response_model=IntegrationResponse,
    summary="Update integration settings",
    responses={
        404: {"description": "Integration not found"},
        422: {"description": "Validation error"},
    },
)
async def update_integration(
    integration_id: UUID,
    data: IntegrationUpdate,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> Integration:
    """Update an integration's settings."""
    repo = IntegrationRepository(db)
    integration = repo.update(integration_id, data, organization_id)
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


@router.delete(
    "/{integration_id}",
    status_code=204,
    summary="Disconnect integration",
    responses={404: {"description": "Integration not found"}},
)
async def disconnect_integration(
    integration_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> Response:
    """Deactivate the integration and revoke its credential.

    Mappings and run history are kept so a reconnect picks up where it left off.
    """
    try:
        OAuthService(db).disconnect(integration_id, organization_id)
    except IntegrationNotFound:
        raise HTTPException(status_code=404, detail="Integration not found") from None
    return Response(status_code=204)


# ─────────────────────────────────────────────────────────────────────────────
# Sync
# ─────────────────────────────────────────────────────────────────────────────


@router.post(
    "/{integration_id}/sync",
    response_model=SyncSummaryResponse,
    summary="Run a sync now",
    responses={
        404: {"description": "Integration not found"},
        409: {"description": "Integration not connected or a sync is already running"},
        422: {"description": "Validation error"},
    },
)
def run_sync(
    integration_id: UUID,
    data: SyncRequest,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> SyncSummaryResponse:
    """Run a sync in the request and return its summary.

    Failures of a run that started are reported in the body, not as errors.
    """
    engine = ReconciliationEngine(db)
    try:
        summary = engine.sync(
            integration_id,
            organization_id=organization_id,
            sync_type=data.sync_type,
            external_ids=data.external_ids,
            linked_resource_id=data.linked_resource_id,
        )
    except IntegrationNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from None
    except (NotConnected, RunAlreadyInProgress) as exc:
        raise HTTPException(status_code=409, detail=exc.message) from None
    return SyncSummaryResponse.model_validate(summary.to_dict())


@router.post(
    "/{integration_id}/sync/enqueue",
    response_model=SyncEnqueueResponse,
    status_code=202,
    summary="Enqueue a background sync",
    responses={
        404: {"description": "Integration not found"},
        409: {"description": "Integration not connected"},
    },
)
async def enqueue_sync(
    integration_id: UUID,
    data: SyncRequest,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> SyncEnqueueResponse:
    integration = _get_integration_or_404(integration_id, organization_id, db)
    if not integration.is_active:
        raise HTTPException(status_code=409, detail="Integration is not connected")
    job = await enqueue_integration_sync(
        str(integration.id),
        str(organization_id),
        data.sync_type.value,
        data.external_ids,
        str(data.linked_resource_id) if data.linked_resource_id else None,
    )
    return SyncEnqueueResponse(
        integration_id=integration.id,
        job_id=job.job_id if job is not None else None,
        enqueued=job is not None,
    )


@router.get(
    "/{integration_id}/remote_records",
    response_model=RemoteRecordPageResponse,
    summary="Preview remote records",
    responses={
        404: {"description": "Integration not found"},
        409: {"description": "Integration not connected or needs reauthorization"},
        422: {"description": "Provider cannot list records"},
        502: {"description": "Provider request failed"},
    },
)
def preview_remote_records(
    integration_id: UUID,
    page_token: str | None = Query(default=None),
    linked_resource_id: UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> RemoteRecordPageResponse:
    """One page of normalized remote records, for choosing a selective sync."""
    engine = ReconciliationEngine(db)
    try:
        records, next_page_token, errors = engine.preview_remote_records(
            integration_id,
            organization_id=organization_id,
            page_token=page_token,
            linked_resource_id=linked_resource_id,
        )
    except IntegrationNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from None
    except (NotConnected, ReauthRequired) as exc:
        raise HTTPException(status_code=409, detail=exc.message) from None
    except CapabilityNotSupported as exc:
        raise HTTPException(status_code=422, detail=exc.message) from None
    except SyncError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from None
    return RemoteRecordPageResponse(
        records=[
            RemoteRecordResponse(
                external_id=r.external_id,
                record_type=r.record_type,
                fields=r.fields,
                updated_at=r.updated_at,
                deleted=r.deleted,
            )
            for r in records
        ],
        next_page_token=next_page_token,
        errors=errors,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Sub-resource endpoints: Sync Runs
# ─────────────────────────────────────────────────────────────────────────────


@router.get(
    "/{integration_id}/sync_runs",
    response_model=list[SyncRunResponse],
    summary="List sync runs",
    responses={404: {"description": "Integration not found"}},
)
async def list_sync_runs(
    integration_id: UUID,
    response: Response,
    status: str | None = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    order_by: str | None = Query(default=None),
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[SyncRun]:
    """List sync runs for an integration, newest first."""
    _get_integration_or_404(integration_id, organization_id, db)
    repo = SyncRunRepository(db)
    response.headers["X-Total-Count"] = str(repo.count(integration_id, status=status))
    return repo.get_all(integration_id, skip=skip, limit=limit, status=status, order_by=order_by)


@router.get(
    "/{integration_id}/sync_runs/{run_id}",
    response_model=SyncRunResponse,
    summary="Get sync run",
    responses={404: {"description": "Integration or sync run not found"}},
)
async def get_sync_run(
    integration_id: UUID,
    run_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> SyncRun:
    _get_integration_or_404(integration_id, organization_id, db)
    run = SyncRunRepository(db).get_by_id(run_id, integration_id)
    if not run:
        raise HTTPException(status_code=404, detail="Sync run not found")
    return run


@router.post(
    "/{integration_id}/sync_runs/{run_id}/cancel",
    response_model=SyncRunResponse,
    status_code=202,
    summary="Cancel a running sync",
    responses={
        404: {"description": "Integration or sync run not found"},
        409: {"description": "Sync run is not running"},
    },
)
async def cancel_sync_run(
    integration_id: UUID,
    run_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> SyncRun:
    """Ask a running sync to stop at its next batch boundary."""
    _get_integration_or_404(integration_id, organization_id, db)
    repo = SyncRunRepository(db)
    if not repo.get_by_id(run_id, integration_id):
        raise HTTPException(status_code=404, detail="Sync run not found")
    if not ReconciliationEngine(db).cancel(run_id):
        raise HTTPException(status_code=409, detail="Sync run is not running")
    run = repo.get_by_id(run_id, integration_id)
    db.refresh(run)
    return run  # type: ignore[return-value]


# ─────────────────────────────────────────────────────────────────────────────
# Sub-resource endpoints: Linked Resources
# ─────────────────────────────────────────────────────────────────────────────


@router.get(
    "/{integration_id}/linked_resources",
    response_model=list[LinkedResourceResponse],
    summary="List linked resources",
    responses={404: {"description": "Integration not found"}},
)
async def list_linked_resources(
    integration_id: UUID,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[LinkedResource]:
    _get_integration_or_404(integration_id, organization_id, db)
    return LinkedResourceRepository(db).get_all(integration_id, skip=skip, limit=limit)


@router.post(
    "/{integration_id}/linked_resources",
    response_model=LinkedResourceResponse,
    status_code=201,
    summary="Link a resource",
    responses={
        404: {"description": "Integration not found"},
        409: {"description": "Resource already linked"},
        422: {"description": "Validation error"},
    },
)
async def create_linked_resource(
    integration_id: UUID,
    data: LinkedResourceCreate,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> LinkedResource:
    """Link a spreadsheet tab, calendar or channel to the integration."""
    _get_integration_or_404(integration_id, organization_id, db)
    repo = LinkedResourceRepository(db)
    if repo.get_by_external_id(integration_id, data.external_resource_id):
        raise HTTPException(status_code=409, detail="Resource is already linked")
    return repo.create(integration_id, data)


@router.delete(
    "/{integration_id}/linked_resources/{resource_id}",
    status_code=204,
    summary="Unlink a resource",
    responses={404: {"description": "Integration or linked resource not found"}},
)
async def delete_linked_resource(
    integration_id: UUID,
    resource_id: UUID,
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> Response:
    """Unlink a resource and drop the record mappings made through it."""
    _get_integration_or_404(integration_id, organization_id, db)
    if not LinkedResourceRepository(db).delete(resource_id, integration_id):
        raise HTTPException(status_code=404, detail="Linked resource not found")
    return Response(status_code=204)


# ─────────────────────────────────────────────────────────────────────────────
# Sub-resource endpoints: Record Mappings
# ─────────────────────────────────────────────────────────────────────────────


@router.get(
    "/{integration_id}/mappings",
    response_model=list[RecordMappingResponse],
    summary="List record mappings",
    responses={404: {"description": "Integration not found"}},
)
async def list_record_mappings(
    integration_id: UUID,
    response: Response,
    linked_resource_id: UUID | None = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    order_by: str | None = Query(default=None),
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
) -> list[RecordMapping]:
    _get_integration_or_404(integration_id, organization_id, db)
    repo = RecordMappingRepository(db)
    response.headers["X-Total-Count"] = str(repo.count(integration_id))
    return repo.get_all(
        integration_id,
        skip=skip,
        limit=limit,
        order_by=order_by,
        linked_resource_id=linked_resource_id,
    )
