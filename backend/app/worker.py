import asyncio
import logging
from typing import Any
from uuid import UUID

from arq import cron, func

from app.core.config import settings
from app.core.database import session_scope
from app.repositories.integration_repository import IntegrationRepository
from app.services.integrations.errors import SyncError
from app.services.integrations.ledger import SyncRunLedger
from app.services.integrations.reconciliation import ReconciliationEngine
from app.tasks import redis_settings, sync_job_id

logger = logging.getLogger(__name__)


def _run_sync(
    integration_id: str,
    organization_id: str | None,
    sync_type: str,
    external_ids: list[str] | None,
    linked_resource_id: str | None,
) -> dict[str, Any]:
    with session_scope() as db:
        engine = ReconciliationEngine(db)
        try:
            summary = engine.sync(
                UUID(integration_id),
                organization_id=UUID(organization_id) if organization_id else None,
                sync_type=sync_type,
                external_ids=external_ids,
                linked_resource_id=UUID(linked_resource_id) if linked_resource_id else None,
            )
        except SyncError as exc:
            # Rejected before a run started: not found, disconnected or already running
            logger.info("Sync of integration %s not started: %s", integration_id, exc)
            return {"success": False, "status": "rejected", "error": exc.to_dict()}
        result = summary.to_dict()
        result["run_id"] = str(summary.run_id)
        return result


async def sync_integration_task(
    ctx: dict[str, Any],
    integration_id: str,
    organization_id: str | None = None,
    sync_type: str = "full",
    external_ids: list[str] | None = None,
    linked_resource_id: str | None = None,
) -> dict[str, Any]:
    """Background task: run one sync for an integration.

    The sync itself is blocking, so it runs in a worker thread; jobs for
    different integrations proceed in parallel.
    """
    result = await asyncio.to_thread(
        _run_sync,
        integration_id,
        organization_id,
        sync_type,
        external_ids,
        linked_resource_id,
    )
    logger.info(
        "Sync of integration %s finished with status %s", integration_id, result.get("status")
    )
    return result


async def scheduled_sync_task(ctx: dict[str, Any]) -> int:
    """Background task: enqueue an incremental sync for every active integration.

    Job ids are fixed per integration so a sync still waiting in the queue is
    not enqueued twice. Sync jobs keep no result, so the id is free again once
    the previous sync finished.
    """
    with session_scope() as db:
        integrations = [
            (str(i.id), str(i.organization_id)) for i in IntegrationRepository(db).get_active()
        ]

    count = 0
    for integration_id, organization_id in integrations:
        job = await ctx["redis"].enqueue_job(
            "sync_integration_task",
            integration_id,
            organization_id,
            "scheduled",
            _job_id=sync_job_id(integration_id, "scheduled"),
        )
        if job is not None:
            count += 1
    if count > 0:
        logger.info("Enqueued %d scheduled syncs", count)
    return count


async def reap_stale_sync_runs_task(ctx: dict[str, Any]) -> int:
    """Background task: fail running syncs whose worker stopped heartbeating."""
    with session_scope() as db:
        count = SyncRunLedger(db).reap_stale()
    if count > 0:
        logger.warning("Reaped %d stale sync runs", count)
    return count


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(1, min(minutes, 60))))


class WorkerSettings:
    functions = [
        func(sync_integration_task, keep_result=0),
        scheduled_sync_task,
        reap_stale_sync_runs_task,
    ]
    cron_jobs = [
        cron(scheduled_sync_task, minute=_every(settings.SCHEDULED_SYNC_INTERVAL_MINUTES)),
        cron(reap_stale_sync_runs_task, minute=_every(5)),
    ]
    redis_settings = redis_settings
