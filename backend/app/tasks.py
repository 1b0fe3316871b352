from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from app.core.config import settings

# Redis connection settings
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis pool for arq"""
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job | None:
    """
    Enqueue a task to the arq worker.

    Args:
        task_name: Name of the task function
        *args: Positional arguments for the task
        **kwargs: Keyword arguments for the task, including arq's ``_job_id``

    Returns:
        Job object from arq, or None when a job with the same ``_job_id``
        is already queued
    """
    pool = await get_redis_pool()
    try:
        return await pool.enqueue_job(task_name, *args, **kwargs)
    finally:
        await pool.close()


def sync_job_id(integration_id: str, sync_type: str) -> str:
    return f"sync:{integration_id}:{sync_type}"


async def enqueue_integration_sync(
    integration_id: str,
    organization_id: str,
    sync_type: str = "scheduled",
    external_ids: list[str] | None = None,
    linked_resource_id: str | None = None,
) -> Job | None:
    """Enqueue a sync for one integration.

    Full and scheduled syncs share a job id per integration and type, so at
    most one of each waits in the queue. Selective syncs name their own
    records and always get a fresh job.
    """
    return await enqueue_task(
        "sync_integration_task",
        integration_id,
        organization_id,
        sync_type,
        external_ids,
        linked_resource_id,
        _job_id=None if sync_type == "selective" else sync_job_id(integration_id, sync_type),
    )
