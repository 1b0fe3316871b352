"""Tests for worker background tasks and cron job registration."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from arq.worker import Function

from app.models.sync_run import SyncRun, SyncRunStatus
from app.services.integrations.errors import RunAlreadyInProgress
from app.services.integrations.ledger import SyncRunLedger
from app.services.integrations.reconciliation import SyncSummary
from app.worker import (
    WorkerSettings,
    _every,
    reap_stale_sync_runs_task,
    scheduled_sync_task,
    sync_integration_task,
)
from tests.conftest import DEFAULT_ORG_ID, create_integration


class TestSyncIntegrationTask:
    """Tests for the sync_integration_task worker function."""

    @pytest.mark.asyncio
    async def test_runs_engine_and_returns_summary(self):
        run_id = uuid.uuid4()
        integration_id = uuid.uuid4()
        mock_engine = MagicMock()
        mock_engine.sync.return_value = SyncSummary(
            run_id=run_id, status=SyncRunStatus.COMPLETED.value, created=4
        )

        with patch("app.worker.ReconciliationEngine", return_value=mock_engine):
            result = await sync_integration_task(
                {}, str(integration_id), str(DEFAULT_ORG_ID), "selective", ["c1"]
            )

        assert result["success"] is True
        assert result["run_id"] == str(run_id)
        assert result["created"] == 4
        mock_engine.sync.assert_called_once_with(
            integration_id,
            organization_id=DEFAULT_ORG_ID,
            sync_type="selective",
            external_ids=["c1"],
            linked_resource_id=None,
        )

    @pytest.mark.asyncio
    async def test_rejected_when_already_running(self):
        mock_engine = MagicMock()
        mock_engine.sync.side_effect = RunAlreadyInProgress("busy")

        with patch("app.worker.ReconciliationEngine", return_value=mock_engine):
            result = await sync_integration_task({}, str(uuid.uuid4()))

        assert result == {
            "success": False,
            "status": "rejected",
            "error": {"code": "run_already_in_progress", "message": "busy"},
        }

    @pytest.mark.asyncio
    async def test_unknown_integration_is_rejected(self):
        result = await sync_integration_task({}, str(uuid.uuid4()), str(DEFAULT_ORG_ID))

        assert result["success"] is False
        assert result["status"] == "rejected"
        assert result["error"]["code"] == "integration_not_found"

    @pytest.mark.asyncio
    async def test_disconnected_integration_is_rejected(self, db_session):
        integration = create_integration(db_session, is_active=False)

        result = await sync_integration_task({}, str(integration.id), str(DEFAULT_ORG_ID))

        assert result["status"] == "rejected"
        assert result["error"]["code"] == "not_connected"


class TestScheduledSyncTask:
    """Tests for the scheduled_sync_task worker function."""

    @pytest.mark.asyncio
    async def test_enqueues_active_integrations(self, db_session):
        active = create_integration(db_session, provider="hubspot")
        create_integration(db_session, provider="slack", is_active=False)
        redis = MagicMock()
        redis.enqueue_job = AsyncMock(return_value=MagicMock(job_id="j1"))

        result = await scheduled_sync_task({"redis": redis})

        assert result == 1
        redis.enqueue_job.assert_awaited_once_with(
            "sync_integration_task",
            str(active.id),
            str(DEFAULT_ORG_ID),
            "scheduled",
            _job_id=f"sync:{active.id}:scheduled",
        )

    @pytest.mark.asyncio
    async def test_already_queued_jobs_are_not_counted(self, db_session):
        create_integration(db_session, provider="hubspot")
        create_integration(db_session, provider="pipedrive")
        redis = MagicMock()
        redis.enqueue_job = AsyncMock(side_effect=[None, MagicMock()])

        result = await scheduled_sync_task({"redis": redis})

        assert result == 1
        assert redis.enqueue_job.await_count == 2

    @pytest.mark.asyncio
    async def test_no_integrations(self):
        redis = MagicMock()
        redis.enqueue_job = AsyncMock()

        assert await scheduled_sync_task({"redis": redis}) == 0
        redis.enqueue_job.assert_not_called()


class TestReapStaleSyncRunsTask:
    """Tests for the reap_stale_sync_runs_task worker function."""

    @pytest.mark.asyncio
    async def test_fails_runs_without_heartbeat(self, db_session):
        integration = create_integration(db_session)
        long_ago = datetime.now(UTC) - timedelta(hours=2)
        stale = SyncRunLedger(db_session, clock=lambda: long_ago).start(
            integration.id, "full", "inbound"
        )

        result = await reap_stale_sync_runs_task({})

        assert result == 1
        db_session.expire_all()
        run = db_session.query(SyncRun).filter(SyncRun.id == stale.id).one()
        assert run.status == SyncRunStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_leaves_live_runs(self, db_session):
        integration = create_integration(db_session)
        SyncRunLedger(db_session).start(integration.id, "full", "inbound")

        assert await reap_stale_sync_runs_task({}) == 0


def _sync_function():
    return next(f for f in WorkerSettings.functions if isinstance(f, Function))


class TestWorkerSettings:
    """Tests for WorkerSettings configuration."""

    def test_functions_registered(self):
        assert _sync_function().coroutine is sync_integration_task
        assert scheduled_sync_task in WorkerSettings.functions
        assert reap_stale_sync_runs_task in WorkerSettings.functions

    def test_cron_jobs_registered(self):
        assert len(WorkerSettings.cron_jobs) == 2
        names = {job.coroutine.__name__ for job in WorkerSettings.cron_jobs}
        assert names == {"scheduled_sync_task", "reap_stale_sync_runs_task"}

    def test_scheduled_sync_minutes(self):
        job = next(
            j for j in WorkerSettings.cron_jobs if j.coroutine.__name__ == "scheduled_sync_task"
        )
        assert job.minute == {0, 15, 30, 45}

    def test_every(self):
        assert _every(15) == {0, 15, 30, 45}
        assert _every(60) == {0}
        assert _every(0) == set(range(60))
        assert _every(90) == {0}

    def test_sync_results_are_not_kept(self):
        """A kept result would block the fixed job id until it expires."""
        sync = _sync_function()
        assert sync.name == "sync_integration_task"
        assert sync.keep_result_s == 0
