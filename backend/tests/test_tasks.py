"""Tests for background tasks."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.tasks import enqueue_integration_sync, enqueue_task, get_redis_pool, sync_job_id


class TestTasks:
    @pytest.mark.asyncio
    async def test_get_redis_pool(self):
        """Test get_redis_pool creates a pool."""
        mock_pool = MagicMock()

        with patch("app.tasks.create_pool", new_callable=AsyncMock) as mock_create:
            mock_create.return_value = mock_pool

            result = await get_redis_pool()

            assert result == mock_pool
            mock_create.assert_called_once()

    @pytest.mark.asyncio
    async def test_enqueue_task(self):
        """Test enqueue_task enqueues a job and closes the pool."""
        mock_job = MagicMock()
        mock_job.job_id = "job-123"

        mock_pool = MagicMock()
        mock_pool.enqueue_job = AsyncMock(return_value=mock_job)
        mock_pool.close = AsyncMock()

        with patch("app.tasks.get_redis_pool", new_callable=AsyncMock) as mock_get_pool:
            mock_get_pool.return_value = mock_pool

            result = await enqueue_task("sync_integration_task", "abc", _job_id="sync:abc")

            assert result == mock_job
            mock_pool.enqueue_job.assert_called_once_with(
                "sync_integration_task", "abc", _job_id="sync:abc"
            )
            mock_pool.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_enqueue_task_closes_pool_on_error(self):
        """Test enqueue_task closes pool even when job enqueue fails."""
        mock_pool = MagicMock()
        mock_pool.enqueue_job = AsyncMock(side_effect=Exception("Redis error"))
        mock_pool.close = AsyncMock()

        with patch("app.tasks.get_redis_pool", new_callable=AsyncMock) as mock_get_pool:
            mock_get_pool.return_value = mock_pool

            with pytest.raises(Exception, match="Redis error"):
                await enqueue_task("failing_task")

            # Pool should still be closed
            mock_pool.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_enqueue_integration_sync_uses_stable_job_id(self):
        """A second enqueue while the first is queued returns None from arq."""
        with patch("app.tasks.enqueue_task", new_callable=AsyncMock) as mock_enqueue:
            mock_enqueue.return_value = None

            result = await enqueue_integration_sync("int-1", "org-1")

            assert result is None
            mock_enqueue.assert_called_once_with(
                "sync_integration_task",
                "int-1",
                "org-1",
                "scheduled",
                None,
                None,
                _job_id="sync:int-1:scheduled",
            )

    @pytest.mark.asyncio
    async def test_enqueue_integration_sync_full(self):
        with patch("app.tasks.enqueue_task", new_callable=AsyncMock) as mock_enqueue:
            await enqueue_integration_sync("int-1", "org-1", sync_type="full")

            assert mock_enqueue.call_args.kwargs == {"_job_id": "sync:int-1:full"}

    @pytest.mark.asyncio
    async def test_selective_sync_gets_fresh_job(self):
        with patch("app.tasks.enqueue_task", new_callable=AsyncMock) as mock_enqueue:
            await enqueue_integration_sync(
                "int-1", "org-1", sync_type="selective", external_ids=["c1"]
            )

            mock_enqueue.assert_called_once_with(
                "sync_integration_task",
                "int-1",
                "org-1",
                "selective",
                ["c1"],
                None,
                _job_id=None,
            )

    def test_sync_job_id(self):
        assert sync_job_id("int-1", "scheduled") == "sync:int-1:scheduled"
