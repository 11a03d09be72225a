"""
Unit tests for the publish worker and the job queue.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from docs_preview.models.publish import PublishJob, PublishMode, PublishOutcome, PublishStatus
from docs_preview.services.redis_client import RedisClient
from docs_preview.services.validation import MalformedPRNumberError
from docs_preview.worker import Worker


def outcome(run_id="1234"):
    return PublishOutcome(
        run_id=run_id,
        pr_number=42,
        target="pr-42",
        mode=PublishMode.PUBLISH,
        status=PublishStatus.PUBLISHED
    )


@pytest.fixture
def coordinator() -> MagicMock:
    mock = MagicMock()
    mock.process = AsyncMock(return_value=outcome())
    return mock


class TestJobQueue:

    @pytest.mark.asyncio
    async def test_jobs_are_fifo(self, redis_client: RedisClient):
        await redis_client.enqueue_publish_job(PublishJob(run_id="1", conclusion="succeeded"))
        await redis_client.enqueue_publish_job(PublishJob(run_id="2", conclusion="succeeded"))

        assert (await redis_client.dequeue_publish_job()).run_id == "1"
        assert (await redis_client.dequeue_publish_job()).run_id == "2"
        assert await redis_client.dequeue_publish_job() is None


class TestWorker:

    @pytest.mark.asyncio
    async def test_process_job_runs_coordinator(self, redis_client, coordinator):
        worker = Worker(redis_client=redis_client, coordinator=coordinator)

        assert await worker.process_job(PublishJob(run_id="1234", conclusion="succeeded"))
        coordinator.process.assert_awaited_once_with("1234", "succeeded")

    @pytest.mark.asyncio
    async def test_process_job_reports_failure(self, redis_client, coordinator):
        coordinator.process.side_effect = MalformedPRNumberError("42; rm -rf /", "must contain only digits")
        worker = Worker(redis_client=redis_client, coordinator=coordinator)

        assert not await worker.process_job(PublishJob(run_id="1234", conclusion="succeeded"))

    @pytest.mark.asyncio
    async def test_process_job_survives_unexpected_errors(self, redis_client, coordinator):
        coordinator.process.side_effect = RuntimeError("boom")
        worker = Worker(redis_client=redis_client, coordinator=coordinator)

        assert not await worker.process_job(PublishJob(run_id="1234", conclusion="succeeded"))

    @pytest.mark.asyncio
    async def test_loop_drains_queue_until_stopped(self, redis_client, coordinator):
        worker = Worker(redis_client=redis_client, coordinator=coordinator, poll_timeout=0)
        await redis_client.enqueue_publish_job(PublishJob(run_id="1", conclusion="succeeded"))
        await redis_client.enqueue_publish_job(PublishJob(run_id="2", conclusion="succeeded"))

        async def process_then_stop(run_id, conclusion):
            if run_id == "2":
                await worker.stop()
            return outcome(run_id)

        coordinator.process.side_effect = process_then_stop
        worker.running = True
        redis_client.close = AsyncMock()

        await worker._process_jobs()

        assert [c.args[0] for c in coordinator.process.await_args_list] == ["1", "2"]
        redis_client.close.assert_awaited_once()
