"""
Worker process for the publish job queue.

Polls the Redis job queue for finished build runs and runs the publish
coordinator for each. Several workers may run side by side; pushes for the
same target are serialized through Redis locks. Shuts down gracefully on
SIGTERM, finishing the current job first.
"""

import asyncio
import signal
import sys
from typing import Optional

from docs_preview.config import DeployCredentials, settings
from docs_preview.exceptions import DocsPreviewError
from docs_preview.models.publish import PublishJob
from docs_preview.services.coordinator import PublishCoordinator
from docs_preview.services.factory import build_publish_coordinator
from docs_preview.services.redis_client import RedisClient
from docs_preview.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


class Worker:
    """Worker process that polls the publish queue and runs the coordinator."""

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        coordinator: Optional[PublishCoordinator] = None,
        poll_timeout: int = 5
    ):
        self.redis_client = redis_client or RedisClient()
        self.coordinator = coordinator
        self.poll_timeout = poll_timeout
        self.running = False
        self.current_job: Optional[PublishJob] = None

    async def start(self) -> None:
        """Initialize connections and process jobs until stopped."""
        logger.info("Starting worker process...")

        await self.redis_client.initialize()

        if self.coordinator is None:
            self.coordinator = build_publish_coordinator(settings, DeployCredentials(), self.redis_client)

        self.running = True
        self._register_signal_handlers()

        logger.info("Worker process started successfully")
        await self._process_jobs()

    async def stop(self) -> None:
        """Stop taking new jobs; the current one runs to completion."""
        if self.running:
            logger.info("Stopping worker process...")
        self.running = False

    async def _process_jobs(self) -> None:
        while self.running:
            try:
                job = await self.redis_client.dequeue_publish_job(timeout=self.poll_timeout)

                if job is not None:
                    self.current_job = job
                    await self.process_job(job)
                    self.current_job = None

            except asyncio.CancelledError:
                logger.info("Job processing cancelled")
                break

            except Exception as e:
                logger.error(f"Error polling publish queue: {e}", exc_info=True)
                await asyncio.sleep(1)

        await self.redis_client.close()
        logger.info("Job processing loop stopped")

    async def process_job(self, job: PublishJob) -> bool:
        """
        Run the coordinator for one job.

        Failures are logged and the job is dropped; the next build of the
        same pull request publishes again.

        Returns:
            True if the job completed, False if it failed
        """
        log = logger.with_context(run_id=job.run_id)
        log.info(f"Processing publish job for run {job.run_id}")

        try:
            outcome = await self.coordinator.process(job.run_id, job.conclusion)
        except DocsPreviewError as e:
            log.error(f"Publish job for run {job.run_id} failed: {e}")
            return False
        except Exception as e:
            log.error(f"Unexpected error in publish job for run {job.run_id}: {e}", exc_info=True)
            return False

        log.info(f"Publish job for run {job.run_id} finished: {outcome.status.value}")
        return True

    def _register_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, lambda s=signum: self._on_signal(s))

        logger.info("Signal handlers registered (SIGTERM, SIGINT)")

    def _on_signal(self, signum: int) -> None:
        logger.info(f"Received signal {signal.Signals(signum).name}, initiating graceful shutdown...")
        asyncio.create_task(self.stop())


async def main():
    """Main entry point for worker process."""
    setup_logging(settings.log_level.upper())

    worker = Worker()

    try:
        await worker.start()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Worker process failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
