"""
One-shot publish entry point.

Runs the publish coordinator once from a trusted CI job that is triggered by
the completion of the docs preview build:

    python -m docs_preview.publish --run-id 1234 --conclusion succeeded

Uses Redis locks when a Redis URL is reachable through the settings
(``artifact_backend=redis``); otherwise locks are held in-process, which is
only safe when the CI platform itself serializes these jobs.

Exit status: 0 when the run completed (including "superseded" and
"unchanged"), 1 on any failure.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from docs_preview.config import DeployCredentials, Settings
from docs_preview.exceptions import DocsPreviewError
from docs_preview.services.factory import build_publish_coordinator
from docs_preview.services.redis_client import RedisClient
from docs_preview.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish or delete a docs preview for a finished build")
    parser.add_argument("--run-id", required=True, help="Id of the finished build run")
    parser.add_argument(
        "--conclusion",
        default="success",
        help="Conclusion of the build run (only success/succeeded publishes)"
    )
    return parser.parse_args(argv)


async def run_publish(args: argparse.Namespace, settings: Settings, credentials: DeployCredentials) -> int:
    redis_client = None

    try:
        if settings.artifact_backend == "redis":
            redis_client = RedisClient(settings.redis_url)
            await redis_client.initialize()

        coordinator = build_publish_coordinator(settings, credentials, redis_client)
        outcome = await coordinator.process(args.run_id, args.conclusion)
    except DocsPreviewError as e:
        logger.error(f"Docs preview publish failed: {e}", extra={"run_id": args.run_id})
        return 1
    finally:
        if redis_client is not None:
            await redis_client.close()

    logger.info(
        f"{outcome.target}: {outcome.status.value}",
        extra={"run_id": outcome.run_id, "target": outcome.target}
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings()
    setup_logging(settings.log_level.upper())
    args = parse_args(argv)
    return asyncio.run(run_publish(args, settings, DeployCredentials()))


if __name__ == "__main__":
    sys.exit(main())
