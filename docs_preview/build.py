"""
Build side entry point.

Runs inside the untrusted CI job for a pull request:

    python -m docs_preview.build --run-id 1234 --pr-number 42 --action synchronize \\
        --changed-path docs/index.md --changed-path mkdocs.yml

Renders the docs (or writes a tombstone when the pull request is closed) and
hands the two artifacts to the configured artifact store. This process never
loads publishing credentials.

Exit status: 0 on success or when nothing needs building, 1 when rendering
or the handoff fails, 2 on invalid arguments.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from docs_preview.config import Settings
from docs_preview.exceptions import DocsPreviewError
from docs_preview.models.change_event import ChangeEvent, PRAction
from docs_preview.services.factory import build_artifact_store, build_build_trigger
from docs_preview.services.redis_client import RedisClient
from docs_preview.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build a docs preview for a pull request")
    parser.add_argument("--run-id", required=True, help="Id of the current CI run")
    parser.add_argument("--pr-number", required=True, help="Pull request number")
    parser.add_argument(
        "--action",
        required=True,
        choices=[action.value for action in PRAction],
        help="Pull request lifecycle action"
    )
    parser.add_argument(
        "--changed-path",
        action="append",
        default=[],
        dest="changed_paths",
        help="Changed file path (repeatable)"
    )
    parser.add_argument(
        "--changed-paths-file",
        type=Path,
        help="File with one changed path per line"
    )
    parser.add_argument(
        "--source-dir",
        type=Path,
        default=Path.cwd(),
        help="Repository checkout holding the docs sources"
    )
    return parser.parse_args(argv)


async def run_build(args: argparse.Namespace, settings: Settings) -> int:
    changed_paths = set(args.changed_paths)
    if args.changed_paths_file:
        changed_paths.update(
            line.strip() for line in args.changed_paths_file.read_text().splitlines() if line.strip()
        )

    try:
        event = ChangeEvent(id=args.pr_number, action=args.action, changed_paths=changed_paths)
    except ValidationError as e:
        logger.error(f"Invalid change event: {e}")
        return 2

    redis_client = None

    try:
        if settings.artifact_backend == "redis":
            redis_client = RedisClient(settings.redis_url)
            await redis_client.initialize()

        store = build_artifact_store(settings, redis_client)
        trigger = build_build_trigger(settings, store, source_dir=args.source_dir)
        build_run = await trigger.run(event, args.run_id)
    except DocsPreviewError as e:
        logger.error(f"Docs preview build failed: {e}", extra={"run_id": args.run_id})
        return 1
    finally:
        if redis_client is not None:
            await redis_client.close()

    if build_run is not None:
        logger.info(
            f"Handed off {build_run.payload.value} payload ({build_run.file_count} files)",
            extra={"run_id": args.run_id}
        )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings()
    setup_logging(settings.log_level.upper())
    args = parse_args(argv)
    return asyncio.run(run_build(args, settings))


if __name__ == "__main__":
    sys.exit(main())
