"""
Publish Coordinator component.

Runs in the trusted context, once per finished build run. It:
1. Fetches and validates the PR number written by the (untrusted) build
2. Fetches the rendered tree for the same run
3. Decides between publishing and deleting from the tombstone marker
4. Derives the ``pr-<n>`` target from the validated number
5. Holds the target's publish lock while replacing the destination subtree
6. Upserts the preview comment after a publish (never after a delete)

Steps 1-4 fail fast without side effects. A failed push surfaces as an error
and leaves the previous preview in place. A failed comment is logged and
reported on the outcome; it does not fail the run.
"""

import tempfile
from pathlib import Path
from typing import Optional

from docs_preview.exceptions import DocsPreviewError
from docs_preview.models.build_run import (
    PR_NUMBER_ARTIFACT,
    RENDERED_DOCS_ARTIFACT,
    TOMBSTONE_MARKER,
)
from docs_preview.models.publish import (
    PublishMode,
    PublishOutcome,
    PublishStatus,
    PublishTarget,
)
from docs_preview.services.artifacts import ArtifactStore, unpack_tree
from docs_preview.services.destination import DestinationStore
from docs_preview.services.locking import LockManager
from docs_preview.services.notifier import Notifier, format_preview_comment
from docs_preview.services.validation import (
    decode_pr_number_artifact,
    require_valid_pr_number,
)
from docs_preview.utils.logging import get_logger, log_phase_transition
from docs_preview.utils.metrics import PublishMetrics, track_api_call
from docs_preview.utils.resilience import call_with_retries

logger = get_logger(__name__)

# GitHub reports "success", Azure DevOps reports "succeeded"
SUCCESS_CONCLUSIONS = {"success", "succeeded"}


class BuildNotSuccessfulError(DocsPreviewError):
    """Raised when asked to publish the output of a build that did not succeed."""
    pass


class PublishCoordinator:
    """Publishes or deletes one pull request preview per finished build run."""

    def __init__(
        self,
        store: ArtifactStore,
        destination: DestinationStore,
        lock_manager: LockManager,
        notifier: Notifier,
        preview_base_url: str,
        comment_tag: str = "docs-preview",
        help_url: Optional[str] = None,
        external_call_retries: int = 0,
        retry_base_delay: float = 1.0
    ):
        self.store = store
        self.destination = destination
        self.lock_manager = lock_manager
        self.notifier = notifier
        self.preview_base_url = preview_base_url.rstrip("/")
        self.comment_tag = comment_tag
        self.help_url = help_url
        self.external_call_retries = external_call_retries
        self.retry_base_delay = retry_base_delay

    def preview_url(self, target: PublishTarget) -> str:
        return f"{self.preview_base_url}/{target.path}"

    async def process(self, run_id: str, conclusion: str = "success") -> PublishOutcome:
        """
        Run the coordinator for one finished build run.

        Args:
            run_id: Platform-assigned id of the build run
            conclusion: Conclusion reported for that run

        Returns:
            PublishOutcome describing what was done

        Raises:
            BuildNotSuccessfulError: If the run did not succeed
            MalformedPRNumberError: If the pr_number artifact is not digits only
            ArtifactNotFoundError: If an artifact is missing for the run
            UnsafeArtifactError: If the rendered tree archive is unsafe
            LockTimeoutError: If the publish lock cannot be acquired
            DestinationError: If the destination update fails
        """
        if conclusion.lower() not in SUCCESS_CONCLUSIONS:
            raise BuildNotSuccessfulError(
                f"Build run {run_id} concluded with {conclusion!r}; nothing to publish"
            )

        metrics = PublishMetrics(run_id)
        metrics.start()

        try:
            outcome = await self._process(run_id, metrics)
        except Exception as e:
            metrics.complete("failed", error_message=str(e))
            raise

        metrics.complete(outcome.status.value)
        return outcome

    async def _fetch(self, run_id: str, name: str, metrics: PublishMetrics) -> bytes:
        async def _get() -> bytes:
            async with track_api_call(metrics, "artifacts", name, "GET", logger):
                return await self.store.get(run_id, name)

        return await call_with_retries(_get, self.external_call_retries, self.retry_base_delay)

    async def _process(self, run_id: str, metrics: PublishMetrics) -> PublishOutcome:
        log_phase_transition(logger, run_id, "validate", "started")
        raw = await self._fetch(run_id, PR_NUMBER_ARTIFACT, metrics)
        validated = require_valid_pr_number(decode_pr_number_artifact(raw))
        target = PublishTarget.for_pr(validated)
        log = logger.with_context(run_id=run_id, pr_number=validated.value, target=target.path)
        log_phase_transition(log, run_id, "validate", "completed")

        log_phase_transition(log, run_id, "fetch_payload", "started")
        payload = await self._fetch(run_id, RENDERED_DOCS_ARTIFACT, metrics)

        with tempfile.TemporaryDirectory(prefix="docs-preview-publish-") as scratch:
            tree = Path(scratch) / RENDERED_DOCS_ARTIFACT
            unpack_tree(payload, tree)
            log_phase_transition(log, run_id, "fetch_payload", "completed")

            marker = tree / TOMBSTONE_MARKER
            if marker.is_file():
                mode = PublishMode.DELETE
                # The marker itself must never reach the destination
                marker.unlink()
                message = f"Remove preview for PR {validated.value}"
            else:
                mode = PublishMode.PUBLISH
                message = f"Update preview for PR {validated.value}"

            metrics.record_target(validated.value, target.path, mode.value)
            log.info(f"Mode for {target}: {mode.value}", extra={"mode": mode.value})

            log_phase_transition(log, run_id, "push", "started")
            async with self.lock_manager.hold(target) as lease:
                if lease.superseded:
                    log.info(f"A newer run for {target} is queued; skipping this one")
                    log_phase_transition(log, run_id, "push", "completed")
                    return PublishOutcome(
                        run_id=run_id,
                        pr_number=validated.value,
                        target=target.path,
                        mode=mode,
                        status=PublishStatus.SUPERSEDED
                    )

                async with track_api_call(metrics, "destination", target.path, "PUSH", log):
                    result = await self.destination.replace(
                        target,
                        tree if mode == PublishMode.PUBLISH else None,
                        message
                    )
            log_phase_transition(log, run_id, "push", "completed")

        metrics.record_files_pushed(result.file_count)

        if not result.changed:
            status = PublishStatus.UNCHANGED
        elif mode == PublishMode.DELETE:
            status = PublishStatus.DELETED
        else:
            status = PublishStatus.PUBLISHED

        outcome = PublishOutcome(
            run_id=run_id,
            pr_number=validated.value,
            target=target.path,
            mode=mode,
            status=status,
            commit=result.revision
        )

        if mode == PublishMode.PUBLISH:
            outcome.preview_url = self.preview_url(target)
            outcome.notified = await self._notify(validated.value, outcome.preview_url, metrics, log)

        return outcome

    async def _notify(self, pr_number: int, preview_url: str, metrics: PublishMetrics, log) -> bool:
        body = format_preview_comment(preview_url, self.help_url)

        async def _upsert() -> None:
            async with track_api_call(metrics, "notifier", f"pr/{pr_number}", "UPSERT", log):
                await self.notifier.upsert_comment(pr_number, self.comment_tag, body)

        try:
            await call_with_retries(_upsert, self.external_call_retries, self.retry_base_delay)
        except Exception as e:
            # The preview is already live; a missing comment is not a failed run
            log.warning(f"Failed to post preview comment on PR {pr_number}: {e}", exc_info=True)
            return False

        return True
