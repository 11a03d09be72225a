"""
Unit tests for the publish coordinator.

These run the whole publish side against a local artifact store and a local
destination directory.
"""

import argparse
import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from docs_preview.config import DeployCredentials, Settings
from docs_preview.models.build_run import TOMBSTONE_MARKER
from docs_preview.models.change_event import ChangeEvent, PRAction
from docs_preview.models.publish import PublishMode, PublishStatus
from docs_preview.publish import run_publish
from docs_preview.services.artifacts import (
    ArtifactNotFoundError,
    UnsafeArtifactError,
)
from docs_preview.services.build_trigger import BuildTrigger, PathFilter
from docs_preview.services.coordinator import BuildNotSuccessfulError, PublishCoordinator
from docs_preview.services.destination import ROOT_MARKER, DestinationError, LocalDestination
from docs_preview.services.locking import InProcessLockManager
from docs_preview.services.validation import MalformedPRNumberError
from tests.conftest import (
    TOMBSTONE_FILES,
    FailingNotifier,
    FakeRenderer,
    RecordingNotifier,
    hand_off,
    make_raw_archive,
    read_tree,
)

BASE_URL = "https://docs-preview.example.com/docs"


@pytest.fixture
def site(tmp_path) -> Path:
    return tmp_path / "site"


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def coordinator(artifact_store, site, notifier) -> PublishCoordinator:
    return PublishCoordinator(
        store=artifact_store,
        destination=LocalDestination(site),
        lock_manager=InProcessLockManager(),
        notifier=notifier,
        preview_base_url=BASE_URL + "/",
        comment_tag="docs-preview"
    )


class TestPublish:

    @pytest.mark.asyncio
    async def test_publishes_preview_and_comments(self, coordinator, artifact_store, site, notifier, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)

        outcome = await coordinator.process("100", "success")

        assert outcome.status == PublishStatus.PUBLISHED
        assert outcome.mode == PublishMode.PUBLISH
        assert outcome.target == "pr-42"
        assert outcome.preview_url == f"{BASE_URL}/pr-42"
        assert outcome.notified
        assert read_tree(site / "pr-42") == {"index.html": "v1"}
        assert (site / ROOT_MARKER).is_file()

        [(pr_number, tag, body)] = notifier.calls
        assert (pr_number, tag) == (42, "docs-preview")
        assert f"{BASE_URL}/pr-42" in body

    @pytest.mark.asyncio
    async def test_azure_devops_conclusion_is_accepted(self, coordinator, artifact_store, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)

        outcome = await coordinator.process("100", "succeeded")

        assert outcome.status == PublishStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_build_trigger_output_publishes(self, coordinator, artifact_store, site):
        trigger = BuildTrigger(artifact_store, FakeRenderer(), PathFilter(["docs/**"]))
        await trigger.run(ChangeEvent(id=42, action=PRAction.OPENED, changed_paths={"docs/a.md"}), "100")
        await trigger.run(ChangeEvent(id=42, action=PRAction.CLOSED), "101")

        assert (await coordinator.process("100")).status == PublishStatus.PUBLISHED
        assert (site / "pr-42" / "index.html").is_file()

        assert (await coordinator.process("101")).status == PublishStatus.DELETED
        assert not (site / "pr-42").exists()

    @pytest.mark.asyncio
    async def test_leading_zeros_map_to_integer_target(self, coordinator, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", "042", {"index.html": "v1"}, tmp_path)

        outcome = await coordinator.process("100")

        assert outcome.target == "pr-42"
        assert (site / "pr-42").is_dir()

    @pytest.mark.asyncio
    async def test_same_tree_again_is_unchanged_but_comment_is_refreshed(
        self, coordinator, artifact_store, site, notifier, tmp_path
    ):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)
        await hand_off(artifact_store, "101", "42", {"index.html": "v1"}, tmp_path)

        await coordinator.process("100")
        outcome = await coordinator.process("101")

        assert outcome.status == PublishStatus.UNCHANGED
        assert read_tree(site / "pr-42") == {"index.html": "v1"}
        assert len(notifier.calls) == 2

    @pytest.mark.asyncio
    async def test_new_tree_replaces_old_one(self, coordinator, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1", "old.html": "old"}, tmp_path)
        await hand_off(artifact_store, "101", "42", {"index.html": "v2"}, tmp_path)

        await coordinator.process("100")
        await coordinator.process("101")

        assert read_tree(site / "pr-42") == {"index.html": "v2"}

    @pytest.mark.asyncio
    async def test_comment_failure_does_not_fail_run(self, artifact_store, site, tmp_path):
        coordinator = PublishCoordinator(
            store=artifact_store,
            destination=LocalDestination(site),
            lock_manager=InProcessLockManager(),
            notifier=FailingNotifier(),
            preview_base_url=BASE_URL
        )
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)

        outcome = await coordinator.process("100")

        assert outcome.status == PublishStatus.PUBLISHED
        assert not outcome.notified
        assert (site / "pr-42" / "index.html").is_file()

    @pytest.mark.asyncio
    async def test_comment_retries_when_configured(self, artifact_store, site, tmp_path):
        notifier = AsyncMock()
        notifier.upsert_comment.side_effect = [RuntimeError("502"), None]
        coordinator = PublishCoordinator(
            store=artifact_store,
            destination=LocalDestination(site),
            lock_manager=InProcessLockManager(),
            notifier=notifier,
            preview_base_url=BASE_URL,
            external_call_retries=1,
            retry_base_delay=0
        )
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)

        outcome = await coordinator.process("100")

        assert outcome.notified
        assert notifier.upsert_comment.await_count == 2


class TestDelete:

    @pytest.mark.asyncio
    async def test_tombstone_deletes_without_comment(self, coordinator, artifact_store, site, notifier, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)
        await hand_off(artifact_store, "101", "42", TOMBSTONE_FILES, tmp_path)
        await coordinator.process("100")

        outcome = await coordinator.process("101")

        assert outcome.status == PublishStatus.DELETED
        assert outcome.mode == PublishMode.DELETE
        assert outcome.preview_url is None
        assert not (site / "pr-42").exists()
        assert len(notifier.calls) == 1

    @pytest.mark.asyncio
    async def test_tombstone_wins_over_other_files(self, coordinator, artifact_store, site, tmp_path):
        files = dict(TOMBSTONE_FILES, **{"index.html": "v1"})
        await hand_off(artifact_store, "100", "42", files, tmp_path)

        outcome = await coordinator.process("100")

        assert outcome.mode == PublishMode.DELETE
        assert outcome.status == PublishStatus.UNCHANGED
        assert not (site / "pr-42").exists()

    @pytest.mark.asyncio
    async def test_delete_then_publish_recreates(self, coordinator, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)
        await hand_off(artifact_store, "101", "42", TOMBSTONE_FILES, tmp_path)
        await hand_off(artifact_store, "102", "42", {"index.html": "v2"}, tmp_path)

        for run_id in ("100", "101", "102"):
            await coordinator.process(run_id)

        assert read_tree(site / "pr-42") == {"index.html": "v2"}
        assert not (site / "pr-42" / TOMBSTONE_MARKER).exists()

    @pytest.mark.asyncio
    async def test_delete_leaves_other_previews(self, coordinator, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "42"}, tmp_path)
        await hand_off(artifact_store, "101", "7", {"index.html": "7"}, tmp_path)
        await hand_off(artifact_store, "102", "42", TOMBSTONE_FILES, tmp_path)

        for run_id in ("100", "101", "102"):
            await coordinator.process(run_id)

        assert read_tree(site / "pr-7") == {"index.html": "7"}


class TestRejection:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pr_number_text", ["42; rm -rf /", "../1", "", "4 2", "٤٢", "1" * 5000])
    async def test_malformed_pr_number_touches_nothing(
        self, coordinator, artifact_store, site, notifier, tmp_path, pr_number_text
    ):
        await hand_off(artifact_store, "100", pr_number_text, {"index.html": "v1"}, tmp_path)

        with pytest.raises(MalformedPRNumberError):
            await coordinator.process("100")

        assert not site.exists()
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_failed_build_is_not_published(self, coordinator, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)

        with pytest.raises(BuildNotSuccessfulError):
            await coordinator.process("100", "failure")

        assert not site.exists()

    @pytest.mark.asyncio
    async def test_missing_pr_number_artifact(self, coordinator, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", None, {"index.html": "v1"}, tmp_path)

        with pytest.raises(ArtifactNotFoundError):
            await coordinator.process("100")

        assert not site.exists()

    @pytest.mark.asyncio
    async def test_missing_rendered_docs_artifact(self, coordinator, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", "42", None, tmp_path)

        with pytest.raises(ArtifactNotFoundError):
            await coordinator.process("100")

        assert not site.exists()

    @pytest.mark.asyncio
    async def test_escaping_archive_is_refused(self, coordinator, artifact_store, site, tmp_path):
        await artifact_store.put("100", "rendered-docs", make_raw_archive({"../pr-7/index.html": b"x"}))
        await artifact_store.put("100", "pr_number", b"42\n")

        with pytest.raises(UnsafeArtifactError):
            await coordinator.process("100")

        assert not site.exists()

    @pytest.mark.asyncio
    async def test_push_failure_keeps_previous_preview(self, artifact_store, site, notifier, tmp_path):
        destination = LocalDestination(site)
        coordinator = PublishCoordinator(
            store=artifact_store,
            destination=destination,
            lock_manager=InProcessLockManager(),
            notifier=notifier,
            preview_base_url=BASE_URL
        )
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)
        await hand_off(artifact_store, "101", "42", {"index.html": "v2"}, tmp_path)
        await coordinator.process("100")

        destination.replace = AsyncMock(side_effect=DestinationError("remote unavailable"))

        with pytest.raises(DestinationError):
            await coordinator.process("101")

        assert read_tree(site / "pr-42") == {"index.html": "v1"}
        assert len(notifier.calls) == 1


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_runs_leave_one_complete_tree(self, coordinator, artifact_store, site, tmp_path):
        trees = {
            "100": {"index.html": "run 100", "a.html": "a"},
            "101": {"index.html": "run 101", "b.html": "b"},
            "102": {"index.html": "run 102", "c.html": "c"},
        }
        for run_id, files in trees.items():
            await hand_off(artifact_store, run_id, "42", files, tmp_path)

        outcomes = await asyncio.gather(*(coordinator.process(run_id) for run_id in trees))

        final = read_tree(site / "pr-42")
        assert final in trees.values()
        published = [o for o in outcomes if o.status == PublishStatus.PUBLISHED]
        assert published
        assert final == trees[published[-1].run_id]

    @pytest.mark.asyncio
    async def test_concurrent_runs_for_different_targets(self, coordinator, artifact_store, site, tmp_path):
        for pr in range(1, 6):
            await hand_off(artifact_store, f"10{pr}", str(pr), {"index.html": f"pr {pr}"}, tmp_path)

        outcomes = await asyncio.gather(*(coordinator.process(f"10{pr}") for pr in range(1, 6)))

        assert {o.status for o in outcomes} == {PublishStatus.PUBLISHED}
        for pr in range(1, 6):
            assert read_tree(site / f"pr-{pr}") == {"index.html": f"pr {pr}"}


class TestPublishCommand:

    def _settings(self, tmp_path, **overrides):
        values = dict(
            artifact_backend="local",
            artifact_dir=tmp_path / "artifacts",
            destination_backend="local",
            destination_local_root=tmp_path / "site",
            notifier_backend="log",
            preview_base_url=BASE_URL
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)

    @pytest.mark.asyncio
    async def test_publishes_from_local_artifacts(self, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)
        args = argparse.Namespace(run_id="100", conclusion="succeeded")

        code = await run_publish(args, self._settings(tmp_path), DeployCredentials(_env_file=None))

        assert code == 0
        assert read_tree(site / "pr-42") == {"index.html": "v1"}

    @pytest.mark.asyncio
    async def test_malformed_pr_number_exits_nonzero(self, artifact_store, site, tmp_path):
        await hand_off(artifact_store, "100", "42; rm -rf /", {"index.html": "v1"}, tmp_path)
        args = argparse.Namespace(run_id="100", conclusion="succeeded")

        code = await run_publish(args, self._settings(tmp_path), DeployCredentials(_env_file=None))

        assert code == 1
        assert not site.exists()

    @pytest.mark.asyncio
    async def test_comment_backend_needs_token(self, artifact_store, tmp_path):
        await hand_off(artifact_store, "100", "42", {"index.html": "v1"}, tmp_path)
        args = argparse.Namespace(run_id="100", conclusion="succeeded")
        settings = self._settings(tmp_path, notifier_backend="azure_devops")

        code = await run_publish(args, settings, DeployCredentials(_env_file=None))

        assert code == 1
