"""
Build Trigger component.

Runs in the untrusted build context: it may execute content from the pull
request, so it is constructed from an artifact store and a renderer only and
never sees publishing credentials. It decides whether an event needs a render
or a tombstone, produces the tree and hands two artifacts to the store:

- ``pr_number``: the raw PR id as one line of text, never parsed here
- ``rendered-docs``: the rendered tree, or a tree holding only the
  tombstone marker
"""

import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from docs_preview.models.build_run import (
    PR_NUMBER_ARTIFACT,
    RENDERED_DOCS_ARTIFACT,
    TOMBSTONE_MARKER,
    BuildRun,
    PayloadKind,
)
from docs_preview.models.change_event import ChangeEvent, PRAction
from docs_preview.services.artifacts import ArtifactStore, pack_tree
from docs_preview.services.renderer import Renderer
from docs_preview.utils.logging import get_logger

logger = get_logger(__name__)

RENDER_ACTIONS = {PRAction.OPENED, PRAction.REOPENED, PRAction.SYNCHRONIZE}


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """
    Translate a path glob into a regex.

    ``**`` spans directories, ``*`` and ``?`` stay within one path segment.
    """
    i = 0
    parts = []
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts))


class PathFilter:
    """Matches changed paths against the watch patterns."""

    def __init__(self, patterns: Iterable[str]):
        self.patterns: List[str] = list(patterns)
        self._compiled = [_glob_to_regex(p) for p in self.patterns]

    def matches(self, path: str) -> bool:
        path = path.lstrip("/")
        return any(regex.fullmatch(path) for regex in self._compiled)

    def any_match(self, paths: Iterable[str]) -> bool:
        return any(self.matches(path) for path in paths)


@dataclass(frozen=True)
class BuildPlan:
    """What a build run for an event will produce."""

    pr_number_text: str
    payload: PayloadKind


class BuildTrigger:
    """Turns change events into rendered (or tombstone) artifacts."""

    def __init__(
        self,
        store: ArtifactStore,
        renderer: Renderer,
        path_filter: PathFilter
    ):
        self.store = store
        self.renderer = renderer
        self.path_filter = path_filter

    def plan(self, event: ChangeEvent) -> Optional[BuildPlan]:
        """
        Decide what to build for an event.

        Closed pull requests always get a tombstone, whatever changed. Other
        actions render only when a changed path matches the watch patterns.

        Returns:
            BuildPlan, or None when the event needs no build
        """
        pr_number_text = str(event.id)

        if event.action == PRAction.CLOSED:
            return BuildPlan(pr_number_text=pr_number_text, payload=PayloadKind.TOMBSTONE)

        if event.action in RENDER_ACTIONS and self.path_filter.any_match(event.changed_paths):
            return BuildPlan(pr_number_text=pr_number_text, payload=PayloadKind.RENDERED)

        return None

    async def run(self, event: ChangeEvent, run_id: str) -> Optional[BuildRun]:
        """
        Build and hand off artifacts for an event.

        Raises:
            RenderError: If rendering fails; no artifact is written then
        """
        build_plan = self.plan(event)
        if build_plan is None:
            logger.info(
                f"No watched path changed for {event.action.value} event, skipping build",
                extra={"run_id": run_id}
            )
            return None

        logger.info(
            f"Building {build_plan.payload.value} payload",
            extra={"run_id": run_id}
        )

        with tempfile.TemporaryDirectory(prefix="docs-preview-build-") as scratch:
            tree = Path(scratch) / RENDERED_DOCS_ARTIFACT

            if build_plan.payload == PayloadKind.TOMBSTONE:
                tree.mkdir()
                (tree / TOMBSTONE_MARKER).write_text("")
            else:
                await self.renderer.render(tree)
                tree.mkdir(exist_ok=True)

            file_count = sum(1 for p in tree.rglob("*") if p.is_file())
            archive = pack_tree(tree)

        # Both artifacts are written only once the tree exists
        await self.store.put(run_id, RENDERED_DOCS_ARTIFACT, archive)
        await self.store.put(run_id, PR_NUMBER_ARTIFACT, f"{build_plan.pr_number_text}\n".encode())

        return BuildRun(
            run_id=run_id,
            pr_number=build_plan.pr_number_text,
            payload=build_plan.payload,
            file_count=file_count
        )
