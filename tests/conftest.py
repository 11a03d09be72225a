"""
Shared fixtures.
"""

import io
import zipfile
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import fakeredis
import pytest

from docs_preview.models.build_run import (
    PR_NUMBER_ARTIFACT,
    RENDERED_DOCS_ARTIFACT,
    TOMBSTONE_MARKER,
)
from docs_preview.services.artifacts import LocalArtifactStore, pack_tree
from docs_preview.services.redis_client import RedisClient
from docs_preview.services.renderer import RenderError


@pytest.fixture
async def redis_client() -> AsyncGenerator[RedisClient, None]:
    """Create Redis client with fakeredis for testing."""
    client = RedisClient(redis_url="redis://localhost:6379/0")

    fake_redis = fakeredis.FakeAsyncRedis()
    client._client = fake_redis

    yield client

    await fake_redis.flushall()
    await fake_redis.aclose()


@pytest.fixture
def artifact_store(tmp_path: Path) -> LocalArtifactStore:
    return LocalArtifactStore(tmp_path / "artifacts")


class FakeRenderer:
    """Renderer that writes a fixed set of files."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files = files or {"index.html": "<h1>Docs</h1>"}
        self.calls: List[Path] = []

    async def render(self, output_dir: Path) -> None:
        self.calls.append(output_dir)
        for name, content in self.files.items():
            path = output_dir / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)


class FailingRenderer:
    async def render(self, output_dir: Path) -> None:
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / "partial.html").write_text("half")
        raise RenderError("mkdocs exited with status 1")


class RecordingNotifier:
    def __init__(self):
        self.calls: List[Tuple[int, str, str]] = []

    async def upsert_comment(self, pr_number: int, tag: str, body: str) -> None:
        self.calls.append((pr_number, tag, body))


class FailingNotifier:
    async def upsert_comment(self, pr_number: int, tag: str, body: str) -> None:
        raise RuntimeError("comment API unavailable")


def make_archive(files: Dict[str, str], tmp_path: Path) -> bytes:
    """Pack a dict of relative path -> content the way the build does."""
    root = tmp_path / f"tree-{len(list(tmp_path.iterdir()))}"
    root.mkdir()
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return pack_tree(root)


def make_raw_archive(members: Dict[str, bytes]) -> bytes:
    """Build a zip archive with arbitrary member names."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


async def hand_off(
    store: LocalArtifactStore,
    run_id: str,
    pr_number_text: Optional[str],
    files: Optional[Dict[str, str]],
    tmp_path: Path
) -> None:
    """Write the two artifacts of a build run; None skips an artifact."""
    if files is not None:
        await store.put(run_id, RENDERED_DOCS_ARTIFACT, make_archive(files, tmp_path))
    if pr_number_text is not None:
        await store.put(run_id, PR_NUMBER_ARTIFACT, f"{pr_number_text}\n".encode())


TOMBSTONE_FILES = {TOMBSTONE_MARKER: ""}


def read_tree(root: Path) -> Dict[str, str]:
    return {
        p.relative_to(root).as_posix(): p.read_text()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }
