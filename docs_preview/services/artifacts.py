"""
Artifact handoff between the untrusted build and the trusted publisher.

Artifacts are keyed by (run_id, name). They are written once by the build and
read, possibly several times, by the publisher. Two backends are provided:

- ``RedisArtifactStore`` keeps artifacts in Redis with a retention expiry.
- ``LocalArtifactStore`` keeps them under ``<root>/<run_id>/<name>``, which is
  what a CI platform produces when it downloads a run's artifacts to disk.

Rendered trees travel as zip archives (``pack_tree`` / ``unpack_tree``).
"""

import io
import os
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol

from docs_preview.exceptions import DocsPreviewError
from docs_preview.services.redis_client import RedisClient
from docs_preview.utils.logging import get_logger

logger = get_logger(__name__)

# Run ids come from the platform, but they still become key and path parts
_SAFE_PART_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.")


class ArtifactError(DocsPreviewError):
    """Base exception for artifact handoff errors."""
    pass


class ArtifactNotFoundError(ArtifactError):
    """Raised when a (run_id, name) pair has no artifact."""

    def __init__(self, run_id: str, name: str):
        self.run_id = run_id
        self.name = name
        super().__init__(f"Artifact {name!r} not found for run {run_id}")


class ArtifactExistsError(ArtifactError):
    """Raised when writing an artifact that was already written."""

    def __init__(self, run_id: str, name: str):
        self.run_id = run_id
        self.name = name
        super().__init__(f"Artifact {name!r} already exists for run {run_id}")


class UnsafeArtifactError(ArtifactError):
    """Raised when an artifact archive or key would escape its namespace."""
    pass


class ArtifactStore(Protocol):
    """Write-once, short-lived artifact storage keyed by (run_id, name)."""

    async def put(self, run_id: str, name: str, data: bytes) -> None:
        ...

    async def get(self, run_id: str, name: str) -> bytes:
        ...


def _check_part(value: str, what: str) -> str:
    if not value or value in (".", "..") or not set(value) <= _SAFE_PART_CHARS:
        raise UnsafeArtifactError(f"Invalid artifact {what}: {value!r}")
    return value


class RedisArtifactStore:
    """Artifact store backed by Redis write-once keys with expiry."""

    def __init__(self, redis_client: RedisClient, retention_days: int = 1):
        self._redis = redis_client
        self._ttl_seconds = max(1, retention_days) * 24 * 60 * 60

    async def put(self, run_id: str, name: str, data: bytes) -> None:
        _check_part(run_id, "run id")
        _check_part(name, "name")

        stored = await self._redis.put_artifact(run_id, name, data, self._ttl_seconds)
        if not stored:
            raise ArtifactExistsError(run_id, name)

        logger.info(
            f"Stored artifact {name} ({len(data)} bytes)",
            extra={"run_id": run_id}
        )

    async def get(self, run_id: str, name: str) -> bytes:
        _check_part(run_id, "run id")
        _check_part(name, "name")

        data = await self._redis.get_artifact(run_id, name)
        if data is None:
            raise ArtifactNotFoundError(run_id, name)

        return data


class LocalArtifactStore:
    """Artifact store backed by a directory tree."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, run_id: str, name: str) -> Path:
        return self.root / _check_part(run_id, "run id") / _check_part(name, "name")

    async def put(self, run_id: str, name: str, data: bytes) -> None:
        path = self._path(run_id, name)
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(path, "xb") as fh:
                fh.write(data)
        except FileExistsError as e:
            raise ArtifactExistsError(run_id, name) from e

        logger.info(
            f"Stored artifact {name} ({len(data)} bytes) at {path}",
            extra={"run_id": run_id}
        )

    async def get(self, run_id: str, name: str) -> bytes:
        path = self._path(run_id, name)

        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise ArtifactNotFoundError(run_id, name) from e


def pack_tree(root: Path) -> bytes:
    """
    Serialize a directory tree into a zip archive.

    Entries are written in sorted order with a fixed timestamp so the same
    tree always packs to the same bytes. Symlinks are not followed.
    """
    root = Path(root)
    buffer = io.BytesIO()

    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if path.is_symlink() or not path.is_file():
                    continue
                arcname = path.relative_to(root).as_posix()
                info = zipfile.ZipInfo(arcname, date_time=(1980, 1, 1, 0, 0, 0))
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                archive.writestr(info, path.read_bytes())

    return buffer.getvalue()


def _safe_member_path(destination: Path, name: str) -> Optional[Path]:
    member = PurePosixPath(name)

    if name.endswith("/"):
        return None
    if member.is_absolute() or "\\" in name:
        raise UnsafeArtifactError(f"Archive member has an absolute path: {name!r}")
    if any(part in ("", ".", "..") for part in member.parts):
        raise UnsafeArtifactError(f"Archive member escapes destination: {name!r}")

    return destination.joinpath(*member.parts)


def unpack_tree(data: bytes, destination: Path) -> int:
    """
    Extract a zip archive produced by ``pack_tree`` into ``destination``.

    Members with absolute paths or ``..`` segments are refused before anything
    is written.

    Returns:
        Number of files written

    Raises:
        UnsafeArtifactError: If the archive is invalid or a member escapes
    """
    destination = Path(destination)

    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise UnsafeArtifactError(f"Artifact is not a valid archive: {e}") from e

    with archive:
        members = []
        for info in archive.infolist():
            path = _safe_member_path(destination, info.filename)
            if path is not None:
                members.append((info, path))

        destination.mkdir(parents=True, exist_ok=True)
        for info, path in members:
            path.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, open(path, "wb") as dst:
                dst.write(src.read())

    return len(members)
