"""
Destination store for published previews.

The destination holds one directory per target (``pr-<n>``) plus a root
``.nojekyll`` marker so the hosting layer serves files as they are. Every
write replaces one target's subtree entirely: files missing from the new tree
disappear, and other targets are never touched.

Backends:
- ``GitDestination`` pushes a single commit per replacement to a git
  repository through GitPython. The remote accepts the commit whole or not
  at all.
- ``LocalDestination`` writes into a directory, staging the new tree beside
  the old one and swapping it in with renames.
"""

import asyncio
import hashlib
import os
import shutil
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

import git
import git.exc
from git.remote import PushInfo

from docs_preview.exceptions import DocsPreviewError
from docs_preview.models.publish import PublishTarget
from docs_preview.utils.logging import get_logger

logger = get_logger(__name__)

ROOT_MARKER = ".nojekyll"

_PUSH_FAILURE_FLAGS = PushInfo.ERROR | PushInfo.REMOTE_REJECTED | PushInfo.REMOTE_FAILURE


class DestinationError(DocsPreviewError):
    """Raised when the destination cannot be updated."""
    pass


class DestinationPushError(DestinationError):
    """Raised when the remote refuses or fails a push."""
    pass


@dataclass(frozen=True)
class ReplaceResult:
    """Outcome of replacing one target's subtree."""

    changed: bool
    revision: Optional[str] = None
    file_count: int = 0


class DestinationStore(Protocol):
    async def replace(
        self,
        target: PublishTarget,
        source_dir: Optional[Path],
        message: str
    ) -> ReplaceResult:
        """
        Replace ``target`` with the contents of ``source_dir``.

        ``source_dir=None`` removes the target.
        """
        ...


def _count_files(root: Optional[Path]) -> int:
    if root is None or not root.exists():
        return 0
    return sum(1 for p in root.rglob("*") if p.is_file())


def _tree_digest(root: Path) -> Optional[str]:
    """Content digest of a tree, or None when it does not exist."""
    if not root.exists():
        return None

    digest = hashlib.sha256()
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        digest.update(path.relative_to(root).as_posix().encode())
        digest.update(b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


class LocalDestination:
    """Destination store backed by a local directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    async def replace(
        self,
        target: PublishTarget,
        source_dir: Optional[Path],
        message: str
    ) -> ReplaceResult:
        return await asyncio.to_thread(self._replace_sync, target, source_dir, message)

    def _replace_sync(
        self,
        target: PublishTarget,
        source_dir: Optional[Path],
        message: str
    ) -> ReplaceResult:
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / ROOT_MARKER).touch()

        final = self.root / target.path
        token = uuid.uuid4().hex
        staging = self.root / f".{target.path}.staging-{token}"
        trash = self.root / f".{target.path}.trash-{token}"

        before = _tree_digest(final)
        swapped = False

        try:
            if source_dir is not None:
                shutil.copytree(source_dir, staging)
                if _tree_digest(staging) == before:
                    logger.info(f"{target} already up to date", extra={"target": target.path})
                    return ReplaceResult(changed=False, file_count=_count_files(staging))

            elif before is None:
                logger.info(f"{target} does not exist, nothing to delete", extra={"target": target.path})
                return ReplaceResult(changed=False)

            if final.exists():
                os.replace(final, trash)
            if source_dir is not None:
                try:
                    os.replace(staging, final)
                except OSError:
                    # Put the previous preview back before reporting the failure
                    if trash.exists():
                        os.replace(trash, final)
                    raise
            swapped = True

        except OSError as e:
            raise DestinationError(f"Failed to replace {target}: {e}") from e

        finally:
            shutil.rmtree(staging, ignore_errors=True)
            if swapped:
                shutil.rmtree(trash, ignore_errors=True)
            elif trash.exists():
                logger.error(
                    f"Could not restore {target}; previous preview kept at {trash}",
                    extra={"target": target.path}
                )

        logger.info(f"{message}", extra={"target": target.path})
        return ReplaceResult(changed=True, file_count=_count_files(final if source_dir else None))


class GitDestination:
    """
    Destination store backed by a git repository.

    Keeps a working clone in ``workdir``. Each replacement resets the clone to
    the remote branch, swaps the target directory, commits and pushes. When
    the push is rejected because another target was pushed first, the
    replacement is redone on the new remote head, up to ``conflict_attempts``
    times. Any other failure propagates and the clone is reset.
    """

    def __init__(
        self,
        repo_url: str,
        workdir: Path,
        branch: str = "main",
        author_name: str = "docs-preview[bot]",
        author_email: str = "docs-preview[bot]@users.noreply.github.io",
        ssh_key_path: Optional[Path] = None,
        conflict_attempts: int = 3
    ):
        if not repo_url:
            raise DestinationError("No destination repository configured")

        self.repo_url = repo_url
        self.workdir = Path(workdir)
        self.branch = branch
        self.author_name = author_name
        self.author_email = author_email
        self.ssh_key_path = ssh_key_path
        self.conflict_attempts = max(1, conflict_attempts)
        # Targets may be locked independently; the clone itself is shared
        self._checkout_lock = threading.Lock()

    def _git_env(self) -> Dict[str, str]:
        if self.ssh_key_path is None:
            return {}
        return {
            "GIT_SSH_COMMAND": (
                f"ssh -i {self.ssh_key_path} -o IdentitiesOnly=yes "
                "-o StrictHostKeyChecking=accept-new"
            )
        }

    async def replace(
        self,
        target: PublishTarget,
        source_dir: Optional[Path],
        message: str
    ) -> ReplaceResult:
        return await asyncio.to_thread(self._replace_sync, target, source_dir, message)

    def _replace_sync(
        self,
        target: PublishTarget,
        source_dir: Optional[Path],
        message: str
    ) -> ReplaceResult:
        with self._checkout_lock:
            try:
                return self._replace_with_conflict_retry(target, source_dir, message)
            except git.exc.GitError as e:
                self._discard_local_changes()
                raise DestinationError(f"Git operation failed for {target}: {e}") from e
            except DestinationError:
                self._discard_local_changes()
                raise

    def _replace_with_conflict_retry(
        self,
        target: PublishTarget,
        source_dir: Optional[Path],
        message: str
    ) -> ReplaceResult:
        for attempt in range(self.conflict_attempts):
            repo = self._prepare_checkout()
            revision = self._apply(repo, target, source_dir, message)

            if revision is None:
                logger.info(f"{target} already up to date", extra={"target": target.path})
                return ReplaceResult(changed=False, file_count=_count_files(source_dir))

            if self._push(repo):
                logger.info(
                    f"Pushed {revision[:12]} to {self.branch}: {message}",
                    extra={"target": target.path}
                )
                return ReplaceResult(changed=True, revision=revision, file_count=_count_files(source_dir))

            logger.warning(
                f"Push rejected for {target} (attempt {attempt + 1}/{self.conflict_attempts}), "
                "remote moved; reapplying on the new head",
                extra={"target": target.path}
            )

        raise DestinationPushError(
            f"Push for {target} kept being rejected after {self.conflict_attempts} attempts"
        )

    def _prepare_checkout(self) -> git.Repo:
        env = self._git_env()

        if (self.workdir / ".git").exists():
            repo = git.Repo(self.workdir)
            with repo.git.custom_environment(**env):
                repo.remotes.origin.fetch(self.branch)
            repo.git.checkout("-B", self.branch, f"origin/{self.branch}")
            repo.git.reset("--hard", f"origin/{self.branch}")
            repo.git.clean("-ffdx")
        else:
            self.workdir.parent.mkdir(parents=True, exist_ok=True)
            repo = git.Repo.clone_from(self.repo_url, self.workdir, branch=self.branch, env=env)

        with repo.config_writer() as config:
            config.set_value("user", "name", self.author_name)
            config.set_value("user", "email", self.author_email)

        return repo

    def _apply(
        self,
        repo: git.Repo,
        target: PublishTarget,
        source_dir: Optional[Path],
        message: str
    ) -> Optional[str]:
        """Swap the target directory in the clone and commit; None if nothing changed."""
        target_dir = self.workdir / target.path

        if target_dir.exists():
            shutil.rmtree(target_dir)
        if source_dir is not None:
            shutil.copytree(source_dir, target_dir)

        (self.workdir / ROOT_MARKER).touch()

        repo.git.add("-A")
        if not repo.is_dirty(index=True, working_tree=False, untracked_files=False):
            return None

        repo.git.commit("-m", message)
        return repo.head.commit.hexsha

    def _push(self, repo: git.Repo) -> bool:
        """
        Push HEAD to the branch.

        Returns:
            True when pushed, False when rejected as non-fast-forward

        Raises:
            DestinationPushError: For any other push failure
        """
        with repo.git.custom_environment(**self._git_env()):
            results = repo.remotes.origin.push(f"HEAD:refs/heads/{self.branch}")

        if not results:
            raise DestinationPushError("Push returned no result")

        for info in results:
            if info.flags & PushInfo.REJECTED:
                return False
            if info.flags & _PUSH_FAILURE_FLAGS:
                raise DestinationPushError(f"Push failed: {info.summary.strip()}")

        return True

    def _discard_local_changes(self) -> None:
        if not (self.workdir / ".git").exists():
            return
        try:
            repo = git.Repo(self.workdir)
            repo.git.reset("--hard", f"origin/{self.branch}")
            repo.git.clean("-ffdx")
        except git.exc.GitError as e:
            logger.warning(f"Could not reset destination checkout: {e}")
