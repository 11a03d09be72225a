"""
Construction of the build and publish sides from settings.

The build side is assembled from ``Settings`` alone. Only the publish side
takes ``DeployCredentials``.
"""

from pathlib import Path
from typing import Optional

from docs_preview.config import DeployCredentials, Settings
from docs_preview.services.artifacts import (
    ArtifactStore,
    LocalArtifactStore,
    RedisArtifactStore,
)
from docs_preview.services.build_trigger import BuildTrigger, PathFilter
from docs_preview.services.coordinator import PublishCoordinator
from docs_preview.services.destination import (
    DestinationStore,
    GitDestination,
    LocalDestination,
)
from docs_preview.services.locking import (
    InProcessLockManager,
    LockManager,
    RedisLockManager,
)
from docs_preview.services.notifier import (
    AzureDevOpsNotifier,
    LogNotifier,
    Notifier,
    NotifierError,
)
from docs_preview.services.redis_client import RedisClient
from docs_preview.services.renderer import MkDocsRenderer


def build_artifact_store(settings: Settings, redis_client: Optional[RedisClient] = None) -> ArtifactStore:
    if settings.artifact_backend == "local":
        return LocalArtifactStore(settings.artifact_dir)

    if redis_client is None:
        raise ValueError("The redis artifact backend needs a Redis client")
    return RedisArtifactStore(redis_client, retention_days=settings.artifact_retention_days)


def build_build_trigger(
    settings: Settings,
    store: ArtifactStore,
    source_dir: Optional[Path] = None
) -> BuildTrigger:
    """Assemble the untrusted build side."""
    renderer = MkDocsRenderer(
        command=settings.render_command,
        source_dir=source_dir,
        timeout_seconds=settings.render_timeout_seconds
    )
    return BuildTrigger(store, renderer, PathFilter(settings.watch_paths))


def build_destination(settings: Settings, credentials: DeployCredentials) -> DestinationStore:
    if settings.destination_backend == "local":
        return LocalDestination(settings.destination_local_root)

    return GitDestination(
        repo_url=settings.destination_repo_url,
        workdir=settings.destination_workdir,
        branch=settings.destination_branch,
        author_name=settings.git_author_name,
        author_email=settings.git_author_email,
        ssh_key_path=credentials.ssh_key_path,
        conflict_attempts=settings.push_conflict_attempts
    )


def build_notifier(settings: Settings, credentials: DeployCredentials) -> Notifier:
    if settings.notifier_backend == "log":
        return LogNotifier()

    if credentials.azure_devops_pat is None:
        raise NotifierError("DOCS_PREVIEW_DEPLOY_AZURE_DEVOPS_PAT is required for the azure_devops notifier")

    return AzureDevOpsNotifier(
        organization=settings.azure_devops_org,
        personal_access_token=credentials.azure_devops_pat.get_secret_value(),
        repository_id=settings.azure_devops_repository_id,
        project=settings.azure_devops_project
    )


def build_lock_manager(settings: Settings, redis_client: Optional[RedisClient] = None) -> LockManager:
    if redis_client is None:
        return InProcessLockManager(
            lock_scope=settings.lock_scope,
            blocking_timeout=settings.lock_blocking_timeout_seconds,
            supersede_queued=settings.supersede_queued
        )

    return RedisLockManager(
        redis_client,
        lock_scope=settings.lock_scope,
        timeout=settings.lock_timeout_seconds,
        blocking_timeout=settings.lock_blocking_timeout_seconds,
        supersede_queued=settings.supersede_queued
    )


def build_publish_coordinator(
    settings: Settings,
    credentials: DeployCredentials,
    redis_client: Optional[RedisClient] = None
) -> PublishCoordinator:
    """Assemble the trusted publish side."""
    return PublishCoordinator(
        store=build_artifact_store(settings, redis_client),
        destination=build_destination(settings, credentials),
        lock_manager=build_lock_manager(settings, redis_client),
        notifier=build_notifier(settings, credentials),
        preview_base_url=settings.preview_base_url,
        comment_tag=settings.comment_tag,
        help_url=settings.local_preview_help_url,
        external_call_retries=settings.external_call_retries,
        retry_base_delay=settings.retry_base_delay
    )
