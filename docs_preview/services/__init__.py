"""Business logic services package."""

from docs_preview.services.artifacts import (
    ArtifactError,
    ArtifactExistsError,
    ArtifactNotFoundError,
    LocalArtifactStore,
    RedisArtifactStore,
    UnsafeArtifactError,
)
from docs_preview.services.build_trigger import BuildTrigger, PathFilter
from docs_preview.services.coordinator import BuildNotSuccessfulError, PublishCoordinator
from docs_preview.services.destination import (
    DestinationError,
    DestinationPushError,
    GitDestination,
    LocalDestination,
)
from docs_preview.services.locking import (
    InProcessLockManager,
    LockTimeoutError,
    RedisLockManager,
)
from docs_preview.services.notifier import AzureDevOpsNotifier, LogNotifier, NotifierError
from docs_preview.services.redis_client import (
    RedisClient,
    RedisConnectionError,
    get_redis_client
)
from docs_preview.services.renderer import MkDocsRenderer, RenderError
from docs_preview.services.validation import MalformedPRNumberError, validate_pr_number

__all__ = [
    'ArtifactError',
    'ArtifactExistsError',
    'ArtifactNotFoundError',
    'LocalArtifactStore',
    'RedisArtifactStore',
    'UnsafeArtifactError',
    'BuildTrigger',
    'PathFilter',
    'BuildNotSuccessfulError',
    'PublishCoordinator',
    'DestinationError',
    'DestinationPushError',
    'GitDestination',
    'LocalDestination',
    'InProcessLockManager',
    'LockTimeoutError',
    'RedisLockManager',
    'AzureDevOpsNotifier',
    'LogNotifier',
    'NotifierError',
    'RedisClient',
    'RedisConnectionError',
    'get_redis_client',
    'MkDocsRenderer',
    'RenderError',
    'MalformedPRNumberError',
    'validate_pr_number',
]
