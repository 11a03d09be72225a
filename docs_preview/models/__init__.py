"""Data models for the docs preview deployer."""

from .api_response import WebhookResponse
from .build_run import (
    PR_NUMBER_ARTIFACT,
    RENDERED_DOCS_ARTIFACT,
    TOMBSTONE_MARKER,
    BuildRun,
    PayloadKind,
)
from .change_event import ChangeEvent, PRAction
from .publish import (
    InvalidPRNumber,
    PublishJob,
    PublishMode,
    PublishOutcome,
    PublishStatus,
    PublishTarget,
    ValidPRNumber,
)

__all__ = [
    # Change event models
    "ChangeEvent",
    "PRAction",
    # Build run models
    "BuildRun",
    "PayloadKind",
    "PR_NUMBER_ARTIFACT",
    "RENDERED_DOCS_ARTIFACT",
    "TOMBSTONE_MARKER",
    # Publish models
    "PublishMode",
    "PublishStatus",
    "PublishTarget",
    "PublishJob",
    "PublishOutcome",
    "ValidPRNumber",
    "InvalidPRNumber",
    # API response models
    "WebhookResponse",
]
