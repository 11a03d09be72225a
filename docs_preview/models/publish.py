"""Publish coordination data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, StrictInt


class PublishMode(str, Enum):
    """Whether a run publishes a preview or deletes it."""

    PUBLISH = "publish"
    DELETE = "delete"


class PublishStatus(str, Enum):
    """Final status of a publish coordinator run."""

    PUBLISHED = "published"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    SUPERSEDED = "superseded"


class ValidPRNumber(BaseModel):
    """A PR number that passed validation."""

    value: StrictInt = Field(ge=0)


class InvalidPRNumber(BaseModel):
    """A PR number that failed validation, with the reason."""

    reason: str


class PublishTarget(BaseModel):
    """Namespaced destination subpath for one pull request's preview."""

    pr_number: StrictInt = Field(ge=0)

    @classmethod
    def for_pr(cls, validated: ValidPRNumber) -> "PublishTarget":
        return cls(pr_number=validated.value)

    @property
    def path(self) -> str:
        return f"pr-{self.pr_number}"

    def __str__(self) -> str:
        return self.path


class PublishJob(BaseModel):
    """Queued request to run the publish coordinator for a finished build."""

    run_id: str
    conclusion: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PublishOutcome(BaseModel):
    """Result of one publish coordinator run."""

    run_id: str
    pr_number: int
    target: str
    mode: PublishMode
    status: PublishStatus
    commit: Optional[str] = None
    preview_url: Optional[str] = None
    notified: bool = False
