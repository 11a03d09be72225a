"""Pull request change event data models."""

from enum import Enum
from typing import Set

from pydantic import BaseModel, Field


class PRAction(str, Enum):
    """Lifecycle action carried by a pull request event."""

    OPENED = "opened"
    REOPENED = "reopened"
    SYNCHRONIZE = "synchronize"
    CLOSED = "closed"


class ChangeEvent(BaseModel):
    """Pull request event that may trigger a docs preview build."""

    id: int = Field(ge=0)  # attacker-influenced, only ever written out as text
    action: PRAction
    changed_paths: Set[str] = set()
