"""Build run data models and the artifact contract between build and publish."""

from enum import Enum

from pydantic import BaseModel

# Fixed artifact names, two per run
PR_NUMBER_ARTIFACT = "pr_number"
RENDERED_DOCS_ARTIFACT = "rendered-docs"

# Presence of this file in the rendered tree means "delete the preview"
TOMBSTONE_MARKER = ".delete-this-preview"


class PayloadKind(str, Enum):
    """What the rendered-docs artifact of a run contains."""

    RENDERED = "rendered"
    TOMBSTONE = "tombstone"


class BuildRun(BaseModel):
    """Outputs of one build trigger run."""

    run_id: str
    pr_number: str  # raw and untrusted; validated only on the publish side
    payload: PayloadKind
    file_count: int = 0
