"""API response data models."""

from typing import Optional

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    """Response from webhook handler."""

    status: str
    message: str
    run_id: Optional[str] = None
