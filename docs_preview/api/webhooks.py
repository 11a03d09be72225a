"""
Webhook endpoints for build completion events.

Azure DevOps ``build.complete`` service hooks land here. Successful runs of
the docs preview build definition are queued for the publish worker; every
other event is acknowledged and ignored.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Header, HTTPException, Request

from docs_preview.config import settings
from docs_preview.models.api_response import WebhookResponse
from docs_preview.models.publish import PublishJob
from docs_preview.services.coordinator import SUCCESS_CONCLUSIONS
from docs_preview.services.redis_client import get_redis_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

redis_client = get_redis_client()


def verify_webhook_signature(payload: bytes, signature: str) -> bool:
    """
    Verify the HMAC-SHA256 signature of a webhook payload.

    Accepts both the bare hex digest and the ``sha256=`` prefixed form.
    No configured secret means no payload verifies.
    """
    if not signature or not settings.webhook_secret:
        return False

    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]

    expected_signature = hmac.new(
        settings.webhook_secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()

    return hmac.compare_digest(signature, expected_signature)


@router.post("/azure-devops/build", response_model=WebhookResponse)
async def handle_build_webhook(
    request: Request,
    x_hub_signature: str = Header(None, alias="X-Hub-Signature-256")
) -> WebhookResponse:
    """
    Receive Azure DevOps build completion events.

    This endpoint:
    1. Validates the webhook signature
    2. Ignores other event types, other build definitions and failed runs
    3. Queues a publish job for the worker and returns immediately

    Raises:
        HTTPException: 401 on a bad signature, 400 on a malformed payload
    """
    payload = await request.body()

    if not verify_webhook_signature(payload, x_hub_signature):
        logger.warning("Invalid webhook signature received")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload_json: Dict[str, Any] = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if not isinstance(payload_json, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event_type = payload_json.get("eventType", "")
    if event_type != "build.complete":
        logger.info(f"Ignoring event type: {event_type}")
        return WebhookResponse(status="ignored", message=f"Event type {event_type} not processed")

    resource = payload_json.get("resource") or {}
    definition = (resource.get("definition") or {}).get("name", "")
    run_id = resource.get("id")
    result = str(resource.get("result", ""))

    if definition != settings.build_definition_name:
        logger.info(f"Ignoring build definition: {definition}")
        return WebhookResponse(status="ignored", message=f"Build definition {definition} not processed")

    if not isinstance(run_id, int) or isinstance(run_id, bool):
        logger.error("Invalid build payload: missing run id")
        raise HTTPException(status_code=400, detail="Invalid build event payload")

    if result.lower() not in SUCCESS_CONCLUSIONS:
        logger.info(f"Build run {run_id} finished with {result!r}, nothing to publish")
        return WebhookResponse(
            status="ignored",
            message=f"Build run {run_id} did not succeed",
            run_id=str(run_id)
        )

    try:
        await redis_client.enqueue_publish_job(PublishJob(run_id=str(run_id), conclusion=result))
    except Exception as e:
        logger.error(f"Error queueing publish job for run {run_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error processing webhook")

    return WebhookResponse(
        status="accepted",
        message=f"Build run {run_id} queued for publishing",
        run_id=str(run_id)
    )
