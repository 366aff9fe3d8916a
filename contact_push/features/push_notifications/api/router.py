"""
Debug routes for contact push notifications.

Views over the push configuration, stored contact tokens, recent delivery
tracking and the job queue, plus a test send to a single contact.
"""

from fastapi import APIRouter, HTTPException, Query

from contact_push.config import settings
from contact_push.features.push_notifications.jobs.push_job import QUEUE_NAME
from contact_push.features.push_notifications.repository.message_repository import (
    message_repository,
)
from contact_push.features.push_notifications.services.diagnostics import (
    audit_push_tokens,
    audit_recent_messages,
    check_push_configuration,
    run_test_notification,
)
from contact_push.infrastructure.observability.logging import get_logger
from contact_push.services.redis_client import fast_redis

logger = get_logger(__name__)

router = APIRouter(prefix="/debug/push", tags=["debug-push"])


@router.get("/config")
async def push_configuration() -> dict:
    """Which push channels are usable and why not."""
    return check_push_configuration(settings)


@router.get("/tokens")
async def push_token_audit(
    limit: int = Query(10000, ge=1, le=100000),
    window_minutes: int = Query(60, ge=1, le=10080),
) -> dict:
    """Token shape counts and delivery tracking for recent outgoing messages."""
    try:
        tokens = await message_repository.contact_push_tokens(limit)
        tracking = await message_repository.recent_push_tracking(window_minutes)
    except Exception as e:
        logger.error("Push token audit failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=503, detail="Token audit unavailable") from e

    report = audit_push_tokens(tokens)
    report["recent_messages"] = audit_recent_messages(tracking, window_minutes)
    return report


@router.post("/test/{contact_id}")
async def push_test_notification(contact_id: int) -> dict:
    """Send a test notification to one contact and report the provider status."""
    try:
        contact = await message_repository.get_contact(contact_id)
    except Exception as e:
        logger.error(
            "Contact lookup for test push failed",
            contact_id=contact_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(status_code=503, detail="Contact lookup unavailable") from e

    if contact is None:
        raise HTTPException(status_code=404, detail=f"Contact {contact_id} not found")

    return await run_test_notification(contact, settings.push_config())


@router.get("/queue")
async def push_queue() -> dict:
    """Number of contact push jobs waiting to be picked up."""
    try:
        pending = await fast_redis.queue_length(QUEUE_NAME)
    except Exception as e:
        logger.error("Push queue inspection failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=503, detail="Queue unavailable") from e

    return {"queue": QUEUE_NAME, "pending_jobs": pending}
