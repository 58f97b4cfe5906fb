"""Clerk webhook endpoint for user profile sync.

Handles Svix-signed Clerk events:
- user.created: Create user on the free plan (idempotent)
- user.updated: Refresh profile fields
- user.deleted: Soft delete

Unknown event types are acknowledged and ignored so Clerk does not retry them.
"""

import json

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from pixorly.api.dependencies import get_uow_factory, validate_webhook_signature
from pixorly.services.user_sync import ClerkProfile, delete_user, upsert_user

logger = structlog.get_logger()
router = APIRouter()


@router.post("/clerk")
async def receive_clerk_webhook(
    raw_body: bytes = Depends(validate_webhook_signature),
    uow_factory=Depends(get_uow_factory),
):
    """Receive a Clerk user event.

    Returns:
        200: {"status": "success", "event": <type>} once applied
        200: {"status": "ignored", ...} for event types we do not handle

    Raises:
        HTTPException 400: Malformed payload
        HTTPException 401: Signature validation failed (from dependency)
    """
    try:
        payload = json.loads(raw_body)
        event_type = payload["type"]
        data = payload["data"]
        if not isinstance(data, dict):
            raise TypeError("data must be an object")
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("webhook.invalid_payload", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    logger.info("webhook.received", event_type=event_type, external_id=data.get("id"))

    try:
        if event_type in ("user.created", "user.updated"):
            profile = ClerkProfile.from_event_data(data)
            async with await uow_factory() as uow:
                await upsert_user(uow, profile, restore=event_type == "user.created")
        elif event_type == "user.deleted":
            external_id = data.get("id")
            if not external_id:
                raise ValueError("Missing user id in event data")
            async with await uow_factory() as uow:
                await delete_user(uow, external_id)
        else:
            return {"status": "ignored", "event": event_type}
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"status": "success", "event": event_type}
