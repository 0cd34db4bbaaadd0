"""
Webhook Routes for the Clinic Inbox.

Receives LINE and Facebook Messenger webhooks, and answers the platform
verification handshake.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from inbox.errors import (
    AuthenticationError,
    ChannelNotConfigured,
    DataStoreError,
    MalformedPayload,
    UnsupportedPlatform,
)
from ..services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/webhooks/{platform}")
async def receive_webhook(platform: str, request: Request, services: Services = Depends(get_services)):
    """
    Receive a platform webhook.

    Stores every message event and schedules AI replies; the response is
    returned before any reply is generated.
    """
    raw_body = await request.body()

    try:
        result = await services.pipeline.handle_webhook(platform, raw_body, request.headers)
    except (UnsupportedPlatform, MalformedPayload) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AuthenticationError:
        raise HTTPException(status_code=401, detail="Invalid signature")
    except ChannelNotConfigured as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DataStoreError as e:
        logger.error(f"{platform} webhook failed to store events: {e}")
        raise HTTPException(status_code=500, detail="Failed to store events")

    return {"status": "ok", "received": result.received, "stored": result.persisted}


@router.get("/webhooks/{platform}")
async def verify_webhook(platform: str, request: Request, services: Services = Depends(get_services)):
    """
    Platform verification handshake.

    Facebook echoes hub.challenge when hub.verify_token matches; LINE only
    checks that the URL answers.
    """
    platform = platform.lower()
    if platform not in services.channel_providers:
        raise HTTPException(status_code=400, detail=f"Unsupported platform: {platform}")

    if platform == "facebook":
        params = request.query_params
        expected = services.settings.facebook_verify_token
        if (
            params.get("hub.mode") == "subscribe"
            and expected
            and params.get("hub.verify_token") == expected
        ):
            logger.info("Facebook webhook verified")
            return PlainTextResponse(params.get("hub.challenge", ""))
        logger.warning("Facebook webhook verification failed")
        raise HTTPException(status_code=403, detail="Verification failed")

    return {"status": "ok"}
