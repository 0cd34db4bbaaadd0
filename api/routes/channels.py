"""
Connected channel administration.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from api.middleware.auth import require_role
from api.schemas import ChannelOut
from database.repositories import ChannelRepository
from ..services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/channels",
    tags=["channels"],
    dependencies=[Depends(require_role("admin"))],
)


class CreateChannelRequest(BaseModel):
    platform: str = Field(..., min_length=1)
    platform_account_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    channel_secret: Optional[str] = None
    name: Optional[str] = None


@router.get("", response_model=List[ChannelOut])
async def list_channels(services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        channels = await ChannelRepository(session).list_all()
    return [ChannelOut.model_validate(c) for c in channels]


@router.post("", response_model=ChannelOut, status_code=201)
async def create_channel(request: CreateChannelRequest, services: Services = Depends(get_services)):
    """Connect a LINE Official Account or Facebook Page."""
    platform = request.platform.strip().lower()
    if platform not in services.channel_providers:
        raise HTTPException(status_code=400, detail=f"Unsupported platform: {request.platform}")
    if not (request.channel_secret or "").strip():
        # Webhooks for a channel without a secret can never be verified
        raise HTTPException(status_code=400, detail="channel_secret is required")

    try:
        async with services.session_factory() as session:
            async with session.begin():
                channel = await ChannelRepository(session).create(
                    platform=platform,
                    platform_account_id=request.platform_account_id.strip(),
                    access_token=request.access_token,
                    channel_secret=request.channel_secret.strip(),
                    name=request.name,
                )
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Channel already connected")

    logger.info(f"Connected {platform} channel {channel.platform_account_id}")
    return ChannelOut.model_validate(channel)


@router.delete("/{channel_id}", status_code=204)
async def delete_channel(channel_id: str, services: Services = Depends(get_services)):
    try:
        async with services.session_factory() as session:
            async with session.begin():
                deleted = await ChannelRepository(session).delete(channel_id)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Channel is still referenced")
    if not deleted:
        raise HTTPException(status_code=404, detail="Channel not found")
    logger.info(f"Disconnected channel {channel_id}")
