"""
Staff console routes for the Clinic Inbox.

Conversation list, message history, AI mode toggle and staff replies.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.middleware.auth import get_current_user
from api.schemas import ConversationOut, ConversationSummary, MessageOut
from database.repositories import ConversationRepository
from inbox.errors import AIModeConflict, DataStoreError, NotFound
from ..services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/console",
    tags=["console"],
    dependencies=[Depends(get_current_user)],
)


class AIModeRequest(BaseModel):
    ai_mode: bool


class AgentMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """Conversations, most recent activity first."""
    async with services.session_factory() as session:
        conversations = await ConversationRepository(session).list_recent(limit=limit, offset=offset)
    return [ConversationSummary.model_validate(c) for c in conversations]


@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageOut])
async def list_messages(
    conversation_id: str,
    limit: int = Query(200, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    """Messages of a conversation, oldest first."""
    async with services.session_factory() as session:
        repo = ConversationRepository(session)
        if await repo.get_by_id(conversation_id) is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        messages = await repo.get_messages(conversation_id, limit=limit)
    return [MessageOut.model_validate(m) for m in messages]


@router.post("/conversations/{conversation_id}/ai-mode", response_model=ConversationOut)
async def set_ai_mode(
    conversation_id: str,
    request: AIModeRequest,
    services: Services = Depends(get_services),
):
    """Hand a conversation to staff, or back to the AI."""
    try:
        conversation = await services.handoff.set_ai_mode(conversation_id, request.ai_mode)
    except NotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationOut.model_validate(conversation)


@router.post("/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201)
async def send_agent_message(
    conversation_id: str,
    request: AgentMessageRequest,
    services: Services = Depends(get_services),
):
    """Send a staff reply; only allowed while AI mode is off."""
    try:
        message = await services.pipeline.send_agent_message(conversation_id, request.content)
    except NotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except AIModeConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DataStoreError as e:
        logger.error(f"Staff reply for {conversation_id} not stored: {e}")
        raise HTTPException(status_code=500, detail="Failed to store message")
    return MessageOut.model_validate(message)
