"""
Knowledge Base Management routes for the Clinic Inbox.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.middleware.auth import require_role
from api.schemas import KnowledgeOut
from inbox.errors import NotFound, UpstreamServiceError
from ..services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/knowledge",
    tags=["knowledge"],
    dependencies=[Depends(require_role("admin"))],
)


class CreateKnowledgeRequest(BaseModel):
    content: str
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@router.get("", response_model=List[KnowledgeOut])
async def list_knowledge(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """Knowledge entries, newest first."""
    entries = await services.knowledge_store.list(limit=limit, offset=offset)
    return [KnowledgeOut.model_validate(e) for e in entries]


@router.post("", response_model=KnowledgeOut, status_code=201)
async def create_knowledge(request: CreateKnowledgeRequest, services: Services = Depends(get_services)):
    """Add an entry; it is embedded and indexed before the response."""
    try:
        entry = await services.knowledge_store.add(
            request.content,
            category=(request.category or "").strip() or None,
            metadata=request.metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamServiceError as e:
        logger.error(f"Knowledge entry not indexed ({e.category}): {e}")
        raise HTTPException(status_code=502, detail="Embedding or indexing service unavailable")
    return KnowledgeOut.model_validate(entry)


@router.delete("/{entry_id}", status_code=204)
async def delete_knowledge(entry_id: str, services: Services = Depends(get_services)):
    try:
        await services.knowledge_store.delete(entry_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Knowledge entry not found")
