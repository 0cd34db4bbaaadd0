"""
Authentication routes for the Inbox API.

Exchanges the staff API key for a short-lived JWT, which browser
consoles pass to the WebSocket feed as ?token=.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.middleware.auth import create_jwt_token, get_current_user
from ..services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class TokenRequest(BaseModel):
    staff_name: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    role: str


@router.post("/token", response_model=TokenResponse)
async def issue_token(
    request: TokenRequest,
    user: Dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Issue a JWT for an already authenticated staff member."""
    token_data = {
        "sub": request.staff_name or user.get("sub"),
        "role": user.get("role", "agent"),
    }
    token, expires_in = create_jwt_token(token_data, services.settings)
    logger.info(f"Issued console token for {token_data['sub']}")
    return TokenResponse(access_token=token, expires_in=expires_in, role=token_data["role"])
