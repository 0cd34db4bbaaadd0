"""
Authentication for the staff-facing Inbox API.

Supports both API key and JWT bearer token authentication.
Webhook endpoints are authenticated by platform signatures instead.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request, Security, WebSocket, status
from fastapi.security import APIKeyHeader, APIKeyQuery, HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config.settings import Settings

logger = logging.getLogger(__name__)

# ── Security schemes ───────────────────────────────────────────────
API_KEY_HEADER = "X-API-Key"
API_KEY_QUERY = "api_key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)
api_key_query = APIKeyQuery(name=API_KEY_QUERY, auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)

JWT_EXPIRE_MINUTES = 60 * 12


# ── JWT ────────────────────────────────────────────────────────────

def create_jwt_token(
    data: Dict[str, Any],
    settings: Settings,
    expire_minutes: int = JWT_EXPIRE_MINUTES,
) -> Tuple[str, int]:
    """
    Create a JWT token for a staff member.

    Returns:
        Tuple of (token_string, expires_in_seconds)
    """
    expires = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {**data, "exp": expires}
    token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return token, expire_minutes * 60


def decode_jwt_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {e}",
        )


# ── Dependencies ──────────────────────────────────────────────────

def authenticate(settings: Settings, token: Optional[str], api_key: Optional[str]) -> Dict[str, Any]:
    """
    Resolve a staff principal from a bearer token or API key.

    Raises:
        HTTPException: 401 when credentials are missing or wrong
    """
    if token:
        return decode_jwt_token(token, settings)

    expected_key = settings.api_key
    if not expected_key:
        # Dev mode: no key configured
        return {"sub": "anonymous", "role": "admin"}

    if api_key and api_key == expected_key:
        return {"sub": "api_key_user", "role": "admin"}

    if api_key:
        logger.warning("Invalid API key attempt")

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    header_key: Optional[str] = Security(api_key_header),
    query_key: Optional[str] = Security(api_key_query),
) -> Dict[str, Any]:
    """
    Get current staff user from JWT token or API key.

    Returns user payload dict with at least: sub, role
    """
    settings = request.app.state.services.settings
    token = credentials.credentials if credentials else None
    return authenticate(settings, token, header_key or query_key)


def authenticate_websocket(websocket: WebSocket) -> Optional[Dict[str, Any]]:
    """Authenticate a console socket from its query string; None when rejected."""
    settings = websocket.app.state.services.settings
    token = websocket.query_params.get("token")
    api_key = websocket.query_params.get(API_KEY_QUERY) or websocket.headers.get(API_KEY_HEADER)
    try:
        return authenticate(settings, token, api_key)
    except HTTPException:
        return None


def require_role(*roles: str) -> Callable:
    """
    Factory that returns a dependency requiring specific roles.

    Usage:
        @router.put("/settings/ai", dependencies=[Depends(require_role("admin"))])
    """
    async def _check_role(user: Dict = Depends(get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of roles: {', '.join(roles)}",
            )
        return user
    return _check_role
