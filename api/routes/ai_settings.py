"""
AI behaviour settings routes.

Settings are a flat key/value map read fresh on every AI turn, so a
change applies to the next reply without a restart.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from api.middleware.auth import require_role
from config.settings import AISettings
from database.repositories import SettingsRepository
from ..services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/settings",
    tags=["settings"],
    dependencies=[Depends(require_role("admin"))],
)


@router.get("/ai")
async def get_ai_settings(services: Services = Depends(get_services)):
    """Stored values plus the effective typed view."""
    async with services.session_factory() as session:
        stored = await SettingsRepository(session).get_all()
    return {
        "settings": stored,
        "effective": AISettings.from_mapping(stored).to_dict(),
    }


@router.put("/ai")
async def update_ai_settings(updates: Dict[str, Any], services: Services = Depends(get_services)):
    """Upsert each key in the body."""
    if not updates:
        raise HTTPException(status_code=400, detail="No settings provided")

    async with services.session_factory() as session:
        async with session.begin():
            repo = SettingsRepository(session)
            await repo.upsert(updates)
        stored = await repo.get_all()

    logger.info(f"AI settings updated: {sorted(updates.keys())}")
    return {
        "settings": stored,
        "effective": AISettings.from_mapping(stored).to_dict(),
    }
