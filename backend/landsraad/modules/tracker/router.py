from __future__ import annotations

from fastapi import APIRouter

from landsraad.core.config import settings
from landsraad.modules.tracker.schemas import TrackerConfig
from landsraad.modules.tracker.service import week_key

router = APIRouter(prefix="/tracker", tags=["tracker"])


@router.get("/config", response_model=TrackerConfig)
async def get_tracker_config() -> TrackerConfig:
    return TrackerConfig(week_key=week_key(), houses=settings.houses)
