from __future__ import annotations

from pydantic import BaseModel, Field


class TrackerConfig(BaseModel):
    """Static data the browser needs to key and seed its weekly state."""

    week_key: str = Field(..., description="Local-storage key suffix, e.g. '2026-W42'")
    houses: list[str]
