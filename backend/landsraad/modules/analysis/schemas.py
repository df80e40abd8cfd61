"""Landsraad analysis — Pydantic schemas for task records and the API contract."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Task Record: canonical unit of extracted information
# ---------------------------------------------------------------------------


class TaskDetails(BaseModel):
    """Details of one house's Landsraad task."""

    type: Literal["revealed", "unrevealed"] = Field(
        ..., description="'unrevealed' when the task exists but is not visible in-game yet"
    )
    kind: Literal["deliver", "kill"] | None = None
    request: str | None = Field(None, description="Required item/action, revealed tasks only")
    contribution: float = Field(0, ge=0, description="Points per delivered item / kill")
    rewards: dict[str, str] = Field(
        default_factory=dict, description="Reward tier (points) -> reward description"
    )


class TaskRecord(BaseModel):
    """One house + its task, as returned to the browser."""

    house: str | None = None
    task: TaskDetails


# ---------------------------------------------------------------------------
# API request / response
# ---------------------------------------------------------------------------


class AnalyzeRequest(BaseModel):
    """JSON body of POST /analysis/analyze."""

    model_config = ConfigDict(populate_by_name=True)

    images: list[str] = Field(..., description="Screenshots as data URLs (data:image/png;base64,...)")
    api_key: str | None = Field(None, alias="apiKey")


class AnalysisWarnings(BaseModel):
    """Non-fatal problems of a partially successful analysis."""

    model_config = ConfigDict(populate_by_name=True)

    failed_batches: list[str] = Field(default_factory=list, alias="failedBatches")


class AnalyzeResponse(BaseModel):
    """Successful analysis."""

    success: Literal[True] = True
    model: str
    result: list[TaskRecord] = []
    warnings: AnalysisWarnings | None = None


class FailureDetails(BaseModel):
    status: int | None = None
    text: str | None = None


class AnalyzeFailure(BaseModel):
    """Failed analysis (validation, all models exhausted, or internal error)."""

    success: Literal[False] = False
    error: str
    details: FailureDetails = Field(default_factory=FailureDetails)
    suggestion: str = ""
