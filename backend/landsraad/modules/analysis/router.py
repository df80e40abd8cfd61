"""Landsraad Analysis API — /analysis/ endpoints.

  - /analyze         — JSON body with screenshots as data URLs
  - /analyze-upload  — multipart upload of screenshot files

Both run the same pipeline: batch fan-out per model -> normalize -> dedupe.
"""

from __future__ import annotations

import base64

import structlog
from fastapi import APIRouter, Depends, File, Header, UploadFile
from fastapi.responses import JSONResponse

from landsraad.core.config import settings
from landsraad.modules.analysis.schemas import (
    AnalysisWarnings,
    AnalyzeFailure,
    AnalyzeRequest,
    AnalyzeResponse,
    FailureDetails,
)
from landsraad.modules.analysis.service import AnalysisInputError, AnalysisService

logger = structlog.get_logger()

router = APIRouter(prefix="/analysis", tags=["analysis"])


def get_analysis_service() -> AnalysisService:
    return AnalysisService(settings)


def _failure(status_code: int, error: str, suggestion: str = "", text: str | None = None) -> JSONResponse:
    body = AnalyzeFailure(
        error=error,
        details=FailureDetails(status=status_code, text=text),
        suggestion=suggestion,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def _run(service: AnalysisService, images: list[str], api_key: str | None) -> AnalyzeResponse | JSONResponse:
    try:
        outcome = await service.analyze(images, api_key=api_key)
    except AnalysisInputError as exc:
        logger.info("Analysis request rejected", reason=str(exc))
        return _failure(400, str(exc), exc.suggestion)
    except Exception as exc:
        logger.error("Analysis crashed", error=str(exc), exc_info=True)
        return _failure(
            500,
            "Internal server error during analysis.",
            "Retry the upload. If the problem persists, enter the task data manually.",
            text="Unexpected server error; details were logged.",
        )

    if not outcome.success:
        return _failure(
            outcome.status or 502,
            outcome.error or "Analysis failed.",
            outcome.suggestion or "",
            text=outcome.detail,
        )

    warnings = AnalysisWarnings(failed_batches=outcome.failed_batches) if outcome.failed_batches else None
    return AnalyzeResponse(model=outcome.model or "", result=outcome.records, warnings=warnings)


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    response_model_exclude_none=True,
    responses={400: {"model": AnalyzeFailure}, 502: {"model": AnalyzeFailure}},
)
async def analyze_screenshots(
    body: AnalyzeRequest,
    x_openai_key: str | None = Header(None),
    service: AnalysisService = Depends(get_analysis_service),
) -> AnalyzeResponse | JSONResponse:
    """Extract Landsraad tasks from screenshots sent as data URLs.

    Credential precedence: ``apiKey`` in the body, then the ``x-openai-key``
    header, then the server's environment.
    """
    logger.info("Analysis request", images=len(body.images))
    return await _run(service, body.images, body.api_key or x_openai_key)


@router.post(
    "/analyze-upload",
    response_model=AnalyzeResponse,
    response_model_exclude_none=True,
    responses={400: {"model": AnalyzeFailure}, 502: {"model": AnalyzeFailure}},
)
async def analyze_uploaded_screenshots(
    files: list[UploadFile] = File(..., description="Screenshots (PNG, JPEG, WebP)"),
    x_openai_key: str | None = Header(None),
    service: AnalysisService = Depends(get_analysis_service),
) -> AnalyzeResponse | JSONResponse:
    """Upload screenshot files and extract Landsraad tasks."""
    max_bytes = settings.analysis_max_image_size_mb * 1024 * 1024
    images: list[str] = []

    for upload in files:
        content_type = upload.content_type or ""
        if not content_type.startswith("image/"):
            return _failure(
                400,
                f"Only image files are accepted: {upload.filename}",
                "Upload PNG, JPEG or WebP screenshots.",
            )
        data = await upload.read()
        if len(data) > max_bytes:
            return _failure(
                400,
                f"File too large: {upload.filename} (max {settings.analysis_max_image_size_mb} MB).",
                "Crop the screenshot to the Landsraad panel.",
            )
        images.append(f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}")

    logger.info("Upload analysis request", files=len(images))
    return await _run(service, images, x_openai_key)
