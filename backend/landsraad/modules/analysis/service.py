"""Landsraad Analysis Service — multi-model fallback with concurrent batch fan-out.

  For each candidate model (strictly one after another):
    1. Split the screenshots into batches of ``analysis_batch_size``.
    2. Send all batches concurrently, each with its own retry loop.
    3. Wait for every batch to settle.
    4. >= 1 batch succeeded -> normalize + dedupe, stop.
       All batches failed   -> remember why, try the next model.

  All models failed -> terminal failure with the last error detail.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from landsraad.core.config import Settings, settings as default_settings
from landsraad.modules.analysis.client import BatchOutcome, VisionClient
from landsraad.modules.analysis.normalizer import dedupe_by_house, normalize_entries
from landsraad.modules.analysis.prompt import get_prompt
from landsraad.modules.analysis.schemas import TaskRecord

logger = structlog.get_logger()

GATEWAY_STATUS = 502

SUGGESTION_ALL_FAILED = (
    "Check the API key and that the configured vision models are available, "
    "then retry. You can also enter the task data manually."
)


class AnalysisInputError(ValueError):
    """Request rejected before any network call."""

    def __init__(self, message: str, suggestion: str = "") -> None:
        super().__init__(message)
        self.suggestion = suggestion


@dataclass
class ModelAttempt:
    """All batch outcomes of one model."""

    model: str
    outcomes: list[BatchOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def error(self) -> str:
        return "; ".join(o.error or "unknown error" for o in self.failed)

    @property
    def status(self) -> int | None:
        for outcome in reversed(self.failed):
            if outcome.status is not None:
                return outcome.status
        return None


@dataclass
class AnalysisOutcome:
    """Final result of an analysis run."""

    success: bool
    model: str | None = None
    records: list[TaskRecord] = field(default_factory=list)
    failed_batches: list[str] = field(default_factory=list)
    attempts: list[ModelAttempt] = field(default_factory=list)
    error: str | None = None
    status: int | None = None
    detail: str | None = None
    suggestion: str | None = None
    duration_ms: int = 0


def chunk_images(images: list[str], size: int) -> list[list[str]]:
    """Split ``images`` into consecutive batches of at most ``size``."""
    size = max(1, size)
    return [images[i : i + size] for i in range(0, len(images), size)]


def validate_images(images: list[Any], max_images: int) -> list[str]:
    if not images:
        raise AnalysisInputError(
            "No screenshots supplied.",
            suggestion="Upload at least one screenshot of the Landsraad panel.",
        )
    if len(images) > max_images:
        raise AnalysisInputError(
            f"Too many screenshots: {len(images)} (max {max_images}).",
            suggestion="Split the upload into several requests.",
        )
    for position, image in enumerate(images, start=1):
        if not isinstance(image, str) or not image.startswith("data:image/"):
            raise AnalysisInputError(
                f"Screenshot {position} is not an embedded image (expected a data:image/... URL).",
                suggestion="Send screenshots as base64 data URLs.",
            )
    return list(images)


class AnalysisService:
    """Runs the analysis pipeline for one request at a time.

    No state survives between ``analyze`` calls; a new httpx client is
    opened per call and shared by that call's concurrent batches.
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        prompt_loader: Callable[[], str] = get_prompt,
    ) -> None:
        self.config = config or default_settings
        self._transport = transport
        self._sleep = sleep
        self._prompt_loader = prompt_loader

    async def analyze(
        self,
        images: list[str],
        api_key: str | None = None,
        models: list[str] | None = None,
    ) -> AnalysisOutcome:
        """Analyze screenshots with model fallback.

        Raises:
            AnalysisInputError: no/invalid images or no credential. Nothing
                has been sent upstream in that case.
        """
        images = validate_images(images, self.config.analysis_max_images)
        token = self.config.resolve_api_key(api_key)
        if not token:
            raise AnalysisInputError(
                "No API key configured.",
                suggestion="Enter an API key in the settings page or set LLM_API_KEY / OPENAI_API_KEY.",
            )
        candidates = models or self.config.analysis_model_list
        if not candidates:
            raise AnalysisInputError(
                "No vision models configured.",
                suggestion="Set ANALYSIS_MODELS to a comma-separated list of model ids.",
            )

        prompt = self._prompt_loader()
        batches = chunk_images(images, self.config.analysis_batch_size)
        start = time.monotonic()
        attempts: list[ModelAttempt] = []

        logger.info(
            "Analysis started",
            images=len(images),
            batches=len(batches),
            models=candidates,
        )

        async with httpx.AsyncClient(
            timeout=self.config.analysis_timeout_s,
            transport=self._transport,
        ) as http:
            client = VisionClient(http, token, config=self.config, sleep=self._sleep)

            for model in candidates:
                attempt = await self.try_model(client, model, prompt, batches)
                attempts.append(attempt)

                if attempt.succeeded:
                    return self._build_success(attempt, attempts, start)

                logger.warning(
                    "Analysis: model failed, trying next candidate",
                    model=model,
                    status=attempt.status,
                    error=attempt.error,
                )

        last = attempts[-1]
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            "Analysis failed for all models",
            models=[a.model for a in attempts],
            status=last.status,
            duration_ms=duration_ms,
        )
        status = last.status if last.status is not None and last.status >= 400 else GATEWAY_STATUS
        return AnalysisOutcome(
            success=False,
            attempts=attempts,
            error=f"All vision models failed ({', '.join(a.model for a in attempts)}).",
            status=status,
            detail=last.error,
            suggestion=SUGGESTION_ALL_FAILED,
            duration_ms=duration_ms,
        )

    async def try_model(
        self,
        client: VisionClient,
        model: str,
        prompt: str,
        batches: list[list[str]],
    ) -> ModelAttempt:
        """Fan out every batch for ``model`` and wait for all of them."""
        outcomes = await asyncio.gather(
            *(
                client.complete_batch(
                    model,
                    prompt,
                    batch,
                    batch_index=index,
                    batch_count=len(batches),
                )
                for index, batch in enumerate(batches)
            ),
            return_exceptions=True,
        )

        results: list[BatchOutcome] = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BatchOutcome):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            # A crashed batch is a failed batch; its siblings keep their results
            logger.error("Vision batch crashed", model=model, batch=index + 1, exc_info=outcome)
            results.append(
                BatchOutcome(
                    index=index,
                    error=f"Batch {index + 1}/{len(batches)}: Unexpected error: {outcome!r}",
                )
            )
        return ModelAttempt(model=model, outcomes=results)

    @staticmethod
    def _build_success(
        attempt: ModelAttempt,
        attempts: list[ModelAttempt],
        start: float,
    ) -> AnalysisOutcome:
        raw_entries: list[Any] = []
        for outcome in sorted(attempt.succeeded, key=lambda o: o.index):
            raw_entries.extend(outcome.entries or [])

        records = dedupe_by_house(normalize_entries(raw_entries))
        failed_batches = [o.error or f"Batch {o.index + 1}: unknown error" for o in attempt.failed]
        duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            "Analysis complete",
            model=attempt.model,
            raw_entries=len(raw_entries),
            records=len(records),
            failed_batches=len(failed_batches),
            duration_ms=duration_ms,
        )
        return AnalysisOutcome(
            success=True,
            model=attempt.model,
            records=records,
            failed_batches=failed_batches,
            attempts=attempts,
            duration_ms=duration_ms,
        )
