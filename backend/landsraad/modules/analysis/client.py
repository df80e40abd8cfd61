"""Landsraad Vision Client — one chat-completion call per screenshot batch.

Talks to an OpenAI-compatible ``/chat/completions`` endpoint with httpx.
Every batch runs its own retry loop:

  - HTTP 429, any 5xx, transport errors and edge-proxy block pages are
    transient and retried with exponential backoff (0.5s, 1s, ...).
  - Any other 4xx fails immediately.
  - A completion without parseable JSON counts as a failed batch.

Failures are returned as BatchOutcome values, never raised, so one batch
can never cancel its siblings.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from landsraad.core.config import Settings, settings as default_settings
from landsraad.modules.analysis.normalizer import extract_structured

logger = structlog.get_logger()

# Markers of a CDN / WAF block page served instead of the API response
_PROXY_BLOCK_MARKERS = (
    "attention required",
    "access denied",
    "error 1020",
    "ray id",
    "cf-error",
)

_MAX_DETAIL_CHARS = 500


@dataclass
class BatchOutcome:
    """Result of one batch request (after retries)."""

    index: int
    entries: list[Any] | None = None
    error: str | None = None
    status: int | None = None
    attempts: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.entries is not None


class _BatchFailure(Exception):
    """Internal: one attempt failed."""

    def __init__(self, message: str, status: int | None = None, transient: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.transient = transient


def looks_like_proxy_block(body: str) -> bool:
    """True if ``body`` is an edge-proxy (Cloudflare-style) block page."""
    lowered = body.lower()
    return "cloudflare" in lowered and any(marker in lowered for marker in _PROXY_BLOCK_MARKERS)


def is_transient(status: int, body: str = "") -> bool:
    """Decide whether a failed response is worth retrying."""
    if status == 429 or status >= 500:
        return True
    return looks_like_proxy_block(body)


def _truncate(text: str) -> str:
    text = text.strip()
    return text if len(text) <= _MAX_DETAIL_CHARS else text[:_MAX_DETAIL_CHARS] + "..."


def completion_text(payload: Any) -> str | None:
    """Pull the assistant text out of a chat-completion response body."""
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # Content-part arrays: keep the text parts
        parts = [p.get("text", "") for p in content if isinstance(p, dict)]
        return "\n".join(p for p in parts if isinstance(p, str)) or None
    return None


class VisionClient:
    """Sends screenshot batches to a vision model and parses the replies."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        config: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._config = config or default_settings
        self._sleep = sleep or asyncio.sleep

    def build_payload(self, model: str, prompt: str, images: list[str]) -> dict[str, Any]:
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        content.extend({"type": "image_url", "image_url": {"url": image}} for image in images)
        return {
            "model": model,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": self._config.analysis_max_tokens,
            "temperature": self._config.analysis_temperature,
        }

    async def complete_batch(
        self,
        model: str,
        prompt: str,
        images: list[str],
        *,
        batch_index: int = 0,
        batch_count: int = 1,
    ) -> BatchOutcome:
        """Run one batch with retry. Never raises for upstream failures."""
        payload = self.build_payload(model, prompt, images)
        max_attempts = max(1, self._config.analysis_max_attempts)
        delay = self._config.analysis_backoff_initial_s
        label = f"Batch {batch_index + 1}/{batch_count}"
        start = time.monotonic()

        for attempt in range(1, max_attempts + 1):
            try:
                entries = await self._attempt(payload)
            except _BatchFailure as exc:
                retry = exc.transient and attempt < max_attempts
                logger.warning(
                    "Vision batch attempt failed",
                    model=model,
                    batch=batch_index + 1,
                    attempt=attempt,
                    status=exc.status,
                    transient=exc.transient,
                    will_retry=retry,
                )
                if retry:
                    await self._sleep(delay)
                    delay *= 2
                    continue
                return BatchOutcome(
                    index=batch_index,
                    error=f"{label}: {exc}",
                    status=exc.status,
                    attempts=attempt,
                    duration_ms=int((time.monotonic() - start) * 1000),
                )

            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(
                "Vision batch complete",
                model=model,
                batch=batch_index + 1,
                images=len(images),
                entries=len(entries),
                attempts=attempt,
                duration_ms=duration_ms,
            )
            return BatchOutcome(
                index=batch_index,
                entries=entries,
                status=200,
                attempts=attempt,
                duration_ms=duration_ms,
            )

        # Unreachable: the last attempt always returns
        raise AssertionError("retry loop exited without an outcome")

    async def _attempt(self, payload: dict[str, Any]) -> list[Any]:
        try:
            response = await self._http.post(
                self._config.analysis_endpoint,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.TransportError as exc:
            raise _BatchFailure(f"Transport error: {exc!r}", transient=True) from exc
        except httpx.HTTPError as exc:
            # e.g. DecodingError on a corrupt compressed body
            raise _BatchFailure(f"HTTP client error: {exc!r}") from exc

        body = response.text
        if response.status_code >= 400:
            raise _BatchFailure(
                f"HTTP {response.status_code}: {_truncate(body)}",
                status=response.status_code,
                transient=is_transient(response.status_code, body),
            )

        try:
            data = response.json()
        except ValueError:
            raise _BatchFailure(
                f"Invalid response body: {_truncate(body)}",
                status=response.status_code,
                transient=looks_like_proxy_block(body),
            ) from None

        entries = extract_structured(completion_text(data))
        if entries is None:
            raise _BatchFailure("No valid structured data found in model output", status=response.status_code)
        return entries
