"""Integration tests for the analysis endpoints.

These tests exercise the full FastAPI request lifecycle (routing, JSON and
multipart parsing, Pydantic serialisation, error mapping) with the upstream
vision API replaced by ``httpx.MockTransport``, so no real LLM calls occur.

Verified here:

  - Success responses match the documented shape (camelCase ``failedBatches``)
  - Validation failures return 400 before any upstream call
  - Total model failure maps to the upstream status / 502
  - Unexpected internal errors become a 500 failure body
  - Credential precedence: body ``apiKey`` > ``x-openai-key`` header > env
"""

from __future__ import annotations

import io
import json
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from landsraad.core.config import Settings
from landsraad.main import app
from landsraad.modules.analysis.router import get_analysis_service
from landsraad.modules.analysis.service import AnalysisService

PREFIX = "/api/v1/analysis"

ATREIDES = {
    "house": "Atreides",
    "task": {
        "kind": "deliver",
        "request": "Spice",
        "contribution": 50,
        "rewards": {"1000": "Solari"},
    },
}


def _completion(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": text}}]})


async def _no_sleep(delay: float) -> None:
    return None


class _Upstream:
    """Fake vision API; records every request it receives."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def upstream() -> _Upstream:
    return _Upstream(lambda r: _completion(f"Here is the data: {json.dumps([ATREIDES])}"))


@pytest.fixture
async def api(test_settings: Settings, upstream: _Upstream) -> AsyncGenerator[AsyncClient, None]:
    """ASGI client whose analysis service talks to the fake upstream."""

    def _override() -> AnalysisService:
        return AnalysisService(
            test_settings,
            transport=httpx.MockTransport(upstream),
            sleep=_no_sleep,
            prompt_loader=lambda: "Extract tasks.",
        )

    app.dependency_overrides[get_analysis_service] = _override
    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_analysis_service, None)


# ---------------------------------------------------------------------------
# Success
# ---------------------------------------------------------------------------


async def test_analyze_returns_normalized_records(api: AsyncClient, image: str) -> None:
    resp = await api.post(f"{PREFIX}/analyze", json={"images": [image]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["model"] == "model-a"
    assert "warnings" not in body
    assert body["result"] == [
        {
            "house": "Atreides",
            "task": {
                "type": "revealed",
                "kind": "deliver",
                "request": "Spice",
                "contribution": 50,
                "rewards": {"1000": "Solari"},
            },
        }
    ]


async def test_partial_failure_is_reported_as_warning(
    api: AsyncClient, upstream: _Upstream, image: str
) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        images = json.loads(request.content)["messages"][0]["content"][1:]
        calls.append(len(images))
        if len(images) == 1:
            return httpx.Response(422, text="unprocessable image")
        return _completion(json.dumps([ATREIDES]))

    upstream.handler = handler

    resp = await api.post(f"{PREFIX}/analyze", json={"images": [image] * 6})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert len(body["result"]) == 1
    assert len(body["warnings"]["failedBatches"]) == 1
    assert "HTTP 422" in body["warnings"]["failedBatches"][0]


async def test_unrevealed_task_omits_absent_fields(api: AsyncClient, upstream: _Upstream, image: str) -> None:
    upstream.handler = lambda r: _completion('{"house": "Imota", "task": {"type": "unrevealed"}}')

    resp = await api.post(f"{PREFIX}/analyze", json={"images": [image]})

    record = resp.json()["result"][0]
    assert record["house"] == "Imota"
    assert record["task"]["type"] == "unrevealed"
    assert record["task"]["contribution"] == 0
    assert record["task"]["rewards"] == {}
    assert "request" not in record["task"]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


async def test_no_images_returns_400_without_upstream_call(api: AsyncClient, upstream: _Upstream) -> None:
    resp = await api.post(f"{PREFIX}/analyze", json={"images": []})

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert "No screenshots" in body["error"]
    assert body["details"]["status"] == 400
    assert body["suggestion"]
    assert upstream.requests == []


async def test_missing_images_field_returns_422(api: AsyncClient) -> None:
    resp = await api.post(f"{PREFIX}/analyze", json={})
    assert resp.status_code == 422


async def test_missing_credential_returns_400(test_settings: Settings, upstream: _Upstream, image: str) -> None:
    no_key = test_settings.model_copy(update={"openai_api_key": "", "llm_api_key": ""})
    app.dependency_overrides[get_analysis_service] = lambda: AnalysisService(
        no_key, transport=httpx.MockTransport(upstream), prompt_loader=lambda: "x"
    )
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:  # type: ignore[arg-type]
            resp = await ac.post(f"{PREFIX}/analyze", json={"images": [image]})
    finally:
        app.dependency_overrides.pop(get_analysis_service, None)

    assert resp.status_code == 400
    assert "API key" in resp.json()["error"]
    assert upstream.requests == []


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("body_key", "header_key", "expected"),
    [
        ("sk-body", "sk-header", "Bearer sk-body"),
        (None, "sk-header", "Bearer sk-header"),
        (None, None, "Bearer sk-env"),
    ],
)
async def test_credential_precedence(
    api: AsyncClient,
    upstream: _Upstream,
    image: str,
    body_key: str | None,
    header_key: str | None,
    expected: str,
) -> None:
    payload: dict[str, Any] = {"images": [image]}
    if body_key:
        payload["apiKey"] = body_key
    headers = {"x-openai-key": header_key} if header_key else {}

    resp = await api.post(f"{PREFIX}/analyze", json=payload, headers=headers)

    assert resp.status_code == 200
    assert upstream.requests[0].headers["Authorization"] == expected


# ---------------------------------------------------------------------------
# Upstream failures
# ---------------------------------------------------------------------------


async def test_all_models_failing_returns_failure_shape(
    api: AsyncClient, upstream: _Upstream, image: str
) -> None:
    upstream.handler = lambda r: httpx.Response(401, text="Incorrect API key provided")

    resp = await api.post(f"{PREFIX}/analyze", json={"images": [image]})

    assert resp.status_code == 401
    body = resp.json()
    assert body["success"] is False
    assert body["details"]["status"] == 401
    assert "Incorrect API key" in body["details"]["text"]
    assert body["suggestion"]
    assert len(upstream.requests) == 2  # model-a, then model-b, no retries


async def test_unparseable_output_maps_to_gateway_error(
    api: AsyncClient, upstream: _Upstream, image: str
) -> None:
    upstream.handler = lambda r: _completion("I cannot see any Landsraad panel.")

    resp = await api.post(f"{PREFIX}/analyze", json={"images": [image]})

    assert resp.status_code == 502
    assert resp.json()["details"]["status"] == 502


async def test_internal_error_returns_500(image: str) -> None:
    class _Broken(AnalysisService):
        async def analyze(self, *args: Any, **kwargs: Any):  # type: ignore[override]
            raise RuntimeError("boom")

    app.dependency_overrides[get_analysis_service] = lambda: _Broken()
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:  # type: ignore[arg-type]
            resp = await ac.post(f"{PREFIX}/analyze", json={"images": [image]})
    finally:
        app.dependency_overrides.pop(get_analysis_service, None)

    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["details"]["status"] == 500
    assert body["details"]["text"] == "Unexpected server error; details were logged."
    assert "boom" not in resp.text


# ---------------------------------------------------------------------------
# Multipart upload
# ---------------------------------------------------------------------------


async def test_upload_is_encoded_as_data_url(api: AsyncClient, upstream: _Upstream) -> None:
    files = [("files", ("varota.png", io.BytesIO(b"\x89PNG-fake"), "image/png"))]

    resp = await api.post(f"{PREFIX}/analyze-upload", files=files)

    assert resp.status_code == 200
    content = json.loads(upstream.requests[0].content)["messages"][0]["content"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


async def test_upload_rejects_non_images(api: AsyncClient, upstream: _Upstream) -> None:
    files = [("files", ("notes.txt", io.BytesIO(b"hello"), "text/plain"))]

    resp = await api.post(f"{PREFIX}/analyze-upload", files=files)

    assert resp.status_code == 400
    assert "Only image files" in resp.json()["error"]
    assert upstream.requests == []
