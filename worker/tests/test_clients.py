from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from conftest import PNG_BYTES
from sketchtone_worker.services.beatoven import ComposeServiceClient
from sketchtone_worker.services.exceptions import UpstreamCallError
from sketchtone_worker.services.gemini import (
    VisionLanguageClient,
    extract_text,
    image_part,
    text_part,
)

Handler = Callable[[httpx.Request], httpx.Response]


def gemini_reply(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def make_gemini(settings, handler: Handler) -> VisionLanguageClient:
    return VisionLanguageClient(settings, transport=httpx.MockTransport(handler))


def make_beatoven(settings, handler: Handler) -> ComposeServiceClient:
    return ComposeServiceClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    "payload,expected",
    [
        (gemini_reply("  hello  "), "hello"),
        ({"candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}}]}, "ab"),
        ({"output": [{"content": {"text": "legacy"}}]}, "legacy"),
        ({"text": "flat"}, "flat"),
        ({"candidates": [{"content": {"parts": [{"text": "  "}]}}], "text": "flat"}, "flat"),
        ({"candidates": []}, None),
        ({"promptFeedback": {"blockReason": "SAFETY"}}, None),
        ([], None),
    ],
)
def test_extract_text_shapes(payload: Any, expected: str | None) -> None:
    assert extract_text(payload) == expected


@pytest.mark.asyncio
async def test_gemini_sends_parts_and_key(settings) -> None:
    captured: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = request.url
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=gemini_reply("Background music: calm"))

    client = make_gemini(settings, handler)
    text = await client.generate_text(
        [[text_part("describe"), image_part(PNG_BYTES)]], stage="briefs"
    )
    await client.close()

    assert text == "Background music: calm"
    assert captured["url"].path == "/v1beta/models/gemini-2.5-flash:generateContent"
    assert captured["url"].params["key"] == "test-gemini"
    parts = captured["body"]["contents"][0]["parts"]
    assert parts[0] == {"text": "describe"}
    assert parts[1]["inlineData"]["mimeType"] == "image/png"


@pytest.mark.asyncio
async def test_gemini_error_status_raises(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": {"message": "API key invalid"}})

    client = make_gemini(settings, handler)
    with pytest.raises(UpstreamCallError) as excinfo:
        await client.generate_text([[text_part("x")]], stage="refine")
    assert excinfo.value.status == 403
    assert excinfo.value.stage == "refine"
    assert "API key invalid" in excinfo.value.message


@pytest.mark.asyncio
async def test_gemini_malformed_body_raises(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    client = make_gemini(settings, handler)
    with pytest.raises(UpstreamCallError):
        await client.generate_text([[text_part("x")]], stage="briefs")


@pytest.mark.asyncio
async def test_gemini_empty_text_raises(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=gemini_reply(""))

    client = make_gemini(settings, handler)
    with pytest.raises(UpstreamCallError) as excinfo:
        await client.generate_text([[text_part("x")]], stage="briefs")
    assert excinfo.value.message == "Gemini returned no text"


@pytest.mark.asyncio
async def test_gemini_transport_error_raises(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = make_gemini(settings, handler)
    with pytest.raises(UpstreamCallError) as excinfo:
        await client.generate_text([[text_part("x")]], stage="adjust")
    assert "ConnectError" in excinfo.value.message


@pytest.mark.asyncio
async def test_beatoven_submit_sends_prompt_and_bearer(settings) -> None:
    captured: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"task_id": "t1"})

    client = make_beatoven(settings, handler)
    payload = await client.submit("Background music: calm")
    await client.close()

    assert payload == {"task_id": "t1"}
    assert captured["path"] == "/api/v1/tracks/compose"
    assert captured["auth"] == "Bearer test-beatoven"
    assert captured["body"] == {
        "prompt": {"text": "Background music: calm"},
        "format": "mp3",
        "looping": False,
    }


@pytest.mark.asyncio
async def test_beatoven_submit_returns_raw_text_when_not_json(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    client = make_beatoven(settings, handler)
    assert await client.submit("x") == "bad gateway"


@pytest.mark.asyncio
async def test_beatoven_status_quotes_task_id(settings) -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.raw_path.decode())
        return httpx.Response(200, json={"status": "composing"})

    client = make_beatoven(settings, handler)
    payload = await client.fetch_status("task/1")
    assert payload == {"status": "composing"}
    assert seen == ["/api/v1/tasks/task%2F1"]


@pytest.mark.asyncio
async def test_beatoven_status_error_raises(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    client = make_beatoven(settings, handler)
    with pytest.raises(UpstreamCallError) as excinfo:
        await client.fetch_status("t1")
    assert excinfo.value.stage == "poll"
    assert excinfo.value.status == 500


@pytest.mark.asyncio
async def test_warmup_reports_missing_keys() -> None:
    from sketchtone_worker.app.settings import Settings

    bare = Settings(gemini_api_key="", beatoven_api_key=None)
    vision_status = await VisionLanguageClient(bare).warmup()
    compose_status = await ComposeServiceClient(bare).warmup()
    assert vision_status.ready is False and vision_status.error == "missing api key"
    assert compose_status.ready is False
