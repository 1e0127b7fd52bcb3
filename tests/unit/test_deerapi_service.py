import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from services.deerapi_service import (
    DeerAPIClient,
    DeerAPIError,
    DeerAPIResponseError,
    extract_gemini_image,
    extract_seedream_image,
)


class RecordingTransport:
    """Builds an httpx.MockTransport that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response):
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def _client(recorder: RecordingTransport, base_url: str = "https://api.deerapi.com/v1") -> DeerAPIClient:
    return DeerAPIClient("sk-test", base_url=base_url, transport=recorder.transport)


def test_urls_are_normalised():
    client = DeerAPIClient("k", base_url="https://proxy.example.com/v1/")
    assert client.base_url == "https://proxy.example.com/v1"
    assert client.root_url == "https://proxy.example.com"

    other = DeerAPIClient("k", base_url="https://proxy.example.com/api")
    assert other.root_url == "https://proxy.example.com/api"


@pytest.mark.asyncio
async def test_chat_completion_uses_bearer_auth():
    recorder = RecordingTransport(httpx.Response(200, json={"choices": []}))
    result = await _client(recorder).chat_completion("m", [{"role": "user", "content": "hi"}])
    request = recorder.requests[0]
    assert result == {"choices": []}
    assert str(request.url) == "https://api.deerapi.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert json.loads(request.content) == {"model": "m", "messages": [{"role": "user", "content": "hi"}]}


@pytest.mark.asyncio
async def test_generate_content_targets_v1beta_root():
    recorder = RecordingTransport(httpx.Response(200, json={"candidates": []}))
    await _client(recorder).generate_content(
        "gemini-3-pro-image", [{"role": "user", "parts": [{"text": "cat"}]}], {"aspectRatio": "1:1"}
    )
    request = recorder.requests[0]
    assert str(request.url) == "https://api.deerapi.com/v1beta/models/gemini-3-pro-image:generateContent"
    body = json.loads(request.content)
    assert body["generationConfig"] == {"aspectRatio": "1:1"}
    assert body["contents"][0]["parts"] == [{"text": "cat"}]


@pytest.mark.asyncio
async def test_image_and_embedding_endpoints():
    recorder = RecordingTransport(httpx.Response(200, json={"data": []}))
    client = _client(recorder)
    await client.generate_image({"model": "doubao", "prompt": "p"})
    await client.create_embeddings("text-embedding-3-small", "hello")
    assert str(recorder.requests[0].url) == "https://api.deerapi.com/v1/images/generations"
    assert str(recorder.requests[1].url) == "https://api.deerapi.com/v1/embeddings"
    assert json.loads(recorder.requests[1].content) == {"model": "text-embedding-3-small", "input": "hello"}


@pytest.mark.asyncio
async def test_video_endpoints_use_raw_key():
    recorder = RecordingTransport(httpx.Response(200, json={"id": "video_1"}))
    client = _client(recorder)
    await client.create_video("a cat", "sora-2-all", "720x1280")
    await client.remix_video("video_1", "make it blue")
    await client.retrieve_video("video_1")
    await client.list_videos()

    urls = [(r.method, str(r.url)) for r in recorder.requests]
    assert urls == [
        ("POST", "https://api.deerapi.com/v1/videos"),
        ("POST", "https://api.deerapi.com/v1/videos/video_1/remix"),
        ("GET", "https://api.deerapi.com/v1/videos/video_1"),
        ("GET", "https://api.deerapi.com/v1/videos"),
    ]
    assert all(r.headers["Authorization"] == "sk-test" for r in recorder.requests)
    assert json.loads(recorder.requests[0].content) == {
        "prompt": "a cat",
        "model": "sora-2-all",
        "size": "720x1280",
    }
    assert json.loads(recorder.requests[1].content) == {"prompt": "make it blue"}


@pytest.mark.asyncio
async def test_create_video_with_reference_is_multipart():
    recorder = RecordingTransport(httpx.Response(200, json={"id": "video_2"}))
    await _client(recorder).create_video(
        "a cat", "sora-2-pro-all", "1280x720", ("ref.png", b"PNGDATA", "image/png")
    )
    request = recorder.requests[0]
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.content
    assert b'name="input_reference"; filename="ref.png"' in body
    assert b"PNGDATA" in body
    assert b'name="model"' in body and b"sora-2-pro-all" in body


@pytest.mark.asyncio
async def test_download_video_returns_bytes():
    recorder = RecordingTransport(httpx.Response(200, content=b"\x00\x00mp4"))
    content = await _client(recorder).download_video("video_1")
    request = recorder.requests[0]
    assert content == b"\x00\x00mp4"
    assert str(request.url) == "https://api.deerapi.com/v1/videos/video_1/content?variant=video"
    assert request.headers["Authorization"] == "sk-test"


@pytest.mark.asyncio
async def test_error_status_raises_with_api_message():
    recorder = RecordingTransport(
        httpx.Response(401, json={"error": {"message": "invalid api key", "type": "auth"}})
    )
    with pytest.raises(DeerAPIError) as exc_info:
        await _client(recorder).chat_completion("m", [])
    assert exc_info.value.status_code == 401
    assert str(exc_info.value) == "DeerAPI HTTP 401: invalid api key"


@pytest.mark.asyncio
async def test_error_status_with_plain_text_body():
    recorder = RecordingTransport(httpx.Response(502, text="Bad Gateway"))
    with pytest.raises(DeerAPIError, match="DeerAPI HTTP 502: Bad Gateway"):
        await _client(recorder).list_videos()


@pytest.mark.asyncio
async def test_invalid_json_raises_response_error():
    recorder = RecordingTransport(httpx.Response(200, text="not json"))
    with pytest.raises(DeerAPIResponseError):
        await _client(recorder).retrieve_video("v")


@pytest.mark.asyncio
async def test_connect_timeout_retried_once():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200, json={"ok": True})

    client = DeerAPIClient("k", transport=httpx.MockTransport(handler))
    with patch("services.deerapi_service.asyncio.sleep", new=AsyncMock()):
        assert await client.list_videos() == {"ok": True}
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_wait_for_video_stops_at_terminal_status():
    recorder = RecordingTransport(
        httpx.Response(200, json={"id": "v", "status": "queued"}),
        httpx.Response(200, json={"id": "v", "status": "in_progress", "progress": 50}),
        httpx.Response(200, json={"id": "v", "status": "completed"}),
    )
    polls = []
    with patch("services.deerapi_service.asyncio.sleep", new=AsyncMock()) as sleep:
        result = await _client(recorder).wait_for_video(
            "v", interval_s=15, max_attempts=40, on_poll=lambda attempt, r: polls.append(r["status"])
        )
    assert result["status"] == "completed"
    assert polls == ["queued", "in_progress", "completed"]
    assert sleep.await_count == 2
    sleep.assert_awaited_with(15)


@pytest.mark.asyncio
async def test_wait_for_video_gives_up_after_max_attempts():
    recorder = RecordingTransport(httpx.Response(200, json={"id": "v", "status": "in_progress"}))
    with patch("services.deerapi_service.asyncio.sleep", new=AsyncMock()) as sleep:
        result = await _client(recorder).wait_for_video("v", interval_s=1, max_attempts=3)
    assert result["status"] == "in_progress"
    assert len(recorder.requests) == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_wait_for_video_honours_should_stop():
    recorder = RecordingTransport(httpx.Response(200, json={"id": "v", "status": "queued"}))
    with patch("services.deerapi_service.asyncio.sleep", new=AsyncMock()):
        await _client(recorder).wait_for_video("v", max_attempts=10, should_stop=lambda: True)
    assert len(recorder.requests) == 1


def test_extract_gemini_image_variants():
    camel = {"candidates": [{"content": {"parts": [{"text": "ok"}, {"inlineData": {"mimeType": "image/png", "data": "QUJD"}}]}}]}
    snake = {"candidates": [{"content": {"parts": [{"inline_data": {"mime_type": "image/png", "data": "REVG"}}]}}]}
    assert extract_gemini_image(camel) == "QUJD"
    assert extract_gemini_image(snake) == "REVG"
    assert extract_gemini_image({"candidates": [{"content": {"parts": [{"text": "no image"}]}}]}) is None
    assert extract_gemini_image({}) is None
    assert extract_gemini_image({"candidates": "garbage"}) is None


def test_extract_seedream_image():
    assert extract_seedream_image({"data": [{"b64_json": "SGk="}]}) == "SGk="
    assert extract_seedream_image({"data": [{"url": "https://x"}]}) is None
    assert extract_seedream_image({"data": []}) is None
    assert extract_seedream_image({}) is None
