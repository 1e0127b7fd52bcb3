import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config.settings import DEFAULT_DEERAPI_BASE_URL

logger = logging.getLogger(__name__)

TERMINAL_VIDEO_STATUSES = ("completed", "failed")


class DeerAPIError(Exception):
    """Raised when DeerAPI answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str, body: Any = None):
        super().__init__(f"DeerAPI HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.body = body


class DeerAPIResponseError(Exception):
    """Raised when a successful response lacks the expected payload."""

    pass


# Pydantic models for the Gemini generateContent response
class GeminiInlineDataModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    mime_type: str | None = Field(default=None, alias="mimeType")
    data: str


class GeminiPartModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str | None = None
    inlineData: GeminiInlineDataModel | None = None
    inline_data: GeminiInlineDataModel | None = None


class GeminiContentModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    parts: list[GeminiPartModel] = []


class GeminiCandidateModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: GeminiContentModel | None = None


class GeminiResponseModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    candidates: list[GeminiCandidateModel] = []


def extract_gemini_image(response: dict[str, Any]) -> str | None:
    """Base64 data of the first inline image in the first candidate, if any."""
    try:
        parsed = GeminiResponseModel.model_validate(response)
    except ValidationError as e:
        logger.warning(f"DEERAPI: unexpected generateContent response shape: {e}")
        return None
    if not parsed.candidates or parsed.candidates[0].content is None:
        return None
    for part in parsed.candidates[0].content.parts:
        inline = part.inlineData or part.inline_data
        if inline and inline.data:
            return inline.data
    return None


def extract_seedream_image(response: dict[str, Any]) -> str | None:
    data = response.get("data") if isinstance(response, dict) else None
    if not isinstance(data, list) or not data:
        return None
    first = data[0]
    if isinstance(first, dict) and first.get("b64_json"):
        return str(first["b64_json"])
    return None


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return (response.text or response.reason_phrase or "Unknown error"), response.text
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"]), body
        if isinstance(error, str) and error:
            return error, body
        if body.get("message"):
            return str(body["message"]), body
    return str(body), body


class DeerAPIClient:
    """Async client for the DeerAPI endpoints used by the DeerAPI node.

    Chat, image and embedding endpoints use a Bearer token; the Sora video
    endpoints take the raw key in the Authorization header and live under the
    root URL (base URL without its trailing /v1).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout_s: float = 120.0,
        download_timeout_s: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_DEERAPI_BASE_URL).rstrip("/")
        self.root_url = re.sub(r"/v1$", "", self.base_url)
        self.timeout_s = timeout_s
        self.download_timeout_s = download_timeout_s
        self._transport = transport

    def _headers(self, bearer: bool) -> dict[str, str]:
        token = f"Bearer {self.api_key}" if bearer else self.api_key
        return {"Authorization": token}

    async def _send(
        self,
        method: str,
        url: str,
        *,
        bearer: bool = True,
        timeout_s: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        timeout = httpx.Timeout(timeout_s or self.timeout_s, connect=10.0)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            # simple retry for transient connect timeouts
            response: httpx.Response | None = None
            for attempt in range(2):
                try:
                    response = await client.request(
                        method, url, headers=self._headers(bearer), **kwargs
                    )
                    break
                except httpx.ConnectTimeout:
                    if attempt == 1:
                        raise
                    logger.warning(f"DEERAPI: connect timeout for {method} {url}, retrying")
                    await asyncio.sleep(0.5)

            if response is None:
                raise RuntimeError(f"No response received from {url}")

        logger.debug(f"DEERAPI: {method} {url} -> HTTP {response.status_code}")
        if not response.is_success:
            message, body = _error_message(response)
            logger.error(f"DEERAPI: HTTP {response.status_code} for {method} {url}: {message}")
            raise DeerAPIError(response.status_code, message, body)
        return response

    async def _json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._send(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise DeerAPIResponseError(f"Invalid JSON response from {url}") from e

    # ---- text, images, embeddings (Bearer auth) ----

    async def chat_completion(self, model: str, messages: list[dict[str, Any]]) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"{self.base_url}/chat/completions",
            json={"model": model, "messages": messages},
        )

    async def generate_content(
        self,
        model: str,
        contents: list[dict[str, Any]],
        generation_config: dict[str, Any],
    ) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"{self.root_url}/v1beta/models/{model}:generateContent",
            json={"contents": contents, "generationConfig": generation_config},
        )

    async def generate_image(self, body: dict[str, Any]) -> dict[str, Any]:
        return await self._json("POST", f"{self.base_url}/images/generations", json=body)

    async def create_embeddings(self, model: str, input: str | list[str]) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"{self.base_url}/embeddings",
            json={"model": model, "input": input},
        )

    # ---- Sora video jobs (raw key auth) ----

    async def create_video(
        self,
        prompt: str,
        model: str,
        size: str,
        reference: tuple[str, bytes, str] | None = None,
    ) -> dict[str, Any]:
        """Create a video job. reference is (file_name, content, content_type).

        Sent as multipart form data when a reference image is attached, as JSON otherwise.
        """
        fields = {"prompt": prompt, "model": model, "size": size}
        url = f"{self.root_url}/v1/videos"
        if reference is None:
            return await self._json("POST", url, bearer=False, json=fields)
        return await self._json(
            "POST",
            url,
            bearer=False,
            data=fields,
            files={"input_reference": reference},
        )

    async def remix_video(self, video_id: str, prompt: str) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"{self.root_url}/v1/videos/{video_id}/remix",
            bearer=False,
            json={"prompt": prompt},
        )

    async def retrieve_video(self, video_id: str) -> dict[str, Any]:
        return await self._json("GET", f"{self.root_url}/v1/videos/{video_id}", bearer=False)

    async def wait_for_video(
        self,
        video_id: str,
        interval_s: float = 15.0,
        max_attempts: int = 40,
        should_stop: Callable[[], bool] | None = None,
        on_poll: Callable[[int, dict[str, Any]], Awaitable[None] | None] | None = None,
    ) -> dict[str, Any]:
        """Poll a video job until it completes or fails; returns the last response."""
        result: dict[str, Any] = {}
        for attempt in range(max(1, max_attempts)):
            result = await self.retrieve_video(video_id)
            status = result.get("status") if isinstance(result, dict) else None
            logger.info(f"DEERAPI: video {video_id} poll {attempt + 1}/{max_attempts}: status={status}")
            if on_poll is not None:
                maybe_awaitable = on_poll(attempt, result)
                if maybe_awaitable is not None:
                    await maybe_awaitable
            if status in TERMINAL_VIDEO_STATUSES:
                break
            if should_stop is not None and should_stop():
                break
            if attempt < max_attempts - 1:
                await asyncio.sleep(interval_s)
        return result

    async def download_video(self, video_id: str) -> bytes:
        response = await self._send(
            "GET",
            f"{self.root_url}/v1/videos/{video_id}/content",
            bearer=False,
            timeout_s=self.download_timeout_s,
            params={"variant": "video"},
        )
        return response.content

    async def list_videos(self) -> dict[str, Any]:
        return await self._json("GET", f"{self.root_url}/v1/videos", bearer=False)
