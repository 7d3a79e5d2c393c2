"""Video generation service - Runway-style task API (submit, poll, download)."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

RUNWAY_API_BASE = "https://api.dev.runwayml.com/v1"
RUNWAY_VERSION = "2024-11-06"
IMAGE_TO_VIDEO_MODEL = "gen4_turbo"
TEXT_TO_VIDEO_MODEL = "gen4_turbo"
TEXT_TO_IMAGE_MODEL = "gen4_image"
PROMPT_CHAR_LIMIT = 1000

# Ratios the provider accepts; anything else is mapped by orientation
SUPPORTED_RATIOS = {"1280:720", "720:1280", "1104:832", "832:1104", "960:960", "1584:672"}

# Provider-side image ratios for text-to-image
IMAGE_RATIOS = {
    "720:1280": "1080:1920",
    "832:1104": "1080:1440",
    "960:960": "1024:1024",
    "1104:832": "1440:1080",
    "1584:672": "1920:1080",
    "1280:720": "1920:1080",
}

MODERATION_MARKERS = ("moderation", "safety", "content_policy", "content policy", "nsfw")


class VideoGenServiceError(Exception):
    """Raised when video generation fails."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class ModerationBlockError(VideoGenServiceError):
    """The provider refused the input on content-safety grounds."""


def is_moderation_block(message: str | None, code: str | None = None) -> bool:
    """True when an error code or message reads like a content-safety refusal."""
    text = f"{code or ''} {message or ''}".lower()
    return any(marker in text for marker in MODERATION_MARKERS)


def provider_ratio(ratio: str) -> str:
    if ratio in SUPPORTED_RATIOS:
        return ratio
    try:
        w, h = (int(x) for x in ratio.split(":"))
    except ValueError:
        return "720:1280"
    return "720:1280" if h > w else "1280:720"


def provider_duration(seconds: float) -> int:
    """Round a requested clip length to the lengths the provider renders."""
    return 5 if seconds <= 5 else 10


@dataclass
class TaskStatus:
    """Snapshot of one provider task."""

    task_id: str
    status: str  # PENDING, RUNNING, THROTTLED, SUCCEEDED, FAILED, CANCELLED
    output_url: Optional[str] = None
    failure: Optional[str] = None
    failure_code: Optional[str] = None

    @property
    def is_done(self) -> bool:
        return self.status in ("SUCCEEDED", "FAILED", "CANCELLED")

    @property
    def succeeded(self) -> bool:
        return self.status == "SUCCEEDED" and bool(self.output_url)


class VideoGenService:
    """Submits image-to-video, text-to-video and text-to-image tasks.

    Submission returns a task id immediately; callers own the polling loop
    so they can bound it and inject the sleep.
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("RUNWAY_API_KEY", "")
        self.api_base = (api_base or os.getenv("RUNWAY_API_URL", RUNWAY_API_BASE)).rstrip("/")
        self.client = httpx.AsyncClient(timeout=120.0)

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "X-Runway-Version": RUNWAY_VERSION,
            "Content-Type": "application/json",
        }

    def _raise_for_response(self, response: httpx.Response, label: str) -> None:
        if response.status_code < 400:
            return
        try:
            data = response.json()
            detail = data.get("error") or data.get("message") or str(data)
            code = data.get("code") or data.get("failureCode")
        except (ValueError, AttributeError):
            detail, code = response.text or f"HTTP {response.status_code}", None
        message = f"{label} failed ({response.status_code}): {str(detail)[:500]}"
        if is_moderation_block(str(detail), code):
            raise ModerationBlockError(message, code=code)
        raise VideoGenServiceError(message, code=code)

    @staticmethod
    def _json(response: httpx.Response, label: str) -> dict:
        """Decode a success body; anything but a JSON object is a provider error."""
        try:
            data = response.json()
        except ValueError as e:
            raise VideoGenServiceError(
                f"{label} returned a non-JSON body: {response.text[:200]!r}"
            ) from e
        if not isinstance(data, dict):
            raise VideoGenServiceError(f"{label} returned unexpected JSON: {str(data)[:200]}")
        return data

    async def _submit(self, endpoint: str, payload: dict) -> str:
        if not self.is_configured():
            raise VideoGenServiceError(
                "Video generation not configured. Set RUNWAY_API_KEY in your .env file."
            )
        try:
            response = await self.client.post(
                f"{self.api_base}/{endpoint}", headers=self._headers(), json=payload
            )
        except httpx.TimeoutException as e:
            raise VideoGenServiceError(f"{endpoint} request timed out") from e
        except httpx.HTTPError as e:
            raise VideoGenServiceError(f"{endpoint} request failed: {e}") from e

        self._raise_for_response(response, endpoint)
        task_id = self._json(response, endpoint).get("id")
        if not task_id:
            raise VideoGenServiceError(f"{endpoint} returned no task id")
        logger.debug(f"[VideoGen] Submitted {endpoint} task {task_id}")
        return task_id

    async def submit_video(
        self,
        prompt: str,
        ratio: str,
        seconds: float,
        image_url: str | None = None,
        negative_prompt: str = "",
    ) -> str:
        """Submit an image-to-video task, or text-to-video when no image is given."""
        payload: dict = {
            "promptText": prompt[:PROMPT_CHAR_LIMIT],
            "ratio": provider_ratio(ratio),
            "duration": provider_duration(seconds),
        }
        if negative_prompt:
            payload["negativePrompt"] = negative_prompt[:PROMPT_CHAR_LIMIT]
        if image_url:
            payload["model"] = IMAGE_TO_VIDEO_MODEL
            payload["promptImage"] = image_url
            return await self._submit("image_to_video", payload)
        payload["model"] = TEXT_TO_VIDEO_MODEL
        return await self._submit("text_to_video", payload)

    async def submit_image(self, prompt: str, ratio: str) -> str:
        """Submit a text-to-image task for a source frame."""
        payload = {
            "model": TEXT_TO_IMAGE_MODEL,
            "promptText": prompt[:PROMPT_CHAR_LIMIT],
            "ratio": IMAGE_RATIOS.get(provider_ratio(ratio), "1080:1920"),
        }
        return await self._submit("text_to_image", payload)

    async def get_task(self, task_id: str) -> TaskStatus:
        """Fetch the current state of a task."""
        try:
            response = await self.client.get(
                f"{self.api_base}/tasks/{task_id}", headers=self._headers(), timeout=20.0
            )
        except httpx.HTTPError as e:
            raise VideoGenServiceError(f"Task poll failed: {e}") from e

        self._raise_for_response(response, f"task {task_id}")
        data = self._json(response, f"task {task_id}")
        output = data.get("output")
        if isinstance(output, list):
            output_url = output[0] if output else None
        elif isinstance(output, str):
            output_url = output
        else:
            output_url = None

        return TaskStatus(
            task_id=task_id,
            status=str(data.get("status") or "PENDING").upper(),
            output_url=output_url,
            failure=data.get("failure") or data.get("error"),
            failure_code=data.get("failureCode"),
        )

    async def download(self, url: str, output_path: Path) -> Path:
        """Stream a task output to ``output_path``."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self.client.stream("GET", url, timeout=300.0) as response:
                if response.status_code != 200:
                    raise VideoGenServiceError(
                        f"Output download failed with status {response.status_code}"
                    )
                with open(output_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise VideoGenServiceError(f"Output download failed: {e}") from e
        return output_path

    async def close(self) -> None:
        await self.client.aclose()
