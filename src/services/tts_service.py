"""TTS Service - HTTP clients for narration via ElevenLabs and OpenAI."""

import logging
import os

import httpx

logger = logging.getLogger(__name__)

ELEVENLABS_API_BASE = "https://api.elevenlabs.io/v1"
ELEVENLABS_MODEL = "eleven_multilingual_v2"
ELEVENLABS_STABILITY = 0.15
ELEVENLABS_SIMILARITY = 0.92

OPENAI_API_BASE = "https://api.openai.com/v1"
OPENAI_TTS_MODEL = "tts-1-hd"
OPENAI_TTS_VOICE = "shimmer"


class TTSServiceError(Exception):
    """Error from a TTS provider."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    detail = data.get("detail") or data.get("error") or data
    if isinstance(detail, dict):
        detail = detail.get("message") or detail
    return str(detail)


class ElevenLabsClient:
    """Primary narration provider."""

    def __init__(self, api_key: str | None = None, model_id: str = ELEVENLABS_MODEL):
        self.api_key = api_key if api_key is not None else os.getenv("ELEVENLABS_API_KEY", "")
        self.model_id = model_id
        self.client = httpx.AsyncClient(timeout=120.0)

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def synthesize(
        self,
        text: str,
        voice_id: str,
        style: float | None = None,
        stability: float = ELEVENLABS_STABILITY,
        similarity: float = ELEVENLABS_SIMILARITY,
    ) -> bytes:
        """Synthesize ``text`` with ``voice_id`` and return MP3 bytes.

        ``style`` is omitted from the voice settings when None.

        Raises:
            TTSServiceError: On transport failure or a non-200 answer. The
                HTTP status is kept on the error so callers can react to 422.
        """
        if not self.is_configured():
            raise TTSServiceError("ElevenLabs API key not configured")

        voice_settings = {
            "stability": stability,
            "similarity_boost": similarity,
            "use_speaker_boost": True,
        }
        if style is not None:
            voice_settings["style"] = style

        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": voice_settings,
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }

        logger.debug(f"[ElevenLabs] Synthesizing {len(text)} chars with voice {voice_id}")
        try:
            response = await self.client.post(
                f"{ELEVENLABS_API_BASE}/text-to-speech/{voice_id}",
                json=payload,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TTSServiceError("ElevenLabs request timed out") from e
        except httpx.HTTPError as e:
            raise TTSServiceError(f"ElevenLabs request failed: {e}") from e

        if response.status_code != 200:
            raise TTSServiceError(
                f"ElevenLabs error: {_error_detail(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            raise TTSServiceError("ElevenLabs returned no audio")
        return response.content

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class OpenAITTSClient:
    """Secondary narration provider."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = OPENAI_TTS_MODEL,
        voice: str = OPENAI_TTS_VOICE,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        self.model = model
        self.voice = voice
        self.client = httpx.AsyncClient(timeout=120.0)

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def synthesize(self, text: str, voice_id: str | None = None, speed: float = 1.0) -> bytes:
        """Synthesize ``text`` and return MP3 bytes."""
        if not self.is_configured():
            raise TTSServiceError("OpenAI API key not configured")

        payload = {
            "model": self.model,
            "voice": voice_id or self.voice,
            "input": text,
            "speed": speed,
            "response_format": "mp3",
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        logger.debug(f"[OpenAI TTS] Synthesizing {len(text)} chars at speed {speed}")
        try:
            response = await self.client.post(
                f"{OPENAI_API_BASE}/audio/speech", json=payload, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TTSServiceError("OpenAI TTS request timed out") from e
        except httpx.HTTPError as e:
            raise TTSServiceError(f"OpenAI TTS request failed: {e}") from e

        if response.status_code != 200:
            raise TTSServiceError(
                f"OpenAI TTS error: {_error_detail(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            raise TTSServiceError("OpenAI TTS returned no audio")
        return response.content

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
