"""AI service for script and SEO text generation, plus frame checks, using Google GenAI.

Model output is treated as untrusted text: ``parse_lenient_json`` repairs
the usual LLM JSON damage (code fences, missing array brackets, smart or
single quotes) before giving up.
"""

import json
import logging
import re
from typing import Any

from google.genai import Client
from google.genai import types

from utils.retry import APIRateLimitError, NetworkError, retry_api_call

logger = logging.getLogger(__name__)

JSON_PARSE_ATTEMPTS = 3

SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "„": '"',
    "‘": "'",
    "’": "'",
}


class AIServiceError(Exception):
    """Error from the LLM provider or unparseable model output."""

    pass


def strip_markdown_code_blocks(text: str) -> str:
    """Strip markdown code blocks from AI response text.

    Args:
        text: Raw text that may contain markdown code blocks

    Returns:
        Cleaned text with markdown code blocks removed
    """
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _wrap_object_sequence(text: str) -> str:
    """Turn ``{...}, {...}`` or newline separated objects into a JSON array."""
    if text.startswith("["):
        return text
    joined = re.sub(r"}\s*\n\s*{", "},{", text)
    return f"[{joined}]"


def _repair_quotes(text: str) -> str:
    for smart, plain in SMART_QUOTES.items():
        text = text.replace(smart, plain)
    # Single-quoted keys and values -> double quotes
    text = re.sub(r"(?<=[{,\[\s])'([^'\n]*?)'(?=\s*[:,}\]])", r'"\1"', text)
    # Trailing commas before a closing bracket
    return re.sub(r",\s*([}\]])", r"\1", text)


def parse_lenient_json(text: str | None) -> Any:
    """Parse JSON from an LLM response, repairing common damage.

    Attempts, in order: the fence-stripped text as-is, the text wrapped into
    an array, then the wrapped text with quotes repaired.

    Raises:
        AIServiceError: If no attempt yields valid JSON
    """
    if not text or not text.strip():
        raise AIServiceError("AI response is empty")

    cleaned = strip_markdown_code_blocks(text)
    # Cut any chatter around the outermost JSON value
    match = re.search(r"[\[{].*[\]}]", cleaned, re.DOTALL)
    if match:
        cleaned = match.group(0)

    candidates = [
        cleaned,
        _wrap_object_sequence(cleaned),
        _repair_quotes(_wrap_object_sequence(cleaned)),
    ]
    last_error: Exception | None = None
    for attempt, candidate in enumerate(candidates[:JSON_PARSE_ATTEMPTS], start=1):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = e
            logger.debug(f"JSON parse attempt {attempt} failed: {e}")

    logger.warning(f"Failed to parse AI response as JSON: {text[:300]}")
    raise AIServiceError(f"Unparseable AI response: {last_error}")


class AIService:
    """Thin Gemini client: one prompt in, raw text out."""

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.5-flash",
        temperature: float = 0.8,
    ):
        """Initialize Google GenAI client.

        Args:
            api_key: Google GenAI API key
            model_name: Gemini model to use
            temperature: Sampling temperature for every request
        """
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.client = Client(api_key=api_key) if api_key else None
        logger.info(f"Initialized AI service with model: {model_name}")

    def is_configured(self) -> bool:
        return self.client is not None

    @retry_api_call(max_retries=3, base_delay=2.0)
    def complete(self, prompt: str, json_output: bool = False) -> str:
        """Run one prompt and return the response text.

        Blocking; async callers go through ``asyncio.to_thread``.

        Raises:
            AIServiceError: If the client is not configured, the call fails
                or the response is empty
        """
        if self.client is None:
            raise AIServiceError("Gemini API key not configured")

        config = types.GenerateContentConfig(temperature=self.temperature)
        if json_output:
            config.response_mime_type = "application/json"

        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=prompt,
                config=config,
            )
        except Exception as e:
            logger.error(f"Gemini request failed: {e}")
            # Convert specific errors to retryable errors
            message = str(e).lower()
            if "rate limit" in message or "429" in message or "resource_exhausted" in message:
                raise APIRateLimitError(f"Rate limit hit: {e}") from e
            if "network" in message or "connection" in message:
                raise NetworkError(f"Network error: {e}") from e
            raise AIServiceError(f"Gemini request failed: {e}") from e

        if not response.text:
            raise AIServiceError("AI response is empty")
        return response.text

    @retry_api_call(max_retries=2, base_delay=2.0)
    def ask_about_image(self, image_bytes: bytes, prompt: str, mime_type: str = "image/jpeg") -> str:
        """Ask a question about one image and return the answer text (blocking)."""
        if self.client is None:
            raise AIServiceError("Gemini API key not configured")

        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=[
                    types.Content(
                        parts=[
                            types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                            types.Part.from_text(text=prompt),
                        ]
                    )
                ],
                config=types.GenerateContentConfig(temperature=0.0),
            )
        except Exception as e:
            logger.error(f"Gemini vision request failed: {e}")
            message = str(e).lower()
            if "rate limit" in message or "429" in message or "resource_exhausted" in message:
                raise APIRateLimitError(f"Rate limit hit: {e}") from e
            raise AIServiceError(f"Gemini vision request failed: {e}") from e

        if not response.text:
            raise AIServiceError("AI response is empty")
        return response.text

    def complete_json(self, prompt: str) -> Any:
        """Run a prompt that asks for JSON and parse the answer leniently."""
        return parse_lenient_json(self.complete(prompt, json_output=True))
