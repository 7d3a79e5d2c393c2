"""Music Service - HTTP client for background tracks from the Jamendo catalogue."""

import logging
import os
from pathlib import Path
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

JAMENDO_TRACKS_URL = "https://api.jamendo.com/v3.0/tracks"


class MusicServiceError(Exception):
    """Error from Music service."""

    pass


def default_search_terms(topic: str, category: str) -> list[str]:
    """Search terms tried when no music plan is available."""
    first_word = topic.split()[0] if topic.split() else ""
    terms = [first_word, f"{category.lower()} instrumental", "ambient instrumental no vocals"]
    return [t for t in terms if t]


class MusicService:
    """HTTP client for royalty-free background music search on Jamendo."""

    def __init__(self, client_id: str | None = None):
        """Initialize Music service."""
        self.client_id = client_id if client_id is not None else os.getenv("JAMENDO_CLIENT_ID", "")
        self.client = httpx.AsyncClient(timeout=20.0)

    def is_configured(self) -> bool:
        """Check if the service is configured."""
        return bool(self.client_id)

    async def search(self, term: str) -> Optional[str]:
        """Return the audio URL of the top track for ``term``, or None.

        Search failures are treated as "no match" so callers can move on to
        the next term.
        """
        if not self.is_configured() or not term.strip():
            return None

        params = {
            "client_id": self.client_id,
            "format": "json",
            "limit": 1,
            "search": term,
        }
        try:
            response = await self.client.get(JAMENDO_TRACKS_URL, params=params, timeout=12.0)
            response.raise_for_status()
            results = response.json().get("results") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[Music] Jamendo search failed for '{term}': {e}")
            return None

        if not results:
            return None
        return results[0].get("audio") or None

    async def find_track(self, terms: list[str]) -> tuple[Optional[str], Optional[str]]:
        """Try ``terms`` in order; return (audio_url, term_used)."""
        for term in terms:
            url = await self.search(term)
            if url:
                logger.info(f"[Music] Using Jamendo track for '{term}'")
                return url, term
        logger.info(f"[Music] No track found for {terms}")
        return None, None

    async def download(self, url: str, output_path: Path) -> Path:
        """Download a track to ``output_path``.

        Raises:
            MusicServiceError: If the download fails
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self.client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise MusicServiceError(
                        f"Music download failed with status {response.status_code}"
                    )
                with open(output_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise MusicServiceError(f"Music download failed: {e}") from e
        return output_path

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
