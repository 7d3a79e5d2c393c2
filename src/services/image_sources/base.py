"""Base abstraction for image sources and the shared image downloader."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import aiohttp

from models.image import ImageResult

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "image/*,*/*;q=0.8",
}


async def download_image_url(url: str, output_path: Path, timeout: float = 60) -> Optional[Path]:
    """Download an image URL to ``output_path``.

    Returns the path on success, or None if the server answers with a
    non-200 status or a non-image content type.
    """
    try:
        async with aiohttp.ClientSession(headers=BROWSER_HEADERS) as session:
            async with session.get(
                url, timeout=aiohttp.ClientTimeout(total=timeout), allow_redirects=True
            ) as response:
                if response.status != 200:
                    logger.warning(f"Image download failed with status {response.status}: {url}")
                    return None

                content_type = response.headers.get("content-type", "")
                if content_type and not content_type.startswith("image/"):
                    logger.warning(f"Unexpected content type {content_type} for {url}")
                    return None

                content = await response.read()
                output_path.parent.mkdir(parents=True, exist_ok=True)
                output_path.write_bytes(content)
                logger.debug(f"Downloaded {url} to {output_path}")
                return output_path

    except aiohttp.ClientError as e:
        logger.warning(f"Network error downloading {url}: {e}")
        return None
    except asyncio.TimeoutError:
        logger.warning(f"Timed out downloading {url}")
        return None
    except OSError as e:
        logger.warning(f"File error saving {url}: {e}")
        return None


class ImageSource(ABC):
    """Abstract base class for web image sources."""

    @abstractmethod
    async def search_images(self, phrase: str, per_page: int = 10) -> list[ImageResult]:
        """Search for images matching the search phrase.

        Args:
            phrase: Search query string
            per_page: Maximum number of results to return

        Returns:
            List of ImageResult objects
        """

    @abstractmethod
    def get_source_name(self) -> str:
        """Get the name of this image source (e.g., "google")."""

    def is_configured(self) -> bool:
        """Check if this source has required configuration (API keys, etc.).

        Default implementation returns True (no config required).
        """
        return True
