"""Google Images source via SerpAPI for topic image search."""

import hashlib
import logging
import os
from typing import Optional

import aiohttp

from models.image import ImageResult
from services.image_sources.base import ImageSource
from utils.retry import NetworkError, TemporaryServiceError, retry_api_call

logger = logging.getLogger(__name__)


class GoogleImageSource(ImageSource):
    """Google Images source via SerpAPI.

    API Documentation: https://serpapi.com/google-images-api

    Results carry original dimensions, which feed the resolution part of
    the asset score.
    """

    BASE_URL = "https://serpapi.com/search"

    def __init__(self, api_key: str | None = None, max_results: int = 20):
        """Initialize Google image source via SerpAPI.

        Args:
            api_key: SerpAPI key (defaults to SERPAPI_KEY)
            max_results: Maximum number of search results to return
        """
        self.max_results = min(max_results, 100)  # SerpAPI limit
        self.api_key = api_key if api_key is not None else os.getenv("SERPAPI_KEY", "")

        if not self.api_key:
            logger.warning(
                "[Google Images] No API key configured. Set SERPAPI_KEY to enable Google Images search."
            )

    def get_source_name(self) -> str:
        return "google"

    def is_configured(self) -> bool:
        return bool(self.api_key)

    @retry_api_call(max_retries=2, base_delay=1.0)
    async def search_images(
        self, phrase: str, per_page: int = 10, orientation: str | None = None
    ) -> list[ImageResult]:
        """Search Google Images for large photos matching ``phrase``.

        Args:
            phrase: Search query string
            per_page: Maximum number of results
            orientation: Optional "landscape"/"portrait"/"square" hint

        Returns:
            List of ImageResult objects in Google's ranking order
        """
        if not phrase.strip():
            return []

        if not self.api_key:
            logger.debug("[Google Images] Skipping search - no API key configured")
            return []

        tbs = "itp:photo,isz:l"
        if orientation == "landscape":
            tbs += ",iar:w"
        elif orientation == "portrait":
            tbs += ",iar:t"
        elif orientation == "square":
            tbs += ",iar:s"

        params = {
            "api_key": self.api_key,
            "engine": "google_images",
            "q": phrase,
            "num": min(per_page, self.max_results),
            "tbs": tbs,
            "safe": "active",
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.BASE_URL, params=params, timeout=aiohttp.ClientTimeout(total=30)
                ) as response:
                    if response.status == 401:
                        logger.error("[Google Images] Invalid API key")
                        return []

                    if response.status == 429:
                        logger.warning("[Google Images] Rate limit exceeded")
                        raise TemporaryServiceError("SerpAPI rate limit exceeded")

                    if response.status != 200:
                        logger.warning(f"[Google Images] API returned status {response.status}")
                        return []

                    data = await response.json()

                    if "error" in data:
                        logger.error(f"[Google Images] API error: {data['error']}")
                        return []

                    results = []
                    for idx, image in enumerate(data.get("images_results", [])):
                        if len(results) >= per_page:
                            break
                        result = self._parse_image(image, idx)
                        if result:
                            results.append(result)

                    logger.debug(f"[Google Images] Found {len(results)} images for '{phrase}'")
                    return results

        except aiohttp.ClientError as e:
            logger.error(f"[Google Images] Network error: {e}")
            raise NetworkError(f"Google Images network error: {e}") from e

    def _parse_image(self, image: dict, idx: int) -> Optional[ImageResult]:
        """Parse one SerpAPI ``images_results`` entry; None if it has no original URL."""
        original_url = image.get("original", "")
        if not original_url:
            return None

        url_hash = hashlib.md5(original_url.encode()).hexdigest()[:8]
        title = str(image.get("title") or f"Google Image {idx + 1}")[:100]

        try:
            width = int(image.get("original_width") or 0)
            height = int(image.get("original_height") or 0)
        except (TypeError, ValueError):
            width, height = 0, 0

        return ImageResult(
            image_id=f"google_{url_hash}",
            title=title,
            url=image.get("link") or original_url,
            download_url=original_url,
            width=width,
            height=height,
            source="google",
            thumbnail_url=image.get("thumbnail"),
        )
