"""Trends Service - HTTP client for the trending-story feed."""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

TRENDS_HTTP_TIMEOUT = 60.0

# Google Trends "trending now" category ids by pipeline category
TRENDS_CATEGORY_IDS = {
    "Sports": 17,
    "Politics": 14,
    "Finance": 3,
    "Entertainment": 4,
    "Technology": 18,
    "Health": 7,
    "Science": 15,
    "Lifestyle": 8,
    "World": 0,
    "Top5": 0,
    "Other": 11,
}


class TrendsServiceError(Exception):
    """Error from the trends feed."""

    pass


@dataclass
class TrendStory:
    """A trending story with the imagery attached to it."""

    title: str
    raw_title: str = ""
    images: list[str] = field(default_factory=list)
    article_images: list[str] = field(default_factory=list)
    articles: list[dict] = field(default_factory=list)
    entity_names: list[str] = field(default_factory=list)


def _norm_title(text: str) -> str:
    return " ".join(str(text or "").lower().split())


class TrendsService:
    """Fetches the freshest unused trending story for a category."""

    def __init__(self, api_url: str | None = None):
        self.api_url = api_url or os.getenv(
            "TRENDS_API_URL", "http://localhost:8102/api/google-trends"
        )
        self.client = httpx.AsyncClient(timeout=TRENDS_HTTP_TIMEOUT)

    def is_configured(self) -> bool:
        return bool(self.api_url)

    async def _get_stories(self, params: dict) -> list[dict]:
        try:
            response = await self.client.get(self.api_url, params=params)
        except httpx.TimeoutException:
            # Feed scraping is slow on a cold cache; give it one longer attempt
            logger.warning("[Trends] Timeout, retrying once with extended timeout")
            try:
                response = await self.client.get(
                    self.api_url, params=params, timeout=TRENDS_HTTP_TIMEOUT * 1.5
                )
            except httpx.HTTPError as e:
                raise TrendsServiceError(f"Trends feed unavailable: {e}") from e
        except httpx.HTTPError as e:
            raise TrendsServiceError(f"Trends feed unavailable: {e}") from e

        if response.status_code != 200:
            raise TrendsServiceError(f"Trends feed returned status {response.status_code}")

        data = response.json()
        stories = data.get("stories") if isinstance(data, dict) else None
        return stories if isinstance(stories, list) else []

    async def fetch_trending_story(
        self,
        category: str,
        geo: str = "US",
        exclude_topics: set[str] | None = None,
        language: str = "English",
    ) -> Optional[TrendStory]:
        """Return the first story whose title and entities are not in ``exclude_topics``.

        Falls back to the top story when every story was already used.
        Returns None when the feed has no stories.
        """
        used = {_norm_title(t) for t in (exclude_topics or set()) if _norm_title(t)}

        def is_used(term: str) -> bool:
            n = _norm_title(term)
            if not n:
                return False
            return n in used or any(u in n or n in u for u in used)

        params = {
            "geo": geo,
            "category": str(TRENDS_CATEGORY_IDS.get(category, 0)),
            "hours": "168",
            "language": language,
        }
        logger.info(f"[Trends] Fetching {category} stories for {geo}")
        stories = await self._get_stories(params)
        if not stories:
            return None

        picked: Optional[dict] = None
        for story in stories:
            title = str(
                story.get("youtubeShortTitle") or story.get("seoTitle") or story.get("title") or ""
            ).strip()
            entities = story.get("entityNames") or []
            if (
                title
                and not is_used(title)
                and not is_used(story.get("title", ""))
                and not any(is_used(str(e)) for e in entities)
            ):
                picked = story
                break
        if picked is None:
            picked = stories[0]

        images = []
        if picked.get("image"):
            images.append(picked["image"])
        images.extend(u for u in picked.get("images") or [] if isinstance(u, str))

        articles = [a for a in picked.get("articles") or [] if isinstance(a, dict)]
        title = str(
            picked.get("youtubeShortTitle") or picked.get("seoTitle") or picked.get("title") or ""
        ).strip()

        return TrendStory(
            title=title,
            raw_title=str(picked.get("title") or "").strip(),
            images=images,
            article_images=[a["image"] for a in articles if a.get("image")],
            articles=articles,
            entity_names=[str(e) for e in picked.get("entityNames") or []],
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
