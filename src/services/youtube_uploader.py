"""YouTube publishing via the YouTube Data API v3 (videos.insert).

Uploads are blocking resumable uploads; async callers go through
``asyncio.to_thread``.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
UPLOAD_SCOPES = ["https://www.googleapis.com/auth/youtube.upload"]
UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024

# YouTube category ids by pipeline category
YOUTUBE_CATEGORY_IDS = {
    "Sports": "17",
    "Entertainment": "24",
    "Politics": "25",
    "World": "25",
    "Finance": "25",
    "Technology": "28",
    "Science": "28",
    "Health": "26",
    "Lifestyle": "26",
    "Top5": "24",
    "Other": "22",
}

LANGUAGE_CODES = {
    "English": "en",
    "العربية": "ar",
    "Français": "fr",
    "Deutsch": "de",
    "हिंदी": "hi",
}

TITLE_MAX_CHARS = 100
DESCRIPTION_MAX_CHARS = 5000
TAGS_MAX_CHARS = 450


class YouTubeUploadError(Exception):
    """Raised when an upload is rejected or fails."""

    pass


@dataclass
class VideoMetadata:
    """Title, description and tags for a published short."""

    title: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    category: str = "Other"
    language: str = "English"


def _trim_tags(tags: list[str]) -> list[str]:
    """Keep tags in order while the combined length fits the API limit."""
    kept, total = [], 0
    for tag in tags:
        tag = tag.strip().lstrip("#")
        if not tag or tag in kept:
            continue
        if total + len(tag) + 1 > TAGS_MAX_CHARS:
            break
        kept.append(tag)
        total += len(tag) + 1
    return kept


def build_upload_body(metadata: VideoMetadata, publish_at: Optional[datetime] = None) -> dict:
    """Request body for videos.insert.

    A ``publish_at`` in the future uploads the video private and lets
    YouTube publish it at that instant.
    """
    status: dict = {"privacyStatus": "public", "selfDeclaredMadeForKids": False}
    if publish_at is not None:
        when = publish_at.astimezone(timezone.utc)
        if when > datetime.now(timezone.utc):
            status = {
                "privacyStatus": "private",
                "publishAt": when.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
                "selfDeclaredMadeForKids": False,
            }

    language = LANGUAGE_CODES.get(metadata.language, "en")
    return {
        "snippet": {
            "title": metadata.title[:TITLE_MAX_CHARS],
            "description": metadata.description[:DESCRIPTION_MAX_CHARS],
            "tags": _trim_tags(metadata.tags),
            "categoryId": YOUTUBE_CATEGORY_IDS.get(metadata.category, "22"),
            "defaultLanguage": language,
            "defaultAudioLanguage": language,
        },
        "status": status,
    }


class YouTubeUploader:
    """Uploads finished shorts to a channel using OAuth refresh-token credentials."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
    ):
        self.client_id = client_id or os.getenv("YOUTUBE_CLIENT_ID", "")
        self.client_secret = client_secret or os.getenv("YOUTUBE_CLIENT_SECRET", "")
        self.refresh_token = refresh_token or os.getenv("YOUTUBE_REFRESH_TOKEN", "")
        self._lock = threading.RLock()

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def _credentials(self, refresh_token: str | None = None) -> Credentials:
        return Credentials(
            token=None,
            refresh_token=refresh_token or self.refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=UPLOAD_SCOPES,
        )

    def upload(
        self,
        video_path: Path,
        metadata: VideoMetadata,
        refresh_token: str | None = None,
        publish_at: Optional[datetime] = None,
    ) -> str:
        """Upload ``video_path`` and return the public watch URL.

        Args:
            video_path: Final MP4
            metadata: Title, description, tags, category and language
            refresh_token: Per-owner token overriding the configured one
            publish_at: Optional scheduled publish instant

        Raises:
            YouTubeUploadError: If credentials are missing or the API rejects the upload
        """
        if not (refresh_token or self.is_configured()):
            raise YouTubeUploadError("YouTube credentials not configured")

        youtube = build(
            "youtube", "v3", credentials=self._credentials(refresh_token), cache_discovery=False
        )
        media = MediaFileUpload(
            str(video_path), mimetype="video/mp4", chunksize=UPLOAD_CHUNK_SIZE, resumable=True
        )
        request = youtube.videos().insert(
            part="snippet,status",
            body=build_upload_body(metadata, publish_at),
            media_body=media,
        )

        logger.info(f"[YouTube] Uploading {video_path.name}: {metadata.title!r}")
        try:
            with self._lock:
                response = None
                while response is None:
                    status, response = request.next_chunk()
                    if status:
                        logger.debug(f"[YouTube] Upload {int(status.progress() * 100)}%")
        except HttpError as e:
            raise YouTubeUploadError(f"YouTube upload failed: {e}") from e

        video_id = response.get("id")
        if not video_id:
            raise YouTubeUploadError("YouTube returned no video id")
        url = f"https://www.youtube.com/shorts/{video_id}"
        logger.info(f"[YouTube] Uploaded {url}")
        return url
