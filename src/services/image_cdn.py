"""Image CDN service - Cloudinary upload + fill transform to exact render size."""

import hashlib
import logging
import os
import time
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"
CLOUDINARY_DELIVERY_BASE = "https://res.cloudinary.com"


class ImageCDNError(Exception):
    """Raised when an upload or transform fails."""

    def __init__(self, message: str, too_large: bool = False):
        super().__init__(message)
        self.too_large = too_large


class ImageCDNService:
    """Normalizes remote images through Cloudinary.

    Each image is uploaded (by remote URL, or as a local file when the remote
    fetch is rejected) and delivered through a ``c_fill,g_auto`` transform at
    the exact target resolution.
    """

    def __init__(
        self,
        cloud_name: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
    ):
        self.cloud_name = cloud_name or os.getenv("CLOUDINARY_CLOUD_NAME", "")
        self.api_key = api_key or os.getenv("CLOUDINARY_API_KEY", "")
        self.api_secret = api_secret or os.getenv("CLOUDINARY_API_SECRET", "")
        self.client = httpx.AsyncClient(timeout=60.0)

    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def _sign(self, params: dict) -> str:
        """Cloudinary signature: sha1 of sorted "k=v" pairs followed by the secret."""
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode()).hexdigest()

    def delivery_url(self, public_id: str, width: int, height: int) -> str:
        transform = f"c_fill,g_auto,w_{width},h_{height},q_auto,f_jpg"
        return f"{CLOUDINARY_DELIVERY_BASE}/{self.cloud_name}/image/upload/{transform}/{public_id}.jpg"

    async def _upload(self, data: dict, files: dict | None = None) -> str:
        params = {"folder": "trendshorts", "timestamp": str(int(time.time()))}
        payload = {
            **data,
            **params,
            "api_key": self.api_key,
            "signature": self._sign(params),
        }
        url = f"{CLOUDINARY_API_BASE}/{self.cloud_name}/image/upload"

        try:
            response = await self.client.post(url, data=payload, files=files)
        except httpx.HTTPError as e:
            raise ImageCDNError(f"Cloudinary upload request failed: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            too_large = "too large" in message.lower() or response.status_code == 413
            raise ImageCDNError(f"Cloudinary upload rejected: {message}", too_large=too_large)

        try:
            public_id = response.json().get("public_id")
        except (ValueError, AttributeError) as e:
            raise ImageCDNError(f"Cloudinary returned an unreadable body: {response.text[:200]!r}") from e
        if not public_id:
            raise ImageCDNError("Cloudinary returned no public_id")
        return public_id

    async def normalize(self, url: str, width: int, height: int) -> str:
        """Upload a remote image by URL and return the transformed delivery URL."""
        if not self.is_configured():
            raise ImageCDNError("Cloudinary not configured")
        public_id = await self._upload({"file": url})
        logger.debug(f"[CDN] Uploaded remote image as {public_id}")
        return self.delivery_url(public_id, width, height)

    async def normalize_file(self, path: Path, width: int, height: int) -> str:
        """Upload a local image file and return the transformed delivery URL."""
        if not self.is_configured():
            raise ImageCDNError("Cloudinary not configured")
        with open(path, "rb") as f:
            public_id = await self._upload({}, files={"file": (path.name, f.read(), "image/jpeg")})
        logger.debug(f"[CDN] Uploaded local image {path.name} as {public_id}")
        return self.delivery_url(public_id, width, height)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
