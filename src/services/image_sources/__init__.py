"""Image sources package for topic image discovery."""

from services.image_sources.base import ImageSource, download_image_url
from services.image_sources.google import GoogleImageSource

__all__ = [
    "ImageSource",
    "GoogleImageSource",
    "download_image_url",
]
