"""Data models for visual asset discovery and selection."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass
class ImageResult:
    """Represents an image search result from a web image source."""

    image_id: str
    title: str
    url: str  # Page URL where image is hosted
    download_url: str  # Direct URL of the image file
    width: int
    height: int
    source: str  # google, trends, etc.
    thumbnail_url: Optional[str] = None

    @property
    def aspect_ratio(self) -> float:
        """Calculate aspect ratio (width/height)."""
        if self.height == 0:
            return 0.0
        return self.width / self.height

    @property
    def megapixels(self) -> float:
        return (self.width * self.height) / 1_000_000


class Reachability(str, Enum):
    """Result of the lightweight reachability probe."""

    UNCHECKED = "unchecked"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class AssetUsage(str, Enum):
    """How an asset may still be used within the current job."""

    AVAILABLE = "available"
    STATIC_ONLY = "static_only"
    BANNED = "banned"


@dataclass
class VisualAsset:
    """A candidate image for one or more segments.

    Banned assets never go back to the generative-video tiers but remain
    usable as an animated still unless they are also unreachable.
    """

    source_url: str
    score: float = 0.0
    aspect: str = "unknown"  # landscape, portrait, square, unknown
    cdn_url: Optional[str] = None
    title: str = ""
    width: int = 0
    height: int = 0
    origin: str = "search"  # story, search
    discovery_index: int = 0
    reachability: Reachability = Reachability.UNCHECKED
    usage: AssetUsage = AssetUsage.AVAILABLE

    @property
    def key(self) -> str:
        """Identity used for job-scoped ban and usage bookkeeping."""
        return self.source_url

    @property
    def delivery_url(self) -> str:
        return self.cdn_url or self.source_url

    @property
    def generative_allowed(self) -> bool:
        return (
            self.usage == AssetUsage.AVAILABLE
            and self.reachability != Reachability.UNREACHABLE
        )

    @property
    def static_allowed(self) -> bool:
        return self.reachability != Reachability.UNREACHABLE
