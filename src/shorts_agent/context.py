"""Job-scoped mutable state threaded through the pipeline components."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from models.image import AssetUsage, Reachability, VisualAsset

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """Per-job bookkeeping shared by the asset resolver and clip generator.

    One instance per GenerationJob; never shared across jobs.
    """

    job_id: str
    workdir: Path
    aspect_ratio: str
    width: int
    height: int
    banned: set[str] = field(default_factory=set)
    unreachable: set[str] = field(default_factory=set)
    static_used: set[str] = field(default_factory=set)
    hero_indexes: set[int] = field(default_factory=set)
    fallback_image_url: str | None = None

    def ban(self, asset: VisualAsset, reason: str = "") -> None:
        """Ban an asset from the generative tiers for the rest of the job."""
        if asset.key not in self.banned:
            logger.warning(f"Banning asset for generative use: {asset.key} ({reason})")
        self.banned.add(asset.key)
        asset.usage = AssetUsage.BANNED

    def mark_unreachable(self, asset: VisualAsset) -> None:
        self.unreachable.add(asset.key)
        asset.reachability = Reachability.UNREACHABLE

    def mark_static_used(self, asset: VisualAsset) -> None:
        self.static_used.add(asset.key)

    def is_banned(self, asset: VisualAsset) -> bool:
        return asset.key in self.banned or asset.usage == AssetUsage.BANNED

    def can_generate_from(self, asset: VisualAsset | None) -> bool:
        return (
            asset is not None
            and not self.is_banned(asset)
            and asset.key not in self.unreachable
            and asset.generative_allowed
        )

    def can_animate(self, asset: VisualAsset | None) -> bool:
        return (
            asset is not None
            and asset.key not in self.unreachable
            and asset.static_allowed
        )
