"""Segment model: one timed slice of the final video."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class GenerationTier(str, Enum):
    """Clip generation strategies, in fallback order."""

    GENERATIVE_FROM_ASSET = "generative_from_asset"
    GENERATIVE_ALTERNATE = "generative_alternate"
    ANIMATED_STILL = "animated_still"
    PLACEHOLDER = "placeholder"


@dataclass
class Segment:
    """A narrated, timed slice of the video.

    The last index is reserved for the engagement tail (call to action).
    """

    index: int
    duration: float
    word_budget: int = 0
    script: str = ""
    motion_prompt: str = ""
    image_query: str = ""
    asset_index: Optional[int] = None
    tier: Optional[GenerationTier] = None
    clip_path: Optional[Path] = None
    audio_path: Optional[Path] = None
    is_tail: bool = False

    @property
    def word_count(self) -> int:
        return len(self.script.split())


@dataclass
class ClipResult:
    """Clip handle returned by the clip generator."""

    segment_index: int
    path: Path
    tier: GenerationTier
    duration: float
