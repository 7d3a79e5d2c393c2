# Data models for trendshorts
from .job import (
    ASPECT_RATIOS,
    VALID_DURATIONS,
    GenerationJob,
    JobResult,
    JobStatus,
    ratio_orientation,
    target_resolution,
)
from .segment import ClipResult, GenerationTier, Segment
from .image import AssetUsage, ImageResult, Reachability, VisualAsset
from .schedule import DEFAULT_TIMEZONE, ScheduleEntry, ScheduleType
from .events import PHASE_ORDER, Phase, PhaseEvent

__all__ = [
    "ASPECT_RATIOS",
    "VALID_DURATIONS",
    "GenerationJob",
    "JobResult",
    "JobStatus",
    "ratio_orientation",
    "target_resolution",
    # Segments and clips
    "ClipResult",
    "GenerationTier",
    "Segment",
    # Visual assets
    "AssetUsage",
    "ImageResult",
    "Reachability",
    "VisualAsset",
    # Scheduling
    "DEFAULT_TIMEZONE",
    "ScheduleEntry",
    "ScheduleType",
    # Progress events
    "PHASE_ORDER",
    "Phase",
    "PhaseEvent",
]
