"""Generation job model: one topic request turned into one short video."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

# Durations accepted by the pipeline, in seconds
VALID_DURATIONS = tuple(range(5, 95, 5))

# Generative-video aspect ratios and their render resolution
ASPECT_RATIOS = ("1280:720", "720:1280", "1104:832", "832:1104", "960:960", "1584:672")
DEFAULT_ASPECT_RATIO = "720:1280"


class JobStatus(str, Enum):
    """Lifecycle of a generation job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


def target_resolution(aspect_ratio: str) -> tuple[int, int]:
    """Map a generative aspect ratio to the final render resolution (width, height)."""
    if aspect_ratio in ("720:1280", "832:1104"):
        return 1080, 1920
    if aspect_ratio == "960:960":
        return 1080, 1080
    if aspect_ratio == "1104:832":
        return 1440, 1080
    return 1920, 1080


def ratio_orientation(aspect_ratio: str) -> Optional[str]:
    """Return 'landscape', 'portrait' or 'square' for a "W:H" ratio string."""
    try:
        w, h = (int(p) for p in str(aspect_ratio).split(":"))
    except ValueError:
        return None
    if not w or not h:
        return None
    if w > h:
        return "landscape"
    if w < h:
        return "portrait"
    return "square"


@dataclass
class JobResult:
    """Final media reference and publishing metadata."""

    video_path: str
    duration: float
    title: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    public_url: Optional[str] = None
    scheduled_for: Optional[str] = None


@dataclass
class GenerationJob:
    """A single short-video generation request.

    Created by the API or by the scheduler, owned by the orchestrator while
    running. Once the status leaves ``running`` the job is terminal.
    """

    category: str
    duration: int
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    language: str = "English"
    country: str = "US"
    topic: str = ""
    owner_id: Optional[str] = None
    schedule_id: Optional[str] = None
    voice_id: Optional[str] = None
    publish: bool = False
    publish_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    result: Optional[JobResult] = None
    error: Optional[str] = None

    def __post_init__(self):
        if self.duration not in VALID_DURATIONS:
            raise ValueError(
                f"Invalid duration {self.duration}s: must be a multiple of 5 between 5 and 90"
            )
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise ValueError(f"Unsupported aspect ratio: {self.aspect_ratio}")
        if isinstance(self.status, str):
            self.status = JobStatus(self.status)

    @property
    def is_top5(self) -> bool:
        return self.category == "Top5"

    @property
    def resolution(self) -> tuple[int, int]:
        return target_resolution(self.aspect_ratio)

    def start(self) -> None:
        if self.status != JobStatus.PENDING:
            raise ValueError(f"Job {self.id} cannot start from status {self.status.value}")
        self.status = JobStatus.RUNNING

    def succeed(self, result: JobResult) -> None:
        if self.status != JobStatus.RUNNING:
            raise ValueError(f"Job {self.id} cannot succeed from status {self.status.value}")
        self.status = JobStatus.SUCCEEDED
        self.result = result
        self.completed_at = datetime.now(timezone.utc)

    def fail(self, error: str) -> None:
        if self.status.is_terminal:
            raise ValueError(f"Job {self.id} is already {self.status.value}")
        self.status = JobStatus.FAILED
        self.error = error
        self.completed_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the job store and API responses."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "schedule_id": self.schedule_id,
            "category": self.category,
            "duration": self.duration,
            "aspect_ratio": self.aspect_ratio,
            "language": self.language,
            "country": self.country,
            "topic": self.topic,
            "voice_id": self.voice_id,
            "publish": self.publish,
            "publish_at": self.publish_at.isoformat() if self.publish_at else None,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "result": asdict(self.result) if self.result else None,
            "error": self.error,
        }
