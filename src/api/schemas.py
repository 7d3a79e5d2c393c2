"""Pydantic request/response models for the trendshorts API."""

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from models.job import ASPECT_RATIOS, DEFAULT_ASPECT_RATIO, VALID_DURATIONS
from models.schedule import DEFAULT_TIMEZONE, ScheduleType
from shorts_agent.scheduler import get_zone, parse_time_of_day

# =============================================================================
# Response Models
# =============================================================================


class RootResponse(BaseModel):
    """Root endpoint response."""

    message: str
    version: str

    model_config = {"json_schema_extra": {"examples": [{"message": "trendshorts API", "version": "1.0.0"}]}}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    queue_length: int = 0
    processing: bool = False
    scheduler_running: bool = False

    model_config = {"json_schema_extra": {"examples": [{"status": "healthy"}]}}


class JobCreatedResponse(BaseModel):
    """Response when a generation job is queued."""

    job_id: str
    status: str


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


# =============================================================================
# Request Models
# =============================================================================


def _valid_duration(v: int) -> int:
    if v not in VALID_DURATIONS:
        raise ValueError("duration must be a multiple of 5 between 5 and 90")
    return v


def _valid_aspect_ratio(v: str) -> str:
    if v not in ASPECT_RATIOS:
        raise ValueError(f"aspect_ratio must be one of {', '.join(ASPECT_RATIOS)}")
    return v


class ShortRequest(BaseModel):
    """Request body for a one-off short."""

    category: str = Field(default="Standard", min_length=1, max_length=40)
    duration: int = Field(default=30, description="Seconds; a multiple of 5 between 5 and 90")
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    language: str = "English"
    country: str = Field(default="US", min_length=2, max_length=2)
    topic: str = Field(default="", max_length=300)
    voice_id: str | None = None
    publish: bool = False
    publish_at: datetime | None = None
    owner_id: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"category": "Sports", "duration": 30, "aspect_ratio": "720:1280", "topic": ""}
            ]
        }
    }

    @field_validator("duration")
    @classmethod
    def check_duration(cls, v: int) -> int:
        return _valid_duration(v)

    @field_validator("aspect_ratio")
    @classmethod
    def check_aspect_ratio(cls, v: str) -> str:
        return _valid_aspect_ratio(v)


class ScheduleTemplate(BaseModel):
    """Job parameters copied onto every scheduled run."""

    category: str = Field(default="Standard", min_length=1, max_length=40)
    duration: int = 30
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    language: str = "English"
    country: str = "US"
    voice_id: str | None = None
    publish: bool = False

    @field_validator("duration")
    @classmethod
    def check_duration(cls, v: int) -> int:
        return _valid_duration(v)

    @field_validator("aspect_ratio")
    @classmethod
    def check_aspect_ratio(cls, v: str) -> str:
        return _valid_aspect_ratio(v)


class ScheduleCreateRequest(BaseModel):
    """Request body for a recurring schedule."""

    schedule_type: ScheduleType = ScheduleType.DAILY
    time_of_day: str = Field(default="09:00", description="Local wall clock, HH:MM")
    timezone: str = DEFAULT_TIMEZONE
    start_date: date | None = None
    end_date: date | None = None
    owner_id: str | None = None
    job: ScheduleTemplate = Field(default_factory=ScheduleTemplate)

    @field_validator("time_of_day")
    @classmethod
    def check_time_of_day(cls, v: str) -> str:
        hour, minute = parse_time_of_day(v)
        return f"{hour:02d}:{minute:02d}"

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        if get_zone(v).key != v:
            raise ValueError(f"Unknown timezone: {v}")
        return v


class ScheduleUpdateRequest(BaseModel):
    """Partial update for a schedule; omitted fields are unchanged."""

    schedule_type: ScheduleType | None = None
    time_of_day: str | None = None
    timezone: str | None = None
    end_date: date | None = None
    active: bool | None = None
    job: ScheduleTemplate | None = None

    @field_validator("time_of_day")
    @classmethod
    def check_time_of_day(cls, v: str | None) -> str | None:
        if v is None:
            return v
        hour, minute = parse_time_of_day(v)
        return f"{hour:02d}:{minute:02d}"

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        if v is not None and get_zone(v).key != v:
            raise ValueError(f"Unknown timezone: {v}")
        return v
