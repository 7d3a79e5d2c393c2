"""Schedule entry model for recurring short-video generation."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

DEFAULT_TIMEZONE = "America/Los_Angeles"


class ScheduleType(str, Enum):
    """Recurrence unit."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class ScheduleEntry:
    """A long-lived recurring generation schedule.

    ``next_run`` is an aware datetime; ``time_of_day`` is the local wall
    clock ("HH:MM") in ``timezone``.
    """

    schedule_type: ScheduleType
    time_of_day: str
    start_date: date
    next_run: datetime
    timezone: str = DEFAULT_TIMEZONE
    end_date: Optional[date] = None
    owner_id: Optional[str] = None
    active: bool = True
    fail_count: int = 0
    last_fail_at: Optional[datetime] = None
    last_fail_reason: Optional[str] = None
    last_run_at: Optional[datetime] = None
    job_template: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if isinstance(self.schedule_type, str):
            self.schedule_type = ScheduleType(self.schedule_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "schedule_type": self.schedule_type.value,
            "time_of_day": self.time_of_day,
            "timezone": self.timezone,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "next_run": self.next_run.isoformat(),
            "active": self.active,
            "fail_count": self.fail_count,
            "last_fail_at": self.last_fail_at.isoformat() if self.last_fail_at else None,
            "last_fail_reason": self.last_fail_reason,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "job_template": dict(self.job_template),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduleEntry":
        def parse_dt(value: Optional[str]) -> Optional[datetime]:
            return datetime.fromisoformat(value) if value else None

        return cls(
            id=data["id"],
            owner_id=data.get("owner_id"),
            schedule_type=ScheduleType(data.get("schedule_type", "daily")),
            time_of_day=data["time_of_day"],
            timezone=data.get("timezone") or DEFAULT_TIMEZONE,
            start_date=date.fromisoformat(data["start_date"]),
            end_date=date.fromisoformat(data["end_date"]) if data.get("end_date") else None,
            next_run=datetime.fromisoformat(data["next_run"]),
            active=bool(data.get("active", True)),
            fail_count=int(data.get("fail_count", 0)),
            last_fail_at=parse_dt(data.get("last_fail_at")),
            last_fail_reason=data.get("last_fail_reason"),
            last_run_at=parse_dt(data.get("last_run_at")),
            job_template=dict(data.get("job_template") or {}),
        )
