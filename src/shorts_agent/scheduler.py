"""Timezone-aware recurrence for schedule entries, plus the periodic poller.

Next runs are always computed from the entry's local wall-clock time of day
in its own timezone, so a 09:00 daily schedule stays at 09:00 across DST
changes. Nothing is ever reset to "now plus one period": a stale daily
entry jumps to its first occurrence after now, while weekly and monthly
entries catch up one period per run.
"""

import asyncio
import calendar
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.job import GenerationJob
from models.schedule import DEFAULT_TIMEZONE, ScheduleEntry, ScheduleType

logger = logging.getLogger(__name__)

TIME_OF_DAY_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

FAILURE_RETRY_DELAY = timedelta(minutes=10)
MAX_CONSECUTIVE_FAILURES = 3
MAX_FAIL_REASON_CHARS = 500
DEFAULT_POLL_SECONDS = 60

# Template keys copied onto each derived GenerationJob
JOB_TEMPLATE_FIELDS = ("category", "duration", "aspect_ratio", "language", "country", "voice_id", "publish")


def parse_time_of_day(value: str) -> tuple[int, int]:
    """Parse "HH:MM" into (hour, minute).

    Raises:
        ValueError: If the string is malformed or out of range
    """
    match = TIME_OF_DAY_RE.match(str(value or "").strip())
    if not match:
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Time of day out of range: {value!r}")
    return hour, minute


def normalize_schedule_type(value: Any) -> ScheduleType:
    """Map a loose recurrence name onto ScheduleType; unknown means daily."""
    if isinstance(value, ScheduleType):
        return value
    try:
        return ScheduleType(str(value or "").strip().lower())
    except ValueError:
        logger.warning(f"Unknown schedule type {value!r}, defaulting to daily")
        return ScheduleType.DAILY


def get_zone(tz: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {tz!r}, using {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def _at_time(day: date, hour: int, minute: int, zone: ZoneInfo) -> datetime:
    """The wall-clock instant ``day`` at hour:minute in ``zone``, as UTC."""
    local = datetime.combine(day, time(hour, minute), tzinfo=zone)
    return local.astimezone(timezone.utc)


def add_months(day: date, months: int, anchor_day: int) -> date:
    """Add calendar months, landing on ``anchor_day`` clamped to the month length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor_day, last))


def advance_date(day: date, schedule_type: ScheduleType, anchor_day: int) -> date:
    """The local calendar date exactly one period after ``day``."""
    if schedule_type == ScheduleType.WEEKLY:
        return day + timedelta(days=7)
    if schedule_type == ScheduleType.MONTHLY:
        return add_months(day, 1, anchor_day)
    return day + timedelta(days=1)


def end_of_day(end_date: date, tz: Optional[str]) -> datetime:
    """``end_date`` at 23:59:59 local time, as UTC."""
    local = datetime.combine(end_date, time(23, 59, 59), tzinfo=get_zone(tz))
    return local.astimezone(timezone.utc)


def initial_next_run(
    schedule_type: Any,
    time_of_day: str,
    tz: Optional[str],
    start_date: date,
    now: Optional[datetime] = None,
) -> datetime:
    """First occurrence at or after ``now``, on the start date's cadence."""
    schedule_type = normalize_schedule_type(schedule_type)
    hour, minute = parse_time_of_day(time_of_day)
    zone = get_zone(tz)
    now = now or datetime.now(timezone.utc)

    day = start_date
    today = now.astimezone(zone).date()
    if schedule_type != ScheduleType.MONTHLY and day < today:
        period = 7 if schedule_type == ScheduleType.WEEKLY else 1
        day += timedelta(days=((today - day).days // period) * period)

    candidate = _at_time(day, hour, minute, zone)
    while candidate < now:
        day = advance_date(day, schedule_type, start_date.day)
        candidate = _at_time(day, hour, minute, zone)
    return candidate


def compute_next_run(entry: ScheduleEntry, now: Optional[datetime] = None) -> datetime:
    """The stored next run advanced by one period.

    The wall clock is re-pinned to ``time_of_day`` in the entry's timezone,
    and monthly schedules stay anchored on the start date's day. Daily
    entries keep advancing until the result is strictly after ``now``;
    weekly and monthly entries move exactly one period, so a long-stale
    entry replays its missed periods one run at a time.

    Raises:
        ValueError: If the entry's time of day is invalid
    """
    hour, minute = parse_time_of_day(entry.time_of_day)
    zone = get_zone(entry.timezone)
    local_day = entry.next_run.astimezone(zone).date()
    next_day = advance_date(local_day, entry.schedule_type, entry.start_date.day)
    candidate = _at_time(next_day, hour, minute, zone)

    if entry.schedule_type == ScheduleType.DAILY:
        now = now or datetime.now(timezone.utc)
        while candidate <= now:
            next_day = advance_date(next_day, entry.schedule_type, entry.start_date.day)
            candidate = _at_time(next_day, hour, minute, zone)
    return candidate


def next_occurrence_after(entry: ScheduleEntry, now: datetime) -> datetime:
    """The first regular occurrence strictly after ``now``."""
    candidate = compute_next_run(entry, now)
    following = ScheduleEntry(
        schedule_type=entry.schedule_type,
        time_of_day=entry.time_of_day,
        timezone=entry.timezone,
        start_date=entry.start_date,
        next_run=candidate,
    )
    while candidate <= now:
        candidate = compute_next_run(following, now)
        following.next_run = candidate
    return candidate


def _past_end(entry: ScheduleEntry, instant: datetime) -> bool:
    return entry.end_date is not None and instant > end_of_day(entry.end_date, entry.timezone)


def record_success(entry: ScheduleEntry, now: Optional[datetime] = None) -> ScheduleEntry:
    """Bookkeeping after a successful run: clear failures and advance the next run."""
    now = now or datetime.now(timezone.utc)
    entry.fail_count = 0
    entry.last_run_at = now

    next_run = compute_next_run(entry, now)
    if _past_end(entry, next_run):
        logger.info(f"Schedule {entry.id} reached its end date; deactivating")
        entry.active = False
    else:
        entry.next_run = next_run
    return entry


def record_failure(
    entry: ScheduleEntry, reason: str, now: Optional[datetime] = None
) -> ScheduleEntry:
    """Bookkeeping after a failed run.

    Retries after ten minutes; after three consecutive failures the entry
    skips to its next regular occurrence and the counter resets.
    """
    now = now or datetime.now(timezone.utc)
    entry.fail_count += 1
    entry.last_fail_at = now
    entry.last_fail_reason = (reason or "unknown error")[:MAX_FAIL_REASON_CHARS]

    if entry.fail_count >= MAX_CONSECUTIVE_FAILURES:
        next_run = next_occurrence_after(entry, now)
        logger.warning(
            f"Schedule {entry.id} failed {entry.fail_count} times; "
            f"skipping to {next_run.isoformat()}"
        )
        entry.fail_count = 0
    else:
        next_run = now + FAILURE_RETRY_DELAY

    if _past_end(entry, next_run):
        logger.info(f"Schedule {entry.id} reached its end date; deactivating")
        entry.active = False
    else:
        entry.next_run = next_run
    return entry


def job_from_entry(entry: ScheduleEntry) -> GenerationJob:
    """Derive a fresh GenerationJob from a schedule's job template."""
    template = {k: v for k, v in entry.job_template.items() if k in JOB_TEMPLATE_FIELDS}
    template.setdefault("category", "Standard")
    template.setdefault("duration", 30)
    return GenerationJob(owner_id=entry.owner_id, schedule_id=entry.id, **template)


class SchedulePoller:
    """Periodically turns due schedule entries into queued jobs.

    The loop only enqueues; the job queue's single worker does the work and
    reports back through the success and failure hooks.
    """

    def __init__(self, store, queue, poll_seconds: float = DEFAULT_POLL_SECONDS):
        self.store = store
        self.queue = queue
        self.poll_seconds = poll_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Enqueue one job per due entry. Returns how many were queued."""
        now = now or datetime.now(timezone.utc)
        entries = await self.store.list_due_schedules(now)
        queued = 0

        for entry in entries:
            try:
                parse_time_of_day(entry.time_of_day)
            except ValueError as e:
                logger.error(f"Deactivating schedule {entry.id}: {e}")
                entry.active = False
                await self.store.save_schedule(entry)
                continue

            if entry.end_date is not None and now > end_of_day(entry.end_date, entry.timezone):
                logger.info(f"Deactivating schedule {entry.id}: end date {entry.end_date} passed")
                entry.active = False
                await self.store.save_schedule(entry)
                continue

            try:
                job = job_from_entry(entry)
            except (TypeError, ValueError) as e:
                logger.error(f"Schedule {entry.id} has an invalid job template: {e}")
                await self.store.save_schedule(record_failure(entry, str(e), now))
                continue

            if self.queue.enqueue(
                entry.id, job, on_success=self._on_success, on_failure=self._on_failure
            ):
                queued += 1
                logger.info(f"Queued job {job.id} for schedule {entry.id}")

        return queued

    async def _on_success(self, job: GenerationJob, _result: Any) -> None:
        entry = await self.store.get_schedule(job.schedule_id)
        if entry is None:
            return
        record_success(entry)
        await self.store.save_schedule(entry)
        logger.info(f"Schedule {entry.id} next run: {entry.next_run.isoformat()}")

    async def _on_failure(self, job: GenerationJob, error: BaseException) -> None:
        entry = await self.store.get_schedule(job.schedule_id)
        if entry is None:
            return
        record_failure(entry, str(error))
        await self.store.save_schedule(entry)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Schedule poll failed: {e}", exc_info=True)
            await asyncio.sleep(self.poll_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Schedule poller started (every {self.poll_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Schedule poller stopped")
