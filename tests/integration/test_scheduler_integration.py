"""Scheduler, job queue and job store working together."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from api.job_store import JobStore
from models.job import JobResult
from models.schedule import ScheduleEntry
from shorts_agent.job_queue import JobQueue
from shorts_agent.scheduler import SchedulePoller


@pytest.fixture
async def store(tmp_path):
    job_store = JobStore(str(tmp_path / "jobs.db"))
    await job_store.connect()
    yield job_store
    await job_store.close()


def _weekly_entry(next_run: datetime) -> ScheduleEntry:
    return ScheduleEntry(
        schedule_type="weekly",
        time_of_day="09:00",
        timezone="America/Los_Angeles",
        start_date=date(2026, 3, 2),
        next_run=next_run,
        job_template={"category": "Sports", "duration": 30},
    )


@pytest.mark.integration
class TestScheduledRuns:
    """A due schedule runs once and advances by one period."""

    @pytest.mark.asyncio
    async def test_stale_weekly_schedule_advances_one_week(self, store):
        # Monday 2 March 2026, 09:00 PST; three weeks overdue
        original = datetime(2026, 3, 2, 17, 0, tzinfo=timezone.utc)
        entry = await store.save_schedule(_weekly_entry(original))
        runner = AsyncMock(return_value=JobResult(video_path="short.mp4", duration=30.0))
        queue = JobQueue(runner)
        poller = SchedulePoller(store, queue)

        queued = await poller.run_once(original + timedelta(weeks=3))
        await queue.join()

        assert queued == 1
        runner.assert_awaited_once()
        job = runner.call_args[0][0]
        assert job.schedule_id == entry.id
        assert job.category == "Sports"

        saved = await store.get_schedule(entry.id)
        # DST starts 8 March: the wall clock stays at 09:00, now PDT
        assert saved.next_run == datetime(2026, 3, 9, 16, 0, tzinfo=timezone.utc)
        assert saved.fail_count == 0
        assert saved.last_run_at is not None

    @pytest.mark.asyncio
    async def test_failed_run_retries_in_ten_minutes(self, store):
        now = datetime.now(timezone.utc)
        entry = await store.save_schedule(_weekly_entry(now - timedelta(minutes=1)))
        queue = JobQueue(AsyncMock(side_effect=RuntimeError("render farm offline")))
        poller = SchedulePoller(store, queue)

        await poller.run_once(now)
        await queue.join()

        saved = await store.get_schedule(entry.id)
        assert saved.fail_count == 1
        assert saved.last_fail_reason == "render farm offline"
        assert saved.next_run > now
        assert saved.next_run - now <= timedelta(minutes=11)
        assert saved.active

    @pytest.mark.asyncio
    async def test_not_yet_due_schedule_is_left_alone(self, store):
        now = datetime.now(timezone.utc)
        entry = await store.save_schedule(_weekly_entry(now + timedelta(hours=1)))
        runner = AsyncMock()
        poller = SchedulePoller(store, JobQueue(runner))

        assert await poller.run_once(now) == 0
        runner.assert_not_awaited()
        assert (await store.get_schedule(entry.id)).next_run == entry.next_run
