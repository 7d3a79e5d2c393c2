"""Unit tests for data models."""

from datetime import date, datetime, timezone

import pytest
from models.events import Phase, PhaseEvent
from models.image import AssetUsage, Reachability, VisualAsset
from models.job import GenerationJob, JobResult, JobStatus, ratio_orientation, target_resolution
from models.schedule import ScheduleEntry, ScheduleType


@pytest.mark.unit
class TestGenerationJob:
    """Tests for GenerationJob validation and lifecycle."""

    def test_defaults(self):
        job = GenerationJob(category="Sports", duration=30)

        assert job.status == JobStatus.PENDING
        assert job.aspect_ratio == "720:1280"
        assert job.resolution == (1080, 1920)
        assert not job.is_top5

    @pytest.mark.parametrize("duration", [0, 7, 95, 100])
    def test_invalid_duration(self, duration):
        with pytest.raises(ValueError, match="duration"):
            GenerationJob(category="Sports", duration=duration)

    def test_invalid_aspect_ratio(self):
        with pytest.raises(ValueError, match="aspect ratio"):
            GenerationJob(category="Sports", duration=30, aspect_ratio="4:3")

    def test_lifecycle(self):
        job = GenerationJob(category="Sports", duration=30)
        job.start()
        job.succeed(JobResult(video_path="/tmp/out.mp4", duration=30.0))

        assert job.status == JobStatus.SUCCEEDED
        assert job.status.is_terminal
        assert job.completed_at is not None

    def test_cannot_succeed_without_start(self):
        job = GenerationJob(category="Sports", duration=30)

        with pytest.raises(ValueError):
            job.succeed(JobResult(video_path="x", duration=1.0))

    def test_terminal_job_cannot_fail_again(self):
        job = GenerationJob(category="Sports", duration=30)
        job.fail("boom")

        with pytest.raises(ValueError):
            job.fail("again")
        assert job.error == "boom"

    def test_status_string_is_coerced(self):
        job = GenerationJob(category="Sports", duration=30, status="running")

        assert job.status == JobStatus.RUNNING

    def test_to_dict(self):
        job = GenerationJob(category="Top5", duration=60, topic="Goals")
        job.start()
        job.succeed(JobResult(video_path="v.mp4", duration=60.0, title="Top 5: Goals"))

        data = job.to_dict()

        assert data["status"] == "succeeded"
        assert data["result"]["title"] == "Top 5: Goals"
        assert data["publish_at"] is None
        assert job.is_top5


@pytest.mark.unit
class TestAspectHelpers:
    """Tests for resolution and orientation helpers."""

    @pytest.mark.parametrize(
        "ratio,expected",
        [
            ("720:1280", (1080, 1920)),
            ("832:1104", (1080, 1920)),
            ("960:960", (1080, 1080)),
            ("1104:832", (1440, 1080)),
            ("1280:720", (1920, 1080)),
            ("1584:672", (1920, 1080)),
        ],
    )
    def test_target_resolution(self, ratio, expected):
        assert target_resolution(ratio) == expected

    def test_ratio_orientation(self):
        assert ratio_orientation("1280:720") == "landscape"
        assert ratio_orientation("720:1280") == "portrait"
        assert ratio_orientation("960:960") == "square"
        assert ratio_orientation("wide") is None
        assert ratio_orientation("0:10") is None


@pytest.mark.unit
class TestVisualAsset:
    """Tests for asset usage rules."""

    def test_available_reachable_asset(self):
        asset = VisualAsset(source_url="https://a.com/x.jpg", cdn_url="https://cdn/x.jpg")

        assert asset.key == "https://a.com/x.jpg"
        assert asset.delivery_url == "https://cdn/x.jpg"
        assert asset.generative_allowed
        assert asset.static_allowed

    def test_banned_asset_is_static_only(self):
        asset = VisualAsset(source_url="https://a.com/x.jpg", usage=AssetUsage.BANNED)

        assert not asset.generative_allowed
        assert asset.static_allowed
        assert asset.delivery_url == "https://a.com/x.jpg"

    def test_unreachable_asset_is_unusable(self):
        asset = VisualAsset(source_url="https://a.com/x.jpg", reachability=Reachability.UNREACHABLE)

        assert not asset.generative_allowed
        assert not asset.static_allowed


@pytest.mark.unit
class TestScheduleEntry:
    """Tests for schedule serialization."""

    def test_round_trip(self):
        entry = ScheduleEntry(
            schedule_type="weekly",
            time_of_day="09:00",
            start_date=date(2026, 3, 2),
            next_run=datetime(2026, 3, 2, 17, 0, tzinfo=timezone.utc),
            end_date=date(2026, 6, 1),
            fail_count=2,
            job_template={"category": "Sports", "duration": 30},
        )

        restored = ScheduleEntry.from_dict(entry.to_dict())

        assert restored == entry
        assert restored.schedule_type == ScheduleType.WEEKLY
        assert restored.next_run.tzinfo is not None


@pytest.mark.unit
class TestPhaseEvent:
    """Tests for event serialization."""

    def test_terminal_phases(self):
        assert Phase.COMPLETED.is_terminal
        assert Phase.ERROR.is_terminal
        assert not Phase.FALLBACK.is_terminal

    def test_sse_line(self):
        event = PhaseEvent(Phase.INIT, {"job_id": "j1"}, ts=1000.4)

        assert event.to_dict() == {"phase": "INIT", "ts": 1000, "extra": {"job_id": "j1"}}
        assert event.to_sse() == 'data: {"phase": "INIT", "ts": 1000, "extra": {"job_id": "j1"}}\n\n'
