"""End-to-end pipeline test with every external provider unavailable.

FFmpeg is faked at the subprocess boundary; everything else is real code.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from models.job import GenerationJob, JobStatus
from models.segment import GenerationTier
from services.video_gen_service import VideoGenServiceError
from services.youtube_uploader import YouTubeUploadError
from shorts_agent.agent import ShortsProductionAgent
from shorts_agent.phase_events import PhaseEventStream
from shorts_agent.script_writer import PlanningError


@pytest.fixture
def failing_video_gen():
    """A configured video provider whose every submission is rejected."""
    video_gen = Mock()
    video_gen.is_configured.return_value = True
    video_gen.submit_image = AsyncMock(side_effect=VideoGenServiceError("provider down"))
    video_gen.submit_video = AsyncMock(side_effect=VideoGenServiceError("provider down"))
    video_gen.close = AsyncMock()
    return video_gen


@pytest.fixture
def agent_factory(sample_config, failing_video_gen):
    def build(**overrides) -> ShortsProductionAgent:
        kwargs = dict(video_gen=failing_video_gen, sleep=AsyncMock())
        kwargs.update(overrides)
        return ShortsProductionAgent(sample_config, **kwargs)

    return build


def _phases(stream: PhaseEventStream) -> list[str]:
    return [e["phase"] for e in stream.history_dicts()]


@pytest.mark.integration
class TestPipelineWithProvidersDown:
    """A 30s Standard short still completes when every provider fails."""

    @pytest.mark.asyncio
    async def test_completes_with_placeholders(self, agent_factory, sample_job, fake_ffmpeg):
        agent = agent_factory()
        stream = PhaseEventStream(sample_job.id)

        result = await agent.produce(sample_job, stream)

        assert sample_job.status == JobStatus.SUCCEEDED
        assert result.duration == pytest.approx(30.0, abs=0.01)
        assert result.title == "Standard Highlights: City council approves new park"
        assert result.public_url is None

        phases = _phases(stream)
        assert phases[0] == "INIT"
        assert phases[-1] == "COMPLETED"
        assert "FALLBACK" in phases
        ordered = [p for p in phases if p != "FALLBACK"]
        assert ordered.index("GENERATING_CLIPS") < ordered.index("ASSEMBLING_VIDEO")
        assert ordered.index("ADDING_VOICE_MUSIC") < ordered.index("SYNCING_VOICE_MUSIC")
        assert "ERROR" not in phases

        # Silence for every segment, placeholders for every clip
        assert len(fake_ffmpeg.matching("anullsrc")) >= 4
        assert len(fake_ffmpeg.matching("color=")) == 4

    @pytest.mark.asyncio
    async def test_fallback_events_name_the_failed_tier(self, agent_factory, sample_job, fake_ffmpeg):
        stream = PhaseEventStream(sample_job.id)

        await agent_factory().produce(sample_job, stream)

        fallbacks = [e for e in stream.history_dicts() if e["phase"] == "FALLBACK"]
        assert fallbacks
        assert {e["extra"]["tier"] for e in fallbacks} == {GenerationTier.GENERATIVE_ALTERNATE.value}
        assert 1 in {e["extra"]["segment"] for e in fallbacks}

    @pytest.mark.asyncio
    async def test_clip_progress_counts_up(self, agent_factory, sample_job, fake_ffmpeg):
        stream = PhaseEventStream(sample_job.id)

        await agent_factory().produce(sample_job, stream)

        progress = [e["extra"] for e in stream.history_dicts() if e["phase"] == "GENERATING_CLIPS"]
        assert progress[0] == {"total": 4, "done": 0}
        assert [p["done"] for p in progress[1:]] == [1, 2, 3, 4]
        assert all(p["tier"] == "placeholder" for p in progress[1:])


    @pytest.mark.asyncio
    async def test_top5_gets_rank_captions(self, agent_factory, fake_ffmpeg):
        job = GenerationJob(category="Top5", duration=30, topic="Greatest comebacks")

        await agent_factory().produce(job, PhaseEventStream(job.id))

        assert job.status == JobStatus.SUCCEEDED
        burn = fake_ffmpeg.matching("drawtext")
        assert len(burn) == 1
        assert "text='Greatest comebacks, number 1 on our list.'" in burn[0][burn[0].index("-vf") + 1]

    @pytest.mark.asyncio
    async def test_standard_job_has_no_captions(self, agent_factory, sample_job, fake_ffmpeg):
        await agent_factory().produce(sample_job, PhaseEventStream(sample_job.id))

        assert fake_ffmpeg.matching("drawtext") == []


@pytest.mark.integration
class TestPipelinePublishing:
    """Publishing outcomes at the end of the pipeline."""

    @pytest.mark.asyncio
    async def test_upload_failure_still_completes(self, agent_factory, fake_ffmpeg):
        uploader = Mock()
        uploader.upload.side_effect = YouTubeUploadError("quota exceeded")
        job = GenerationJob(category="Sports", duration=15, topic="Local team wins final", publish=True)
        stream = PhaseEventStream(job.id)

        result = await agent_factory(uploader=uploader).produce(job, stream)

        assert job.status == JobStatus.SUCCEEDED
        assert result.public_url is None
        assert "VIDEO_UPLOADED" not in _phases(stream)
        assert _phases(stream)[-1] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_scheduled_upload(self, agent_factory, fake_ffmpeg):
        uploader = Mock()
        uploader.upload.return_value = "https://youtube.com/shorts/abc123"
        publish_at = datetime(2030, 5, 1, 15, 0, tzinfo=timezone.utc)
        job = GenerationJob(
            category="Sports", duration=15, topic="Local team wins final",
            publish=True, publish_at=publish_at,
        )
        stream = PhaseEventStream(job.id)

        result = await agent_factory(uploader=uploader).produce(job, stream)

        assert result.public_url == "https://youtube.com/shorts/abc123"
        assert result.scheduled_for == publish_at.isoformat()
        phases = _phases(stream)
        assert phases.index("VIDEO_UPLOADED") < phases.index("VIDEO_SCHEDULED") < phases.index("COMPLETED")


@pytest.mark.integration
class TestPipelineFailures:
    """Failures that end the job."""

    @pytest.mark.asyncio
    async def test_no_topic_and_no_trend_fails(self, agent_factory, fake_ffmpeg):
        trends = Mock()
        trends.is_configured.return_value = True
        trends.fetch_trending_story = AsyncMock(return_value=None)
        job = GenerationJob(category="Sports", duration=30)
        stream = PhaseEventStream(job.id)

        with pytest.raises(PlanningError):
            await agent_factory(trends=trends).produce(job, stream)

        assert job.status == JobStatus.FAILED
        assert _phases(stream) == ["INIT", "ERROR"]
        assert stream.closed
        assert fake_ffmpeg.commands == []

    @pytest.mark.asyncio
    async def test_mux_failure_fails_job(self, agent_factory, sample_job, fake_ffmpeg):
        fake_ffmpeg.fail_on = ["final.mp4"]
        stream = PhaseEventStream(sample_job.id)

        with pytest.raises(Exception):
            await agent_factory().produce(sample_job, stream)

        assert sample_job.status == JobStatus.FAILED
        assert _phases(stream)[-1] == "ERROR"
        assert stream.history_dicts()[-1]["extra"]["msg"]


    @pytest.mark.asyncio
    async def test_clip_failure_cancels_sibling_segments(self, agent_factory, sample_job, fake_ffmpeg):
        finished, cancelled = [], []

        async def generate(seg, asset, ctx, topic=""):
            if seg.index == 1:
                await asyncio.sleep(0.05)
                raise RuntimeError("render farm down")
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.append(seg.index)
                raise
            finished.append(seg.index)

        agent = agent_factory()
        clip_gen = Mock()
        clip_gen.generate = generate
        agent._clip_generator = lambda events: clip_gen
        stream = PhaseEventStream(sample_job.id)

        with pytest.raises(RuntimeError, match="render farm down"):
            await agent.produce(sample_job, stream)

        assert finished == []
        assert 2 in cancelled
        assert _phases(stream)[-1] == "ERROR"
        assert not (agent.output_dir / "work" / sample_job.id).exists()


@pytest.mark.integration
class TestPipelineWithStore:
    """The job record follows the pipeline in the store."""

    @pytest.mark.asyncio
    async def test_job_is_persisted(self, agent_factory, sample_job, fake_ffmpeg, tmp_path):
        from api.job_store import JobStore

        store = JobStore(str(tmp_path / "jobs.db"))
        await store.connect()
        try:
            await agent_factory(store=store).produce(sample_job, PhaseEventStream(sample_job.id))
            saved = await store.get_job(sample_job.id)
        finally:
            await store.close()

        assert saved["status"] == "succeeded"
        assert saved["result"]["video_path"].endswith("short.mp4")
