"""Shorts Production Agent - the generation pipeline orchestrator.

Takes a GenerationJob and produces a finished short:
topic -> timing plan -> visual assets -> script -> clips + narration -> music -> assembly -> publish
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional

from models.events import Phase
from models.image import VisualAsset
from models.job import GenerationJob, JobResult, JobStatus, ratio_orientation
from models.segment import ClipResult, Segment
from services.ai_service import AIService
from services.image_cdn import ImageCDNService
from services.image_sources.google import GoogleImageSource
from services.music_service import MusicService, MusicServiceError
from services.trends_service import TrendsService, TrendsServiceError, TrendStory
from services.tts_service import ElevenLabsClient, OpenAITTSClient
from services.video_gen_service import VideoGenService
from services.youtube_uploader import VideoMetadata, YouTubeUploader, YouTubeUploadError
from shorts_agent.asset_resolver import AssetResolver, SourceHints, plan_asset_indexes, resolve_candidates
from shorts_agent.audio_aligner import AudioSynthesizer, VoiceConfig
from shorts_agent.clip_generator import ClipGenerator, plan_hero_segments
from shorts_agent.clip_qa import ClipStillQA
from shorts_agent.context import JobContext
from shorts_agent.media_assembler import MediaAssembler, build_rank_overlay
from shorts_agent.phase_events import PhaseEventStream
from shorts_agent.script_writer import PlanningError, ScriptWriter
from shorts_agent.timing_planner import (
    build_segments,
    compute_cta_tolerance,
    compute_engagement_tail,
    plan_segments,
    rebalance,
)
from utils.config import load_config
from utils.logging import clear_job_context, set_job_context
from utils.retry import RetryableError

logger = logging.getLogger(__name__)

# Search results requested per topic, before filtering
IMAGE_SEARCH_RESULTS = 20

# Reference text handed to the script writer
MAX_CONTEXT_ARTICLES = 5


async def gather_or_cancel(*aws):
    """Like ``asyncio.gather``, but the first failure cancels the others.

    Siblings are cancelled and awaited before the error propagates, so nothing
    is still writing into the job's workdir when the caller cleans it up.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [t for t in tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
    return [task.result() for task in tasks]


class ShortsProductionAgent:
    """Autonomous short-video production pipeline.

    Every provider is built from config unless injected, so tests can pass
    fakes for any of them. One agent serves many jobs; all per-job state
    lives in a JobContext created by ``produce``.
    """

    def __init__(
        self,
        config: dict | None = None,
        store=None,
        ai: Optional[AIService] = None,
        trends: Optional[TrendsService] = None,
        image_source: Optional[GoogleImageSource] = None,
        cdn: Optional[ImageCDNService] = None,
        video_gen: Optional[VideoGenService] = None,
        tts_primary: Optional[ElevenLabsClient] = None,
        tts_secondary: Optional[OpenAITTSClient] = None,
        music: Optional[MusicService] = None,
        uploader: Optional[YouTubeUploader] = None,
        voice_config: Optional[VoiceConfig] = None,
        sleep=asyncio.sleep,
    ):
        """Initialize with all services.

        Load config from environment if not provided.
        """
        if config is None:
            config = load_config()
        self.config = config
        self.store = store

        self.ai = ai or AIService(
            api_key=config.get("gemini_api_key") or "",
            model_name=config.get("gemini_model", "gemini-2.5-flash"),
        )
        self.trends = trends or TrendsService(api_url=config.get("trends_api_url"))
        self.image_source = image_source or GoogleImageSource(api_key=config.get("serpapi_key") or "")
        self.cdn = cdn or ImageCDNService(
            cloud_name=config.get("cloudinary_cloud_name"),
            api_key=config.get("cloudinary_api_key"),
            api_secret=config.get("cloudinary_api_secret"),
        )
        self.video_gen = video_gen or VideoGenService(
            api_key=config.get("runway_api_key") or "",
            api_base=config.get("runway_api_url"),
        )
        self.music = music or MusicService(client_id=config.get("jamendo_client_id") or "")
        self.uploader = uploader or YouTubeUploader(
            client_id=config.get("youtube_client_id"),
            client_secret=config.get("youtube_client_secret"),
            refresh_token=config.get("youtube_refresh_token"),
        )

        self.writer = ScriptWriter(self.ai)
        self.resolver = AssetResolver(cdn=self.cdn)
        self.audio = AudioSynthesizer(
            primary=tts_primary or ElevenLabsClient(api_key=config.get("elevenlabs_api_key") or ""),
            secondary=tts_secondary or OpenAITTSClient(api_key=config.get("openai_api_key") or ""),
            voice_config=voice_config,
        )
        self.sleep = sleep

        # Output directory
        self.output_dir = Path(config.get("local_output_folder", "output"))
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.clip_parallelism = max(1, int(config.get("clip_parallelism", 3)))
        self.asset_parallelism = max(1, int(config.get("asset_parallelism", 4)))
        self.max_images = int(config.get("max_images", 8))
        self.budget_tier = config.get("budget_tier", "balanced")

    def _clip_generator(self, events: PhaseEventStream) -> ClipGenerator:
        async def on_fallback(info: dict) -> None:
            await events.fallback(info["segment"], info["tier"], info["reason"])

        return ClipGenerator(
            video_gen=self.video_gen,
            poll_interval=float(self.config.get("poll_interval_seconds", 2.0)),
            max_poll_attempts=int(self.config.get("max_poll_attempts", 180)),
            sleep=self.sleep,
            on_fallback=on_fallback,
            still_qa=ClipStillQA(self.ai) if self.config.get("clip_qa_enabled", True) else None,
        )

    async def produce(
        self, job: GenerationJob, events: Optional[PhaseEventStream] = None
    ) -> JobResult:
        """Full pipeline: job -> finished (and optionally published) short.

        Args:
            job: A pending or running GenerationJob
            events: Progress stream for this job (created if omitted)

        Returns:
            The JobResult also stored on ``job.result``

        Raises:
            PlanningError: If no topic or segment plan can be produced
            AssemblyError: If the final mux fails
        """
        events = events or PhaseEventStream(job.id)
        if job.status == JobStatus.PENDING:
            job.start()
        set_job_context(job.id, job.schedule_id)

        workdir = self.output_dir / "work" / job.id
        workdir.mkdir(parents=True, exist_ok=True)
        width, height = job.resolution
        ctx = JobContext(
            job_id=job.id,
            workdir=workdir,
            aspect_ratio=job.aspect_ratio,
            width=width,
            height=height,
        )

        logger.info(
            f"=== SHORT PRODUCTION START: {job.id} ({job.category}, {job.duration}s, "
            f"{job.aspect_ratio}, {job.language}) ==="
        )
        try:
            await self._persist(job)
            await events.emit(
                Phase.INIT, jobId=job.id, category=job.category, duration=job.duration
            )

            # -- Phase 1: Pre-production --
            story = await self._resolve_topic(job)
            segments = self._plan_timing(job)
            assets = await self._acquire_assets(job, story, ctx)

            await self.writer.write_segments(
                job.topic,
                job.category,
                job.language,
                segments,
                image_count=len(assets),
                context=self._story_context(story),
            )
            self._finalize_timing(job, segments)
            plan_asset_indexes(segments, len(assets))
            ctx.hero_indexes = plan_hero_segments(len(segments), self.budget_tier)

            # -- Phase 2: Clips and narration --
            await events.emit(Phase.GENERATING_CLIPS, total=len(segments), done=0)
            clips = await self._produce_segments(job, segments, assets, ctx, events)

            # -- Phase 3: Assembly --
            await events.emit(Phase.ASSEMBLING_VIDEO, clips=len(clips))
            script = " ".join(s.script for s in segments)
            music_plan = await self.writer.plan_music(job.topic, job.category, job.language, script)
            music_path = await self._fetch_music(music_plan.search_terms, workdir)
            await events.emit(Phase.ADDING_VOICE_MUSIC, music=music_path is not None)

            await events.emit(Phase.SYNCING_VOICE_MUSIC)
            overlay = None
            if job.is_top5:
                overlay = build_rank_overlay(
                    [s.script for s in segments],
                    [s.duration for s in segments],
                    job.language,
                    fontfile=self.config.get("overlay_font_path") or None,
                )
            assembler = MediaAssembler(output_dir=self.output_dir / job.id)
            video_path = await assembler.assemble(
                [c.path for c in clips],
                [s.duration for s in segments],
                [s.audio_path for s in segments],
                width,
                height,
                music_path=music_path,
                voice_gain=music_plan.voice_gain,
                music_gain=music_plan.music_gain,
                overlay_filter=overlay,
            )

            seo = await self.writer.write_seo(job.topic, job.category, job.language, script)
            result = JobResult(
                video_path=str(video_path),
                duration=round(sum(s.duration for s in segments), 3),
                title=seo.title,
                description=seo.description,
                tags=seo.tags,
            )

            # -- Phase 4: Publish --
            if job.publish:
                await self._publish(job, result, events)

            job.succeed(result)
            await self._persist(job)
            await events.emit(
                Phase.COMPLETED,
                videoPath=result.video_path,
                title=result.title,
                publicUrl=result.public_url,
            )
            logger.info(f"=== SHORT PRODUCTION DONE: {video_path} ===")
            return result

        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}", exc_info=True)
            if not job.status.is_terminal:
                job.fail(str(e))
            await self._persist(job)
            if not events.closed:
                await events.emit(Phase.ERROR, msg=str(e))
            raise

        finally:
            shutil.rmtree(workdir, ignore_errors=True)
            clear_job_context()

    # ------------------------------------------------------------------
    # Pre-production
    # ------------------------------------------------------------------

    async def _resolve_topic(self, job: GenerationJob) -> Optional[TrendStory]:
        """Fill an empty topic from the freshest unused trending story.

        The story's imagery becomes the first source of visual leads. Jobs
        that arrive with a topic skip the trend lookup.
        """
        if job.topic.strip():
            return None

        recent: set[str] = set()
        if self.store is not None and job.owner_id:
            recent = set(await self.store.recent_topics(job.owner_id))

        story: Optional[TrendStory] = None
        if self.trends.is_configured():
            try:
                story = await self.trends.fetch_trending_story(
                    job.category, geo=job.country, exclude_topics=recent, language=job.language
                )
            except TrendsServiceError as e:
                logger.warning(f"Trend lookup failed: {e}")

        if story is None or not story.title:
            raise PlanningError(f"No topic given and no trending {job.category} story found")
        job.topic = story.title
        logger.info(f"Topic from trends: {job.topic!r}")
        return story

    def _plan_timing(self, job: GenerationJob) -> list[Segment]:
        tail = compute_engagement_tail(job.duration)
        tolerance = compute_cta_tolerance(tail, job.language)
        durations = plan_segments(job.category, job.duration, tail, tolerance)
        if not durations:
            raise PlanningError(f"No segments planned for {job.duration}s")
        logger.info(f"Planned {len(durations)} segments: {[round(d, 2) for d in durations]}")
        return build_segments(durations, job.language)

    def _finalize_timing(self, job: GenerationJob, segments: list[Segment]) -> None:
        """Rebalance durations from the written narration, before any clip exists."""
        target = sum(s.duration for s in segments)
        durations = rebalance(
            [s.duration for s in segments],
            [s.word_count for s in segments],
            target,
            job.language,
        )
        for seg, duration in zip(segments, durations):
            seg.duration = duration
        logger.info(f"Final timing: {[round(d, 2) for d in durations]} ({sum(durations):.2f}s)")

    @staticmethod
    def _story_context(story: Optional[TrendStory]) -> str:
        if story is None:
            return ""
        lines = [story.raw_title or story.title]
        for article in story.articles[:MAX_CONTEXT_ARTICLES]:
            title = str(article.get("title") or "").strip()
            snippet = str(article.get("snippet") or "").strip()
            if title or snippet:
                lines.append(f"- {title} {snippet}".strip())
        return "\n".join(lines)

    async def _acquire_assets(
        self, job: GenerationJob, story: Optional[TrendStory], ctx: JobContext
    ) -> list[VisualAsset]:
        hints = SourceHints()
        if story is not None:
            hints.story_images = [*story.images, *story.article_images]

        if self.image_source.is_configured():
            try:
                hints.search_results = await self.image_source.search_images(
                    job.topic,
                    per_page=IMAGE_SEARCH_RESULTS,
                    orientation=ratio_orientation(job.aspect_ratio),
                )
            except RetryableError as e:
                logger.warning(f"Image search failed: {e}")

        candidates = resolve_candidates(job.topic, job.aspect_ratio, hints)
        if not candidates:
            logger.warning("No image candidates; clips will use generative or placeholder tiers")
            return []
        return await self.resolver.select_assets(
            candidates, ctx, max_images=self.max_images, parallelism=self.asset_parallelism
        )

    # ------------------------------------------------------------------
    # Production
    # ------------------------------------------------------------------

    async def _produce_segments(
        self,
        job: GenerationJob,
        segments: list[Segment],
        assets: list[VisualAsset],
        ctx: JobContext,
        events: PhaseEventStream,
    ) -> list[ClipResult]:
        """Clip and narration for every segment, concurrently but bounded.

        Results are addressed by segment index, not completion order.
        """
        clip_gen = self._clip_generator(events)
        semaphore = asyncio.Semaphore(self.clip_parallelism)
        done = 0

        async def produce_one(seg: Segment) -> ClipResult:
            nonlocal done
            asset = None
            if seg.asset_index is not None and 0 <= seg.asset_index < len(assets):
                asset = assets[seg.asset_index]
            async with semaphore:
                clip, _ = await gather_or_cancel(
                    clip_gen.generate(seg, asset, ctx, topic=job.topic),
                    self.audio.narrate(
                        seg, ctx.workdir / "audio", job.language, job.category, job.voice_id
                    ),
                )
            done += 1
            await events.emit(
                Phase.GENERATING_CLIPS,
                total=len(segments),
                done=done,
                segment=seg.index,
                tier=clip.tier.value,
            )
            return clip

        clips = await gather_or_cancel(*(produce_one(s) for s in segments))
        return sorted(clips, key=lambda c: c.segment_index)

    async def _fetch_music(self, terms: list[str], workdir: Path) -> Optional[Path]:
        if not self.music.is_configured():
            return None
        url, _term = await self.music.find_track(terms)
        if not url:
            return None
        try:
            return await self.music.download(url, workdir / "music.mp3")
        except MusicServiceError as e:
            logger.warning(f"Music download failed ({e}); narration only")
            return None

    async def _publish(
        self, job: GenerationJob, result: JobResult, events: PhaseEventStream
    ) -> None:
        """Upload the short; an upload failure leaves the job unpublished but successful."""
        metadata = VideoMetadata(
            title=result.title,
            description=result.description,
            tags=result.tags,
            category=job.category,
            language=job.language,
        )
        try:
            url = await asyncio.to_thread(
                self.uploader.upload, Path(result.video_path), metadata, None, job.publish_at
            )
        except YouTubeUploadError as e:
            logger.error(f"Publishing failed: {e}")
            return

        result.public_url = url
        await events.emit(Phase.VIDEO_UPLOADED, url=url)
        if job.publish_at is not None:
            result.scheduled_for = job.publish_at.isoformat()
            await events.emit(Phase.VIDEO_SCHEDULED, publishAt=result.scheduled_for)

    async def _persist(self, job: GenerationJob) -> None:
        if self.store is None:
            return
        await self.store.save_job(job)

    async def close(self) -> None:
        """Clean up HTTP clients and services."""
        await self.trends.close()
        await self.cdn.close()
        await self.video_gen.close()
        await self.music.close()
        if self.audio.primary is not None:
            await self.audio.primary.close()
        if self.audio.secondary is not None:
            await self.audio.secondary.close()
