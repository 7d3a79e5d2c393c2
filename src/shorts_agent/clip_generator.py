"""Per-segment clip generation with tiered fallback.

Each segment walks the tiers in order until one produces a clip:

1. generative video from the segment's asset
2. alternate generative path (hero segments only): text-to-image frame,
   then image-to-video with a sanitized prompt
3. animated still of the asset (bounded zoompan)
4. flat placeholder clip

Whatever tier wins, the output is re-encoded to exactly the planned
duration and the job's render size so assembly never has to guess. Clips
from the generative tiers must also pass the optional still-frame QA.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from models.image import VisualAsset
from models.segment import ClipResult, GenerationTier, Segment
from services.image_sources.base import download_image_url
from services.video_gen_service import (
    ModerationBlockError,
    VideoGenService,
    VideoGenServiceError,
    is_moderation_block,
)
from shorts_agent.clip_qa import ClipStillQA
from shorts_agent.context import JobContext
from utils.ffmpeg import DEFAULT_FPS, H264_OUTPUT_ARGS, FFmpegError, probe_duration, run_ffmpeg

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
FallbackCallback = Callable[[dict], Awaitable[None]]

TIER_ORDER = (
    GenerationTier.GENERATIVE_FROM_ASSET,
    GenerationTier.GENERATIVE_ALTERNATE,
    GenerationTier.ANIMATED_STILL,
    GenerationTier.PLACEHOLDER,
)
GENERATIVE_TIERS = (GenerationTier.GENERATIVE_FROM_ASSET, GenerationTier.GENERATIVE_ALTERNATE)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_POLL_ATTEMPTS = 180
DEFAULT_SUBMIT_ATTEMPTS = 2
DURATION_TOLERANCE = 0.08
PLACEHOLDER_COLOR = "gray"

HERO_BUDGET_FACTORS = {"economy": 0.3, "balanced": 0.5, "premium": 1.0}

DEFAULT_MOTION_PROMPT = "Cinematic editorial news moment with natural movement"
NEGATIVE_PROMPT = (
    "text, captions, watermark, logo, distorted faces, extra limbs, "
    "blurry, low quality, slideshow"
)
SAFE_PROMPT_GUARD = (
    "single cinematic shot, realistic lighting and physics, smooth camera move, "
    "natural faces, no logos, no brand names, no trademarks, no on-screen text, "
    "no watermarks, no slideshow frames"
)
MOTION_WORDS_RE = re.compile(r"\b(camera|pan|tilt|tracking|dolly|move|motion|gimbal|zoom)\b", re.I)


class ClipGenerationError(Exception):
    """A tier could not produce a clip."""

    pass


class ClipTimeoutError(ClipGenerationError):
    """A provider task did not finish within the polling budget."""

    pass


class TierSkipped(Exception):
    """A tier does not apply to this segment; not a failure."""

    pass


def plan_hero_segments(segment_count: int, budget_tier: str = "balanced") -> set[int]:
    """Pick the 1-based segment indexes allowed to use the alternate generative tier.

    The intro ranks first, then middle segments by closeness to the centre,
    then the closing segment.
    """
    if segment_count <= 0:
        return set()
    factor = HERO_BUDGET_FACTORS.get(budget_tier, HERO_BUDGET_FACTORS["balanced"])
    count = min(segment_count, max(2, round(segment_count * factor)))
    center = (segment_count + 1) / 2

    priorities = []
    for i in range(1, segment_count + 1):
        if i == 1:
            priority = 100.0
        elif i == segment_count:
            priority = 40.0
        else:
            priority = 80 - abs(i - center) * 3
        priorities.append((priority, i))

    ranked = sorted(priorities, key=lambda p: (-p[0], p[1]))
    return {i for _, i in ranked[:count]}


def sanitize_prompt(prompt: str, topic: str = "", aspect_ratio: str = "") -> str:
    """Strip names and symbols from a motion prompt and append content guards."""
    safe_topic = re.sub(r"[^\w\s]", " ", topic or "").strip()
    p = re.sub(r"[^\w\s.,-]", " ", prompt or "")
    p = re.sub(r"\b[A-Z][a-z]{2,}\b", "", p)  # proper nouns
    p = re.sub(r"\s{2,}", " ", p).strip()

    if len(p) < 20:
        p = DEFAULT_MOTION_PROMPT
    elif not MOTION_WORDS_RE.search(p):
        p = f"{p}. gentle gimbal push with subtle subject motion"

    topic_hint = f" Topic focus: {safe_topic}." if safe_topic else ""
    aspect_hint = f" Frame for {aspect_ratio} aspect." if aspect_ratio else ""
    return re.sub(r"\s{2,}", " ", f"{p}. {SAFE_PROMPT_GUARD}.{aspect_hint}{topic_hint}").strip()


def _fill_crop_filter(width: int, height: int) -> str:
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=increase:flags=lanczos,"
        f"crop={width}:{height},setsar=1"
    )


def normalize_clip(
    input_path: Path,
    output_path: Path,
    duration: float,
    width: int,
    height: int,
    tolerance: float = DURATION_TOLERANCE,
) -> None:
    """Re-encode a clip to exactly ``duration`` seconds at ``width``x``height``.

    Longer input is cut with ``-t``; shorter input has its last frame held
    with ``tpad``.
    """
    actual = probe_duration(input_path)
    filters = [_fill_crop_filter(width, height), f"fps={DEFAULT_FPS}"]
    if actual <= 0 or actual < duration - tolerance:
        hold = duration if actual <= 0 else duration - actual
        filters.append(f"tpad=stop_mode=clone:stop_duration={hold + 0.1:.3f}")
    filters.append("format=yuv420p")

    cmd = [
        "ffmpeg", "-y",
        "-i", str(input_path),
        "-vf", ",".join(filters),
        "-an",
        "-t", f"{duration:.3f}",
        "-r", str(DEFAULT_FPS),
        *H264_OUTPUT_ARGS,
        str(output_path),
    ]
    run_ffmpeg(cmd, f"normalize {input_path.name} to {duration:.2f}s")


def render_animated_still(
    image_path: Path,
    output_path: Path,
    duration: float,
    width: int,
    height: int,
    zoom: bool = True,
) -> None:
    """Render a still image as a clip with a slow bounded push-in."""
    motion = (
        f"zoompan=z='min(1.0+0.0015*on,1.06)':d=1:"
        f"x='iw/2-(iw/2)/zoom':y='ih/2-(ih/2)/zoom':s={width}x{height}:fps={DEFAULT_FPS}"
        if zoom
        else f"fps={DEFAULT_FPS}"
    )
    vf = f"{_fill_crop_filter(width, height)},{motion},format=yuv420p"

    cmd = [
        "ffmpeg", "-y",
        "-loop", "1",
        "-framerate", str(DEFAULT_FPS),
        "-i", str(image_path),
        "-vf", vf,
        "-t", f"{duration:.3f}",
        "-r", str(DEFAULT_FPS),
        *H264_OUTPUT_ARGS,
        str(output_path),
    ]
    run_ffmpeg(cmd, f"animated still {image_path.name} ({'zoompan' if zoom else 'static'})")


def render_placeholder(
    output_path: Path,
    duration: float,
    width: int,
    height: int,
    color: str = PLACEHOLDER_COLOR,
) -> None:
    """Render a flat-colour clip of the exact duration and size.

    Raises:
        FFmpegError: If FFmpeg cannot render even this
    """
    size = f"{width}x{height}"
    cmd = [
        "ffmpeg", "-y",
        "-f", "lavfi",
        "-i", f"color={color}:s={size}:r={DEFAULT_FPS}:d={duration:.3f}",
        "-vf", "format=yuv420p,setsar=1",
        "-t", f"{duration:.3f}",
        "-r", str(DEFAULT_FPS),
        *H264_OUTPUT_ARGS,
        str(output_path),
    ]
    run_ffmpeg(cmd, f"placeholder {duration:.2f}s")


class ClipGenerator:
    """Produces one clip per segment, degrading through the tiers.

    The polling loop is bounded by ``max_poll_attempts`` and waits with the
    injected ``sleep`` coroutine, so tests run it without real delays.
    """

    def __init__(
        self,
        video_gen: Optional[VideoGenService] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        submit_attempts: int = DEFAULT_SUBMIT_ATTEMPTS,
        sleep: Sleep = asyncio.sleep,
        on_fallback: Optional[FallbackCallback] = None,
        still_qa: Optional[ClipStillQA] = None,
    ):
        self.video_gen = video_gen
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.submit_attempts = max(1, submit_attempts)
        self.sleep = sleep
        self.on_fallback = on_fallback
        self.still_qa = still_qa

    def _provider_ready(self) -> bool:
        return self.video_gen is not None and self.video_gen.is_configured()

    async def generate(
        self,
        segment: Segment,
        asset: Optional[VisualAsset],
        ctx: JobContext,
        workdir: Optional[Path] = None,
        topic: str = "",
    ) -> ClipResult:
        """Return a clip of exactly ``segment.duration`` seconds.

        Raises:
            FFmpegError: Only if the placeholder itself cannot be rendered
        """
        workdir = workdir or ctx.workdir
        workdir.mkdir(parents=True, exist_ok=True)
        output_path = workdir / f"clip_{segment.index:02d}.mp4"

        for tier in TIER_ORDER:
            if tier == GenerationTier.PLACEHOLDER:
                await asyncio.to_thread(
                    render_placeholder, output_path, segment.duration, ctx.width, ctx.height
                )
                return self._finish(segment, tier, output_path)

            raw_path: Optional[Path] = None
            try:
                raw_path = await self._run_tier(tier, segment, asset, ctx, workdir, topic)
                await asyncio.to_thread(
                    normalize_clip, raw_path, output_path, segment.duration, ctx.width, ctx.height
                )
                if tier in GENERATIVE_TIERS:
                    await self._check_still(output_path, segment, topic)
                return self._finish(segment, tier, output_path)
            except TierSkipped as e:
                logger.debug(f"[Seg {segment.index}] {tier.value} skipped: {e}")
            except Exception as e:
                # Any tier error degrades to the next tier; cancellation still propagates
                logger.warning(f"[Seg {segment.index}] {tier.value} failed: {e}")
                await self._report_fallback(segment, tier, str(e))
            finally:
                if raw_path is not None and raw_path != output_path:
                    raw_path.unlink(missing_ok=True)

        raise ClipGenerationError(f"Segment {segment.index}: no tier produced a clip")

    async def _check_still(self, clip_path: Path, segment: Segment, topic: str) -> None:
        if self.still_qa is None:
            return
        if not await self.still_qa.check(clip_path, segment, topic):
            clip_path.unlink(missing_ok=True)
            raise ClipGenerationError("generated clip failed still-frame QA")

    def _finish(self, segment: Segment, tier: GenerationTier, path: Path) -> ClipResult:
        segment.tier = tier
        segment.clip_path = path
        logger.info(f"[Seg {segment.index}] Clip ready via {tier.value} ({segment.duration:.2f}s)")
        return ClipResult(
            segment_index=segment.index, path=path, tier=tier, duration=segment.duration
        )

    async def _report_fallback(self, segment: Segment, tier: GenerationTier, reason: str) -> None:
        if self.on_fallback is None:
            return
        await self.on_fallback(
            {"segment": segment.index, "tier": tier.value, "reason": reason[:300]}
        )

    async def _run_tier(
        self,
        tier: GenerationTier,
        segment: Segment,
        asset: Optional[VisualAsset],
        ctx: JobContext,
        workdir: Path,
        topic: str,
    ) -> Path:
        if tier == GenerationTier.GENERATIVE_FROM_ASSET:
            return await self._generative_from_asset(segment, asset, ctx, workdir)
        if tier == GenerationTier.GENERATIVE_ALTERNATE:
            return await self._generative_alternate(segment, ctx, workdir, topic)
        return await self._animated_still(segment, asset, ctx, workdir)

    async def _generative_from_asset(
        self, segment: Segment, asset: Optional[VisualAsset], ctx: JobContext, workdir: Path
    ) -> Path:
        if not self._provider_ready():
            raise TierSkipped("video provider not configured")
        if not ctx.can_generate_from(asset):
            raise TierSkipped("no asset allowed for generative use")

        prompt = segment.motion_prompt or DEFAULT_MOTION_PROMPT
        try:
            url = await self._run_task(
                lambda: self.video_gen.submit_video(
                    prompt,
                    ctx.aspect_ratio,
                    segment.duration,
                    image_url=asset.delivery_url,
                    negative_prompt=NEGATIVE_PROMPT,
                ),
                f"seg {segment.index} image_to_video",
            )
        except ModerationBlockError as e:
            ctx.ban(asset, str(e))
            raise
        return await self.video_gen.download(url, workdir / f"seg{segment.index:02d}_gen.mp4")

    async def _generative_alternate(
        self, segment: Segment, ctx: JobContext, workdir: Path, topic: str
    ) -> Path:
        if segment.index not in ctx.hero_indexes:
            raise TierSkipped("not a hero segment")
        if not self._provider_ready():
            raise TierSkipped("video provider not configured")

        safe_prompt = sanitize_prompt(segment.motion_prompt, topic, ctx.aspect_ratio)
        image_url = ctx.fallback_image_url
        if not image_url:
            image_url = await self._run_task(
                lambda: self.video_gen.submit_image(safe_prompt, ctx.aspect_ratio),
                f"seg {segment.index} text_to_image",
            )
            # Later hero segments reuse the same source frame
            ctx.fallback_image_url = image_url

        url = await self._run_task(
            lambda: self.video_gen.submit_video(
                safe_prompt,
                ctx.aspect_ratio,
                segment.duration,
                image_url=image_url,
                negative_prompt=NEGATIVE_PROMPT,
            ),
            f"seg {segment.index} alternate image_to_video",
        )
        return await self.video_gen.download(url, workdir / f"seg{segment.index:02d}_alt.mp4")

    async def _animated_still(
        self, segment: Segment, asset: Optional[VisualAsset], ctx: JobContext, workdir: Path
    ) -> Path:
        if not ctx.can_animate(asset):
            raise TierSkipped("no reachable asset for an animated still")

        image_path = workdir / f"seg{segment.index:02d}_still.img"
        still_path = workdir / f"seg{segment.index:02d}_still.mp4"
        urls = [u for u in dict.fromkeys([asset.cdn_url, asset.source_url]) if u]
        try:
            for url in urls:
                if await download_image_url(url, image_path):
                    break
            else:
                raise ClipGenerationError(f"Could not download {asset.source_url}")

            try:
                await asyncio.to_thread(
                    render_animated_still,
                    image_path, still_path, segment.duration, ctx.width, ctx.height, True,
                )
            except FFmpegError as e:
                logger.info(f"[Seg {segment.index}] zoompan failed ({e}); using a static frame")
                await asyncio.to_thread(
                    render_animated_still,
                    image_path, still_path, segment.duration, ctx.width, ctx.height, False,
                )
        finally:
            image_path.unlink(missing_ok=True)

        ctx.mark_static_used(asset)
        return still_path

    async def _run_task(self, submit: Callable[[], Awaitable[str]], label: str) -> str:
        """Submit (with retries) and poll a provider task; return its output URL."""
        last_error: Optional[Exception] = None
        for attempt in range(1, self.submit_attempts + 1):
            try:
                task_id = await submit()
            except ModerationBlockError:
                raise
            except VideoGenServiceError as e:
                last_error = e
                logger.warning(f"{label}: submission {attempt}/{self.submit_attempts} failed: {e}")
                continue
            return await self._poll_task(task_id, label)
        raise ClipGenerationError(f"{label}: submission failed: {last_error}")

    async def _poll_task(self, task_id: str, label: str) -> str:
        for _ in range(self.max_poll_attempts):
            status = await self.video_gen.get_task(task_id)
            if status.status == "SUCCEEDED":
                if status.output_url:
                    return status.output_url
                raise ClipGenerationError(f"{label} succeeded but returned no output")
            if status.status in ("FAILED", "CANCELLED"):
                message = f"{label} failed: {status.failure_code or status.failure or status.status}"
                if is_moderation_block(status.failure, status.failure_code):
                    raise ModerationBlockError(message, code=status.failure_code)
                raise ClipGenerationError(message)
            await self.sleep(self.poll_interval)

        raise ClipTimeoutError(
            f"{label} timed out after {self.max_poll_attempts * self.poll_interval:.0f}s"
        )
