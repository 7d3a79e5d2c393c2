"""FFmpeg-based assembly of segment clips and narration into the final short.

Sequence: normalize every clip with short fades, concatenate, fit the silent
video to the exact total, build the narration track (optionally under
background music) and mux. All intermediates live in a temp directory that
is removed when assembly finishes.

Top 5 jobs get a centered rank caption over each ranked segment.

The transition and caption passes are best-effort: a failed transition pass
falls back to hard cuts between the original clips, and a failed caption
pass keeps the uncaptioned video.
"""

import asyncio
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from shorts_agent.timing_planner import words_per_second
from utils.ffmpeg import DEFAULT_FPS, H264_OUTPUT_ARGS, FFmpegError, run_ffmpeg, write_concat_list

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100

FADE_MIN = 0.12
FADE_MAX = 0.35
FADE_FACTOR = 0.18

VOICE_GAIN_DEFAULT = 1.4
VOICE_GAIN_RANGE = (1.1, 1.8)
MUSIC_GAIN_DEFAULT = 0.12
MUSIC_GAIN_RANGE = (0.06, 0.25)


class AssemblyError(Exception):
    """Raised when an FFmpeg operation fails during assembly."""

    pass


def fade_length(duration: float) -> float:
    """Fade for a clip of ``duration`` seconds, never more than half of it."""
    return max(FADE_MIN, min(FADE_MAX, duration * FADE_FACTOR, duration / 2))


def clamp_gain(value: Optional[float], bounds: tuple[float, float], default: float) -> float:
    if value is None:
        return default
    low, high = bounds
    return min(high, max(low, value))


# Top 5 rank captions
RANK_PREFIX = re.compile(r"^\s*#\s*(\d+)\s*[:.)-]\s*")
LABEL_MAX_CHARS = 60
LABEL_HOLD = 0.25
LABEL_END_MARGIN = 0.1


def escape_drawtext(text: str) -> str:
    """Escape text for a single-quoted drawtext ``text=`` value."""
    return (
        text.replace("\\", "\\\\")
        .replace("'", "’")
        .replace(":", "\\:")
        .replace("%", "\\%")
        .replace("\n", " ")
    )


def rank_label(script: str) -> Optional[str]:
    """Caption for a ranked segment ("#3: ..."), or None when it has no rank."""
    match = RANK_PREFIX.match(script or "")
    if not match:
        return None
    label = " ".join(script[match.end():].split())
    if len(label) > LABEL_MAX_CHARS:
        label = label[:LABEL_MAX_CHARS - 3].rstrip() + "…"
    return label or None


def build_rank_overlay(
    scripts: list[str],
    durations: list[float],
    language: str = "English",
    fontfile: Optional[str] = None,
) -> Optional[str]:
    """drawtext filter chain captioning each ranked segment while it is spoken.

    Each caption appears at its segment's start and stays for the estimated
    narration time plus a short hold, ending just before the segment does.
    Returns None when no segment carries a rank.
    """
    wps = words_per_second(language)
    filters = []
    start = 0.0
    for script, duration in zip(scripts, durations):
        label = rank_label(script)
        if label:
            spoken = len(script.split()) / wps
            end = min(start + spoken + LABEL_HOLD, start + duration - LABEL_END_MARGIN)
            options = [
                f"text='{escape_drawtext(label)}'",
                "fontsize=32",
                "fontcolor=white",
                "box=1",
                "boxcolor=black@0.4",
                "boxborderw=15",
                "x=(w-text_w)/2",
                "y=(h-text_h)/2",
                f"enable='between(t,{start:.3f},{max(start, end):.3f})'",
            ]
            if fontfile:
                font = fontfile.replace("\\", "/").replace(":", "\\:")
                options.insert(0, f"fontfile='{font}'")
            filters.append("drawtext=" + ":".join(options))
        start += duration
    return ",".join(filters) if filters else None


class MediaAssembler:
    """Assembles the final MP4 from per-segment clips and narration."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = output_dir or Path("output")
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _run(self, cmd: list[str], description: str) -> None:
        try:
            run_ffmpeg(cmd, description)
        except FFmpegError as e:
            raise AssemblyError(str(e)) from e

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    def normalize_with_fades(
        self,
        clips: list[Path],
        durations: list[float],
        width: int,
        height: int,
        tmp_dir: Path,
    ) -> list[Path]:
        """Re-encode each clip at the target size with fades at its boundaries.

        The first clip fades in, the last fades out, and each fade is capped
        by the shorter of the clip and its neighbour.
        """
        if len(clips) != len(durations):
            raise AssemblyError(f"{len(clips)} clips but {len(durations)} durations")

        normalized = []
        for i, (clip, duration) in enumerate(zip(clips, durations)):
            own = fade_length(duration)
            fade_in = own if i == 0 else min(own, fade_length(durations[i - 1]))
            fade_out = own if i == len(clips) - 1 else min(own, fade_length(durations[i + 1]))

            vf = [
                f"scale={width}:{height}:force_original_aspect_ratio=increase",
                f"crop={width}:{height}",
                "format=yuv420p",
                "setsar=1",
                f"fps={DEFAULT_FPS}",
                "setpts=PTS-STARTPTS",
                f"fade=t=in:st=0:d={fade_in:.3f}",
                f"fade=t=out:st={max(0.0, duration - fade_out):.3f}:d={fade_out:.3f}",
            ]
            out = tmp_dir / f"norm_{i + 1:02d}.mp4"
            cmd = [
                "ffmpeg", "-y",
                "-i", str(clip),
                "-vf", ",".join(vf),
                "-an",
                "-t", f"{duration:.3f}",
                *H264_OUTPUT_ARGS,
                str(out),
            ]
            self._run(cmd, f"normalize clip {i + 1}/{len(clips)} (fade {fade_in:.2f}/{fade_out:.2f})")
            normalized.append(out)
        return normalized

    def concat(self, clips: list[Path], output_path: Path) -> Path:
        """Concatenate clips with the concat demuxer (stream copy).

        All inputs must share codec, resolution and frame rate.
        """
        if not clips:
            raise AssemblyError("No clips to concatenate")

        if len(clips) == 1:
            shutil.copy2(str(clips[0]), str(output_path))
            return output_path

        concat_file = write_concat_list(clips, output_path.parent / f"{output_path.stem}_list.txt")
        cmd = [
            "ffmpeg", "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(concat_file),
            "-c", "copy",
            str(output_path),
        ]
        self._run(cmd, f"concatenate {len(clips)} clips")
        return output_path

    def fit_video(self, input_path: Path, output_path: Path, total: float) -> Path:
        """Trim or hold-last-frame the silent video to exactly ``total`` seconds."""
        cmd = [
            "ffmpeg", "-y",
            "-i", str(input_path),
            "-vf", f"tpad=stop_mode=clone:stop_duration=2,fps={DEFAULT_FPS}",
            "-an",
            "-t", f"{total:.3f}",
            *H264_OUTPUT_ARGS,
            str(output_path),
        ]
        self._run(cmd, f"fit video to {total:.2f}s")
        return output_path

    def apply_overlay(self, input_path: Path, output_path: Path, video_filter: str) -> Path:
        """Burn a text overlay filter into the silent video."""
        cmd = [
            "ffmpeg", "-y",
            "-i", str(input_path),
            "-vf", video_filter,
            "-an",
            *H264_OUTPUT_ARGS,
            str(output_path),
        ]
        self._run(cmd, "burn rank captions")
        return output_path

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def concat_audio(self, paths: list[Path], output_path: Path, total: float) -> Path:
        """Join narration tracks and pad/trim the result to ``total`` seconds."""
        if not paths:
            raise AssemblyError("No narration tracks to join")

        cmd = ["ffmpeg", "-y"]
        filter_parts = []
        for i, path in enumerate(paths):
            cmd.extend(["-i", str(path)])
            filter_parts.append(
                f"[{i}:a]aformat=sample_rates={SAMPLE_RATE}:channel_layouts=stereo[a{i}]"
            )
        labels = "".join(f"[a{i}]" for i in range(len(paths)))
        filter_parts.append(f"{labels}concat=n={len(paths)}:v=0:a=1,apad[out]")

        cmd.extend([
            "-filter_complex", ";".join(filter_parts),
            "-map", "[out]",
            "-t", f"{total:.3f}",
            "-c:a", "pcm_s16le",
            str(output_path),
        ])
        self._run(cmd, f"join {len(paths)} narration tracks")
        return output_path

    def mix_music(
        self,
        narration_path: Path,
        music_path: Path,
        output_path: Path,
        voice_gain: Optional[float] = None,
        music_gain: Optional[float] = None,
    ) -> Path:
        """Mix looping background music under narration.

        Output duration follows the narration.
        """
        voice = clamp_gain(voice_gain, VOICE_GAIN_RANGE, VOICE_GAIN_DEFAULT)
        music = clamp_gain(music_gain, MUSIC_GAIN_RANGE, MUSIC_GAIN_DEFAULT)
        filter_complex = (
            f"[0:a]volume={voice:.2f}[a0];"
            f"[1:a]volume={music:.2f}[a1];"
            f"[a0][a1]amix=inputs=2:duration=first[out]"
        )
        cmd = [
            "ffmpeg", "-y",
            "-i", str(narration_path),
            "-stream_loop", "-1",
            "-i", str(music_path),
            "-filter_complex", filter_complex,
            "-map", "[out]",
            "-c:a", "pcm_s16le",
            str(output_path),
        ]
        self._run(cmd, f"mix background music (voice {voice:.2f}, music {music:.2f})")
        return output_path

    def boost_narration(
        self, narration_path: Path, output_path: Path, voice_gain: Optional[float] = None
    ) -> Path:
        """Narration-only track at the voice gain, used when there is no music."""
        voice = clamp_gain(voice_gain, VOICE_GAIN_RANGE, VOICE_GAIN_DEFAULT)
        cmd = [
            "ffmpeg", "-y",
            "-i", str(narration_path),
            "-af", f"volume={voice:.2f}",
            "-c:a", "pcm_s16le",
            str(output_path),
        ]
        self._run(cmd, f"boost narration ({voice:.2f})")
        return output_path

    def mux(self, video_path: Path, audio_path: Path, output_path: Path, total: float) -> Path:
        """Combine the fitted video and the final audio into an MP4."""
        cmd = [
            "ffmpeg", "-y",
            "-i", str(video_path),
            "-i", str(audio_path),
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
            "-c:a", "aac",
            "-b:a", "192k",
            "-t", f"{total:.3f}",
            "-movflags", "+faststart",
            str(output_path),
        ]
        self._run(cmd, f"mux final video ({total:.2f}s)")
        return output_path

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def assemble(
        self,
        clips: list[Path],
        durations: list[float],
        narration: list[Path],
        width: int,
        height: int,
        music_path: Optional[Path] = None,
        voice_gain: Optional[float] = None,
        music_gain: Optional[float] = None,
        output_name: str = "short.mp4",
        overlay_filter: Optional[str] = None,
    ) -> Path:
        """Run the full assembly sequence and return the final MP4 path.

        ``overlay_filter`` (drawtext captions) is burned in after fitting;
        if that pass fails the uncaptioned video is kept.

        Raises:
            AssemblyError: If any step other than the transition pass fails
        """
        if not clips:
            raise AssemblyError("No clips to assemble")
        total = round(sum(durations), 3)

        tmp_dir = Path(tempfile.mkdtemp(prefix="trendshorts_assemble_"))
        logger.info(f"Assembling {len(clips)} clips, {width}x{height}, {total:.2f}s")

        try:
            joined = tmp_dir / "joined.mp4"
            try:
                normalized = await asyncio.to_thread(
                    self.normalize_with_fades, clips, durations, width, height, tmp_dir
                )
                await asyncio.to_thread(self.concat, normalized, joined)
            except AssemblyError as e:
                logger.warning(f"Transition pass failed ({e}); falling back to hard cuts")
                await asyncio.to_thread(self.concat, clips, joined)

            fitted = await asyncio.to_thread(
                self.fit_video, joined, tmp_dir / "fitted.mp4", total
            )
            if overlay_filter:
                try:
                    fitted = await asyncio.to_thread(
                        self.apply_overlay, fitted, tmp_dir / "captioned.mp4", overlay_filter
                    )
                except AssemblyError as e:
                    logger.warning(f"Caption overlay failed ({e}); keeping uncaptioned video")

            voice_track = await asyncio.to_thread(
                self.concat_audio, narration, tmp_dir / "narration.wav", total
            )
            if music_path is not None and music_path.exists():
                try:
                    final_audio = await asyncio.to_thread(
                        self.mix_music, voice_track, music_path,
                        tmp_dir / "mixed.wav", voice_gain, music_gain,
                    )
                except AssemblyError as e:
                    logger.warning(f"Music mix failed ({e}); using narration only")
                    final_audio = await asyncio.to_thread(
                        self.boost_narration, voice_track, tmp_dir / "voice.wav", voice_gain
                    )
            else:
                final_audio = await asyncio.to_thread(
                    self.boost_narration, voice_track, tmp_dir / "voice.wav", voice_gain
                )

            muxed = await asyncio.to_thread(
                self.mux, fitted, final_audio, tmp_dir / "final.mp4", total
            )
            final_path = self.output_dir / output_name
            shutil.move(str(muxed), str(final_path))
            logger.info(f"Assembly complete: {final_path}")
            return final_path

        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            logger.debug(f"Cleaned up temp dir: {tmp_dir}")
