"""Thin FFmpeg/ffprobe subprocess helpers shared by the media stages.

All calls are blocking; callers run them through ``asyncio.to_thread``.
"""

import json
import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30
ENCODE_PRESET = "veryfast"
ENCODE_CRF = 20

# libx264/yuv420p output that every player and the concat demuxer accept
H264_OUTPUT_ARGS = [
    "-c:v", "libx264",
    "-preset", ENCODE_PRESET,
    "-crf", str(ENCODE_CRF),
    "-pix_fmt", "yuv420p",
    "-movflags", "+faststart",
]


class FFmpegError(Exception):
    """Raised when an FFmpeg invocation exits non-zero."""

    pass


def run_ffmpeg(cmd: list[str], description: str = "", timeout: int = 600) -> None:
    """Run an FFmpeg command.

    Args:
        cmd: Full command as a list of arguments
        description: Human-readable description for logging
        timeout: Seconds before the subprocess is killed

    Raises:
        FFmpegError: On non-zero exit code or timeout
    """
    logger.info(f"FFmpeg: {description}")
    logger.debug(f"Command: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise FFmpegError(f"FFmpeg timed out after {timeout}s ({description})") from e

    if result.returncode != 0:
        logger.error(f"FFmpeg stderr: {result.stderr[-1000:]}")
        raise FFmpegError(f"FFmpeg failed ({description}): {result.stderr[:500]}")


def probe_duration(media_path: Path) -> float:
    """Get the container duration of a media file in seconds.

    Returns 0.0 when ffprobe fails or reports nothing usable.
    """
    cmd = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "json",
        str(media_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
        if result.returncode == 0:
            data = json.loads(result.stdout)
            return float(data["format"]["duration"])
    except (subprocess.SubprocessError, OSError, ValueError, KeyError) as e:
        logger.warning(f"ffprobe failed for {media_path}: {e}")
    return 0.0


def write_concat_list(paths: list[Path], list_path: Path) -> Path:
    """Write an FFmpeg concat-demuxer list file."""
    lines = []
    for p in paths:
        escaped = str(Path(p).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    list_path.write_text("\n".join(lines) + "\n")
    return list_path
