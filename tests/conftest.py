"""Shared pytest fixtures for trendshorts tests."""

import json
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from models.job import GenerationJob  # noqa: E402
from models.segment import Segment  # noqa: E402


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir) -> Dict:
    """Configuration with every provider unset, so nothing leaves the process."""
    return {
        "gemini_api_key": "",
        "gemini_model": "gemini-2.5-flash",
        "elevenlabs_api_key": "",
        "openai_api_key": "",
        "runway_api_key": "",
        "trends_api_url": "http://localhost:1/api/google-trends",
        "serpapi_key": "",
        "cloudinary_cloud_name": "",
        "cloudinary_api_key": "",
        "cloudinary_api_secret": "",
        "jamendo_client_id": "",
        "youtube_client_id": "",
        "youtube_client_secret": "",
        "youtube_refresh_token": "",
        "local_output_folder": str(temp_dir / "output"),
        "job_db_path": str(temp_dir / "jobs.db"),
        "scheduler_enabled": False,
        "scheduler_timezone": "America/Los_Angeles",
        "scheduler_poll_seconds": 60,
        "clip_parallelism": 2,
        "asset_parallelism": 2,
        "poll_interval_seconds": 0,
        "max_poll_attempts": 3,
        "budget_tier": "balanced",
        "max_images": 4,
        "clip_qa_enabled": True,
        "overlay_font_path": "",
        "log_level": "INFO",
        "log_json": False,
    }


@pytest.fixture
def sample_job() -> GenerationJob:
    return GenerationJob(category="Standard", duration=30, topic="City council approves new park")


@pytest.fixture
def sample_segments() -> list[Segment]:
    return [
        Segment(index=1, duration=3.0, word_budget=6, script="A new park is coming."),
        Segment(index=2, duration=13.5, word_budget=30, script="The council voted seven to two."),
        Segment(index=3, duration=13.5, word_budget=30, script="Construction starts in the spring."),
        Segment(index=4, duration=5.0, word_budget=11, is_tail=True, script="Follow for more local news."),
    ]


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    """Stand in for ffmpeg/ffprobe at the subprocess boundary.

    ffmpeg calls touch their output path (the last argument); ffprobe reports
    ``fake_ffmpeg.duration`` seconds. Commands are recorded on ``.commands``;
    any command containing one of ``.fail_on`` exits non-zero.
    """

    class FakeFFmpeg:
        def __init__(self):
            self.commands: list[list[str]] = []
            self.fail_on: list[str] = []
            self.duration = 5.0

        def __call__(self, cmd, *args, **kwargs):
            self.commands.append(list(cmd))
            joined = " ".join(str(c) for c in cmd)
            if any(marker in joined for marker in self.fail_on):
                return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="simulated failure")
            if cmd[0] == "ffprobe":
                stdout = json.dumps({"format": {"duration": str(self.duration)}})
                return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")
            Path(cmd[-1]).parent.mkdir(parents=True, exist_ok=True)
            Path(cmd[-1]).touch()
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        def matching(self, marker: str) -> list[list[str]]:
            return [c for c in self.commands if marker in " ".join(str(x) for x in c)]

    fake = FakeFFmpeg()
    monkeypatch.setattr("utils.ffmpeg.subprocess.run", fake)
    return fake
