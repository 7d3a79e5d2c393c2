"""Single-frame vision QA for generated clips.

A frame from the middle of a generated clip is shown to the vision model
with one yes/no question per rule that applies to the topic and script.
The clip passes only if every answer is yes. Clips with no applicable rule,
or whose check cannot run, pass unchecked.
"""

import asyncio
import logging
import re
from pathlib import Path

from models.segment import Segment
from services.ai_service import AIService, AIServiceError
from utils.ffmpeg import FFmpegError, run_ffmpeg
from utils.retry import RetryableError

logger = logging.getLogger(__name__)

# (pattern, field it is matched against, question)
QA_RULES = [
    (re.compile(r"\b(football|soccer)\b", re.I), "topic", "Is exactly one soccer ball visible?"),
    (re.compile(r"\bjudge\b", re.I), "topic", "Is the person's face normal (no crossed eyes)?"),
    (
        re.compile(r"\b(person|player|man|woman)\b", re.I),
        "script",
        "Is the person's face normal (no crossed eyes)?",
    ),
]


def qa_questions(topic: str, script: str) -> list[str]:
    """Questions for a clip, deduplicated and in rule order."""
    fields = {"topic": topic or "", "script": script or ""}
    questions: list[str] = []
    for pattern, field_name, question in QA_RULES:
        if pattern.search(fields[field_name]) and question not in questions:
            questions.append(question)
    return questions


def build_qa_prompt(questions: list[str]) -> str:
    lines = [f"Yes/No: {q}" for q in questions]
    lines.append("Answer each question on its own line with Yes or No.")
    return "\n".join(lines)


def answers_pass(answer: str, expected: int) -> bool:
    """True if the model answered yes to every question."""
    lines = [line.strip().lower() for line in re.split(r"[\r\n]+", answer or "") if line.strip()]
    if len(lines) < expected:
        return False
    return all("yes" in line for line in lines[:expected])


def extract_still(clip_path: Path, still_path: Path, at_seconds: float) -> Path:
    """Grab one JPEG frame at ``at_seconds`` (blocking)."""
    cmd = [
        "ffmpeg", "-y",
        "-ss", f"{max(0.0, at_seconds):.3f}",
        "-i", str(clip_path),
        "-frames:v", "1",
        "-q:v", "3",
        str(still_path),
    ]
    run_ffmpeg(cmd, f"QA still from {clip_path.name}")
    return still_path


class ClipStillQA:
    """Vision check of a generated clip's middle frame."""

    def __init__(self, ai: AIService):
        self.ai = ai

    async def check(self, clip_path: Path, segment: Segment, topic: str = "") -> bool:
        questions = qa_questions(topic, segment.script)
        if not questions or not self.ai.is_configured():
            return True

        still_path = clip_path.with_name(f"{clip_path.stem}_qa.jpg")
        try:
            await asyncio.to_thread(extract_still, clip_path, still_path, segment.duration / 2)
            answer = await asyncio.to_thread(
                self.ai.ask_about_image, still_path.read_bytes(), build_qa_prompt(questions)
            )
        except (FFmpegError, AIServiceError, RetryableError, OSError) as e:
            logger.warning(f"[Seg {segment.index}] Still QA skipped: {e}")
            return True
        finally:
            still_path.unlink(missing_ok=True)

        passed = answers_pass(answer, len(questions))
        if not passed:
            logger.warning(f"[Seg {segment.index}] Still QA rejected clip: {answer.strip()[:200]!r}")
        return passed
