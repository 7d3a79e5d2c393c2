"""Narration, SEO metadata and music planning through the LLM.

Every LLM answer is parsed strictly into typed records at this boundary.
When the model is unavailable or answers garbage, each operation falls back
to templated text so a job can still finish.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from models.segment import Segment
from services.ai_service import AIService, AIServiceError, parse_lenient_json
from services.music_service import default_search_terms
from services.prompts import (
    MUSIC_PLAN_V1,
    SEGMENT_SCRIPT_V1,
    SEO_METADATA_V1,
    SHORTEN_LINE_V1,
    TONE_HINTS,
)
from utils.retry import RetryableError

logger = logging.getLogger(__name__)

LLM_ERRORS = (AIServiceError, RetryableError)

CTA_LINES = {
    "English": "Follow for more {category} stories like this, and tell us what you think in the comments below!",
    "العربية": "تابعونا لمزيد من قصص {category} مثل هذه، وشاركونا رأيكم في التعليقات أدناه!",
    "Français": "Abonnez-vous pour plus d'actus {category} comme celle-ci, et dites-nous ce que vous en pensez en commentaire !",
    "Deutsch": "Folgt uns für mehr {category} Geschichten wie diese und schreibt uns eure Meinung in die Kommentare!",
    "हिंदी": "ऐसी और {category} कहानियों के लिए फॉलो करें, और कमेंट में अपनी राय ज़रूर बताएं!",
}
CTA_MARKERS_RE = re.compile(
    r"(follow|subscribe|comment|abonn|folg|kommentar|تابع|التعليق|फॉलो|कमेंट)",
    re.IGNORECASE,
)

MAX_TAGS = 15


class PlanningError(Exception):
    """No narration can be planned for the job."""

    pass


@dataclass
class SeoMetadata:
    """Publishing metadata for a finished short."""

    title: str
    description: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class MusicPlan:
    """Background music search terms and mix levels."""

    search_terms: list[str] = field(default_factory=list)
    voice_gain: float = 1.4
    music_gain: float = 0.14


def _as_text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _as_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def fallback_title(topic: str, category: str) -> str:
    if category == "Top5":
        return f"Top 5: {topic}"
    return f"{category} Highlights: {topic}"


def normalize_tags(tags: list[str], category: str) -> list[str]:
    """Deduplicated tags, always led by ``shorts`` and the category."""
    out: list[str] = []
    for tag in ["shorts", category.lower(), *tags]:
        clean = _as_text(tag).lstrip("#")
        if clean and clean.lower() not in (t.lower() for t in out):
            out.append(clean)
    return out[:MAX_TAGS]


def cta_line(language: str, category: str) -> str:
    template = CTA_LINES.get(language, CTA_LINES["English"])
    return template.format(category=category if category != "Top5" else "top 5")


def fallback_scripts(topic: str, category: str, segments: list[Segment], language: str) -> None:
    """Fill empty scripts with neutral templated narration."""
    ranked = [s for s in segments if s.index != 1 and not s.is_tail]
    ranks = {s.index: len(ranked) - i for i, s in enumerate(ranked)}
    for seg in segments:
        if seg.script:
            continue
        if seg.is_tail:
            seg.script = cta_line(language, category)
        elif seg.index == 1:
            seg.script = f"Here is the story everyone is talking about: {topic}."
        elif category == "Top5":
            seg.script = f"#{ranks[seg.index]}: {topic}, number {ranks[seg.index]} on our list."
        else:
            seg.script = f"{topic}. Here is what we know so far."
        if not seg.image_query:
            seg.image_query = topic


class ScriptWriter:
    """Writes segment narration and metadata with an AIService.

    Takes an existing AIService instance for Gemini API access; with None,
    every operation uses its templated fallback.
    """

    def __init__(self, ai_service: Optional[AIService] = None):
        self.ai = ai_service

    def _ai_ready(self) -> bool:
        return self.ai is not None and self.ai.is_configured()

    # ------------------------------------------------------------------
    # Segment narration
    # ------------------------------------------------------------------

    def build_segment_prompt(
        self,
        topic: str,
        category: str,
        language: str,
        segments: list[Segment],
        image_count: int,
        context: str = "",
    ) -> str:
        table = "\n".join(
            f"Segment {s.index}: {s.duration:.1f}s, at most {s.word_budget} words"
            + (" (closing call to action)" if s.is_tail else "")
            for s in segments
        )
        top5_rules = ""
        if category == "Top5":
            content = [s for s in segments if s.index != 1 and not s.is_tail]
            ranks = list(range(len(content), 0, -1))
            top5_rules = (
                f"Segments {content[0].index}-{content[-1].index} must start with "
                + ", ".join(f'"#{r}:"' for r in ranks)
                + " in that order, followed by why it ranks there.\n"
                if content
                else ""
            )
        return SEGMENT_SCRIPT_V1.format(
            current_date=date.today().isoformat(),
            duration=round(sum(s.duration for s in segments)),
            category=category,
            topic=topic,
            segment_count=len(segments),
            segment_table=table,
            top5_rules=top5_rules,
            image_count=image_count,
            tone_hint=TONE_HINTS.get(category, ""),
            language_rule=f"\nAll output must be in {language}." if language != "English" else "",
            context=f"---\nReference:\n{context[:4000]}" if context else "",
        )

    def parse_segments(self, raw: Any, planned: list[Segment]) -> list[Segment]:
        """Merge LLM segment records into the planned segments by position.

        Accepts a JSON string or already-decoded data. Records may be dicts
        or bare strings; missing fields keep their defaults. Durations and
        budgets always come from the plan.
        """
        data = parse_lenient_json(raw) if isinstance(raw, str) else raw
        if isinstance(data, dict):
            data = data.get("segments", list(data.values()))
        if not isinstance(data, list):
            raise AIServiceError("Segment response is not a list")

        for seg, record in zip(planned, data):
            if isinstance(record, str):
                seg.script = record.strip()
                continue
            if not isinstance(record, dict):
                logger.warning(f"Skipping non-dict segment record for segment {seg.index}")
                continue
            seg.script = _as_text(record.get("script") or record.get("scriptText"))
            seg.motion_prompt = _as_text(record.get("motionPrompt") or record.get("runwayPrompt"))
            seg.image_query = _as_text(record.get("imageQuery"))
            seg.asset_index = _as_index(record.get("imageIndex"))

        if len(data) < len(planned):
            logger.warning(f"LLM returned {len(data)} segments for {len(planned)} planned")
        return planned

    async def write_segments(
        self,
        topic: str,
        category: str,
        language: str,
        segments: list[Segment],
        image_count: int = 0,
        context: str = "",
    ) -> list[Segment]:
        """Fill narration, motion prompts and image picks for planned segments.

        Raises:
            PlanningError: If there is neither a topic nor any planned segment
        """
        if not segments or not topic.strip():
            raise PlanningError("Cannot write narration without a topic and a segment plan")

        if self._ai_ready():
            prompt = self.build_segment_prompt(
                topic, category, language, segments, image_count, context
            )
            try:
                raw = await asyncio.to_thread(self.ai.complete, prompt, True)
                self.parse_segments(raw, segments)
                await self.shorten_overlong(segments)
            except LLM_ERRORS as e:
                logger.warning(f"Segment scripting failed ({e}); using templated narration")
        else:
            logger.info("No LLM configured; using templated narration")

        fallback_scripts(topic, category, segments, language)
        self.enforce_cta(segments, language, category)
        logger.info(
            f"Scripted {len(segments)} segments, "
            f"{sum(s.word_count for s in segments)} words total"
        )
        return segments

    async def shorten_overlong(self, segments: list[Segment]) -> None:
        """Ask the LLM to rewrite lines that exceed their word budget."""

        async def shorten(seg: Segment) -> None:
            prompt = SHORTEN_LINE_V1.format(max_words=seg.word_budget, line=seg.script)
            try:
                text = await asyncio.to_thread(self.ai.complete, prompt)
            except LLM_ERRORS as e:
                logger.debug(f"Could not shorten segment {seg.index}: {e}")
                return
            text = text.strip().strip('"“”')
            if text and len(text.split()) < seg.word_count:
                seg.script = text

        overlong = [
            s for s in segments
            if not s.is_tail and s.word_budget and s.word_count > s.word_budget
        ]
        if overlong:
            await asyncio.gather(*(shorten(s) for s in overlong))

    def enforce_cta(self, segments: list[Segment], language: str, category: str) -> None:
        """Make sure the closing segment actually asks viewers to follow or comment."""
        tail = next((s for s in segments if s.is_tail), None)
        if tail is None:
            return
        if not CTA_MARKERS_RE.search(tail.script):
            tail.script = f"{tail.script} {cta_line(language, category)}".strip()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def write_seo(
        self, topic: str, category: str, language: str, script: str
    ) -> SeoMetadata:
        """Title, description and tags; templated when the LLM fails."""
        fallback = SeoMetadata(
            title=fallback_title(topic, category),
            description=f"{topic}\n\n#shorts #{category.lower()}",
            tags=normalize_tags(re.findall(r"[\w']+", topic)[:8], category),
        )
        if not self._ai_ready():
            return fallback

        prompt = SEO_METADATA_V1.format(
            topic=topic, category=category, language=language, script=script[:3000]
        )
        try:
            data = await asyncio.to_thread(self.ai.complete_json, prompt)
        except LLM_ERRORS as e:
            logger.warning(f"SEO generation failed ({e}); using templated metadata")
            return fallback

        if not isinstance(data, dict) or not _as_text(data.get("title")):
            logger.warning("SEO response missing title; using templated metadata")
            return fallback

        tags = data.get("tags") if isinstance(data.get("tags"), list) else []
        return SeoMetadata(
            title=_as_text(data["title"])[:100],
            description=_as_text(data.get("description")) or fallback.description,
            tags=normalize_tags([_as_text(t) for t in tags], category),
        )

    async def plan_music(
        self, topic: str, category: str, language: str, script: str
    ) -> MusicPlan:
        """Music search terms and gains; defaults when the LLM fails."""
        plan = MusicPlan(
            search_terms=default_search_terms(topic, category),
            voice_gain=1.5 if category == "Top5" else 1.4,
            music_gain=0.18 if category == "Top5" else 0.14,
        )
        if not self._ai_ready():
            return plan

        prompt = MUSIC_PLAN_V1.format(category=category, language=language, script=script[:2000])
        try:
            data = await asyncio.to_thread(self.ai.complete_json, prompt)
        except LLM_ERRORS as e:
            logger.info(f"Music planning failed ({e}); using default search terms")
            return plan
        if not isinstance(data, dict):
            return plan

        terms = [_as_text(data.get("jamendoSearch"))[:120]]
        extra = data.get("fallbackSearchTerms")
        if isinstance(extra, list):
            terms.extend(_as_text(t)[:120] for t in extra)
        terms = [t for t in terms if t]
        return MusicPlan(
            search_terms=terms + [t for t in plan.search_terms if t not in terms],
            voice_gain=_as_float(data.get("voiceGain"), plan.voice_gain),
            music_gain=_as_float(data.get("musicGain"), plan.music_gain),
        )
