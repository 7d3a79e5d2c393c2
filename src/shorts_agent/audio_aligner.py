"""Narration synthesis and exact-length audio alignment.

``AudioSynthesizer`` turns segment scripts into speech (ElevenLabs first,
OpenAI TTS second). ``plan_audio_fit`` decides how a narration track is
stretched, padded or trimmed to its segment, and ``fit_to_duration`` applies
that plan with FFmpeg.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from models.segment import Segment
from services.tts_service import (
    ELEVENLABS_SIMILARITY,
    ELEVENLABS_STABILITY,
    ElevenLabsClient,
    OpenAITTSClient,
    TTSServiceError,
)
from utils.ffmpeg import FFmpegError, probe_duration, run_ffmpeg

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100
MAX_ATEMPO_FACTOR = 2.0
DEFAULT_TOLERANCE = 0.08
DEFAULT_MAX_PAD_RATIO = 0.5
DEFAULT_MAX_TEMPO = 1.08
ENUMERATION_GAP_SECONDS = 0.4

ELEVEN_VOICES = {
    "English": "21m00Tcm4TlvDq8ikWAM",
    "العربية": "CYw3kZ02Hs0563khs1Fj",
    "Français": "gqjD3Awy6ZnJf2el9DnG",
    "Deutsch": "IFHEeWG1IGkfXpxmB1vN",
    "हिंदी": "ykoxtvL6VZTyas23mE9F",
}

ELEVEN_STYLE_BY_CATEGORY = {
    "Sports": 1.0,
    "Politics": 0.6,
    "Finance": 0.7,
    "Entertainment": 0.9,
    "Technology": 0.8,
    "Health": 0.7,
    "World": 0.7,
    "Lifestyle": 0.9,
    "Science": 0.8,
    "Top5": 1.0,
    "Other": 0.7,
}

SENSITIVE_TONE_RE = re.compile(
    r"\b(died|dead|death|killed|slain|shot dead|massacre|tragedy|tragic|funeral|mourning|"
    r"passed away|succumbed|fatal|fatalities|casualty|casualties|victims?|hospitalized|"
    r"critically ill|coma|cancer|tumou?r|leukemia|stroke|heart attack|illness|terminal|"
    r"pandemic|epidemic|outbreak|bombing|explosion|airstrike|genocide)\b",
    re.IGNORECASE,
)
HYPE_TONE_RE = re.compile(
    r"\b(breaking|incredible|amazing|unbelievable|huge|massive|record|historic|epic|insane|"
    r"wild|stunning|shocking|explodes|erupt(s|ed)?|surge(s|d)?|soar(s|ed)?|smashes|crushes|"
    r"upset|thriller|overtime|buzzer-beater|comeback)\b",
    re.IGNORECASE,
)
HYPE_CATEGORIES = ("Sports", "Top5", "Entertainment")

_NUMBER_WORDS = [
    "zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine",
    "ten", "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen",
    "seventeen", "eighteen", "nineteen", "twenty",
]

RANK_PREFIX_RE = re.compile(r"^\s*(?:#\s*(\d{1,2})|Number\s+(\w+))\s*:\s*(.*)$", re.IGNORECASE | re.DOTALL)


class SynthesisError(Exception):
    """Every narration provider failed for a piece of text."""

    pass


@dataclass
class VoiceTone:
    """Delivery settings derived from the text and category."""

    style: float
    stability: float = ELEVENLABS_STABILITY
    similarity: float = ELEVENLABS_SIMILARITY
    speed: float = 1.02
    sensitive: bool = False


@dataclass
class VoiceConfig:
    """Voice tables and alignment limits, injected into the synthesizer."""

    voices_by_language: dict[str, str] = field(default_factory=lambda: dict(ELEVEN_VOICES))
    style_by_category: dict[str, float] = field(
        default_factory=lambda: dict(ELEVEN_STYLE_BY_CATEGORY)
    )
    default_style: float = 0.7
    secondary_voice: str = "shimmer"
    speed_sensitive: float = 0.94
    speed_hype: float = 1.06
    speed_default: float = 1.02
    max_tempo_by_category: dict[str, float] = field(default_factory=lambda: {"Top5": 1.2})
    default_max_tempo: float = DEFAULT_MAX_TEMPO
    max_pad_ratio: float = DEFAULT_MAX_PAD_RATIO
    tolerance: float = DEFAULT_TOLERANCE
    enumeration_gap: float = ENUMERATION_GAP_SECONDS

    def voice_for(self, language: str, override: Optional[str] = None) -> str:
        if override:
            return override
        return self.voices_by_language.get(language, self.voices_by_language["English"])

    def max_tempo_for(self, category: str) -> float:
        return self.max_tempo_by_category.get(category, self.default_max_tempo)

    def tone_for(self, text: str, category: str) -> VoiceTone:
        """Sensitive stories are read slower and flatter; hype stories faster."""
        base = self.style_by_category.get(category, self.default_style)
        if SENSITIVE_TONE_RE.search(text):
            return VoiceTone(
                style=0.25, stability=0.55, similarity=0.9,
                speed=self.speed_sensitive, sensitive=True,
            )
        if HYPE_TONE_RE.search(text) or re.search(r"[!?]", text) or category in HYPE_CATEGORIES:
            return VoiceTone(style=min(1.0, base + 0.3), stability=0.13, speed=self.speed_hype)
        return VoiceTone(style=min(1.0, base + 0.15), stability=0.17, speed=self.speed_default)


def improve_pronunciation(text: str, language: str = "English") -> str:
    """Spell out rank markers and small numbers so TTS reads them naturally.

    ``#3:`` becomes ``Number three:`` and, for English, standalone 1 to 20
    become words.
    """
    is_english = language == "English"

    def rank(match: re.Match) -> str:
        n = int(match.group(1))
        word = _NUMBER_WORDS[n] if is_english and n <= 20 else str(n)
        return f"Number {word}:"

    text = re.sub(r"#\s*(\d{1,2})\s*:", rank, text)
    if is_english:
        text = re.sub(
            r"(?<![\d.,])\b([1-9]|1[0-9]|20)\b(?![\d.,]\d)",
            lambda m: _NUMBER_WORDS[int(m.group(1))],
            text,
        )
    return text


def split_rank_line(script: str) -> list[str]:
    """Split ``#N: body`` into ``["#N:", body]``; other scripts come back whole."""
    match = RANK_PREFIX_RE.match(script or "")
    if not match or not match.group(3).strip():
        return [script]
    marker = f"#{match.group(1)}:" if match.group(1) else f"Number {match.group(2)}:"
    return [marker, match.group(3).strip()]


@dataclass
class AudioFitPlan:
    """How one narration track reaches its target length."""

    input_seconds: float
    target_seconds: float
    tempo: float = 1.0
    pad_seconds: float = 0.0
    trim: bool = False

    @property
    def is_noop(self) -> bool:
        return self.tempo == 1.0 and self.pad_seconds == 0.0 and not self.trim

    @property
    def atempo_factors(self) -> list[float]:
        """``tempo`` split into factors FFmpeg's atempo accepts (each at most 2.0)."""
        factors = []
        remaining = self.tempo
        while remaining > MAX_ATEMPO_FACTOR:
            factors.append(MAX_ATEMPO_FACTOR)
            remaining /= MAX_ATEMPO_FACTOR
        if abs(remaining - 1.0) > 1e-6:
            factors.append(remaining)
        return factors

    @property
    def expected_seconds(self) -> float:
        stretched = self.input_seconds / self.tempo + self.pad_seconds
        return min(stretched, self.target_seconds) if self.trim else stretched

    def filters(self) -> list[str]:
        chain = [f"atempo={f:.4f}" for f in self.atempo_factors]
        if self.pad_seconds > 0:
            chain.append(f"apad=pad_dur={self.pad_seconds:.3f}")
        return chain


def plan_audio_fit(
    input_seconds: float,
    target_seconds: float,
    max_tempo: float = DEFAULT_MAX_TEMPO,
    tolerance: float = DEFAULT_TOLERANCE,
    max_pad_ratio: float = DEFAULT_MAX_PAD_RATIO,
) -> AudioFitPlan:
    """Decide tempo, padding and trimming for a narration track.

    Within ``tolerance`` nothing changes. Longer audio is sped up by at most
    ``max_tempo`` and the rest hard-trimmed. Shorter audio is padded with
    silence to the target; a pad beyond ``target * max_pad_ratio`` is still
    applied but logged, since it means the script ran far short.
    """
    target = max(0.0, target_seconds)
    source = max(0.0, input_seconds)
    diff = target - source

    if abs(diff) <= tolerance:
        return AudioFitPlan(input_seconds=source, target_seconds=target)

    if diff < 0:
        tempo = min(source / target, max(1.0, max_tempo)) if target > 0 else 1.0
        return AudioFitPlan(
            input_seconds=source, target_seconds=target, tempo=round(tempo, 4), trim=True
        )

    # Segment tracks are concatenated back to back, so a short track must be
    # padded all the way; a capped pad would shift every later segment.
    if diff > target * max_pad_ratio:
        logger.warning(
            f"Narration {source:.2f}s is far shorter than its {target:.2f}s segment; "
            f"padding {diff:.2f}s of silence"
        )
    return AudioFitPlan(input_seconds=source, target_seconds=target, pad_seconds=diff, trim=True)


def fit_to_duration(
    raw_path: Path,
    target_seconds: float,
    out_path: Path,
    max_tempo: float = DEFAULT_MAX_TEMPO,
    tolerance: float = DEFAULT_TOLERANCE,
    max_pad_ratio: float = DEFAULT_MAX_PAD_RATIO,
) -> Path:
    """Render ``raw_path`` at ``target_seconds`` as 44.1kHz stereo WAV (blocking)."""
    plan = plan_audio_fit(
        probe_duration(raw_path), target_seconds, max_tempo, tolerance, max_pad_ratio
    )
    cmd = ["ffmpeg", "-y", "-i", str(raw_path)]
    filters = plan.filters()
    if filters:
        cmd.extend(["-af", ",".join(filters)])
    if plan.trim:
        cmd.extend(["-t", f"{target_seconds:.3f}"])
    cmd.extend(["-ar", str(SAMPLE_RATE), "-ac", "2", "-c:a", "pcm_s16le", str(out_path)])

    run_ffmpeg(
        cmd,
        f"fit audio {plan.input_seconds:.2f}s -> {target_seconds:.2f}s "
        f"(tempo {plan.tempo}, pad {plan.pad_seconds:.2f}s)",
    )
    return out_path


def write_silence(out_path: Path, seconds: float) -> Path:
    """Write a silent 44.1kHz stereo WAV of ``seconds`` (blocking)."""
    cmd = [
        "ffmpeg", "-y",
        "-f", "lavfi",
        "-i", f"anullsrc=r={SAMPLE_RATE}:cl=stereo",
        "-t", f"{max(0.0, seconds):.3f}",
        "-c:a", "pcm_s16le",
        str(out_path),
    ]
    run_ffmpeg(cmd, f"silence {seconds:.2f}s")
    return out_path


def join_with_gaps(parts: list[Path], out_path: Path, gap_seconds: float) -> Path:
    """Concatenate audio files with ``gap_seconds`` of silence between them (blocking)."""
    cmd = ["ffmpeg", "-y"]
    labels = []
    filter_parts = []
    input_index = 0
    for i, part in enumerate(parts):
        cmd.extend(["-i", str(part)])
        filter_parts.append(
            f"[{input_index}:a]aformat=sample_rates={SAMPLE_RATE}:channel_layouts=stereo[p{i}]"
        )
        labels.append(f"[p{i}]")
        input_index += 1
        if i < len(parts) - 1 and gap_seconds > 0:
            cmd.extend(["-f", "lavfi", "-t", f"{gap_seconds:.3f}", "-i", f"anullsrc=r={SAMPLE_RATE}:cl=stereo"])
            labels.append(f"[{input_index}:a]")
            input_index += 1

    filter_parts.append(f"{''.join(labels)}concat=n={len(labels)}:v=0:a=1[out]")
    cmd.extend([
        "-filter_complex", ";".join(filter_parts),
        "-map", "[out]",
        "-c:a", "pcm_s16le",
        str(out_path),
    ])
    run_ffmpeg(cmd, f"join {len(parts)} narration parts")
    return out_path


class AudioSynthesizer:
    """Narration for segments, with provider fallback and exact-length fitting."""

    def __init__(
        self,
        primary: Optional[ElevenLabsClient] = None,
        secondary: Optional[OpenAITTSClient] = None,
        voice_config: Optional[VoiceConfig] = None,
    ):
        self.primary = primary
        self.secondary = secondary
        self.config = voice_config or VoiceConfig()

    async def synthesize(
        self,
        text: str,
        language: str = "English",
        category: str = "Other",
        voice_id: Optional[str] = None,
    ) -> bytes:
        """Speech for ``text`` as MP3 bytes.

        Raises:
            SynthesisError: If no provider produced audio
        """
        spoken = improve_pronunciation(text, language)
        if not spoken.strip():
            raise SynthesisError("Nothing to synthesize")

        tone = self.config.tone_for(spoken, category)
        errors = []

        if self.primary is not None and self.primary.is_configured():
            voice = self.config.voice_for(language, voice_id)
            try:
                audio = await self.primary.synthesize(
                    spoken, voice, style=tone.style,
                    stability=tone.stability, similarity=tone.similarity,
                )
                logger.info(f"[TTS] ElevenLabs narrated {len(spoken)} chars")
                return audio
            except TTSServiceError as e:
                if e.status_code == 422:
                    logger.warning("[TTS] ElevenLabs rejected voice settings; retrying without style")
                    try:
                        audio = await self.primary.synthesize(
                            spoken, voice, style=None,
                            stability=tone.stability, similarity=tone.similarity,
                        )
                        logger.info(f"[TTS] ElevenLabs narrated {len(spoken)} chars (no style)")
                        return audio
                    except TTSServiceError as retry_error:
                        errors.append(f"elevenlabs: {retry_error}")
                else:
                    errors.append(f"elevenlabs: {e}")
                logger.warning(f"[TTS] ElevenLabs failed: {errors[-1]}")

        if self.secondary is not None and self.secondary.is_configured():
            try:
                audio = await self.secondary.synthesize(
                    spoken, voice_id=self.config.secondary_voice, speed=tone.speed
                )
                logger.info(f"[TTS] OpenAI narrated {len(spoken)} chars at speed {tone.speed}")
                return audio
            except TTSServiceError as e:
                errors.append(f"openai: {e}")
                logger.warning(f"[TTS] OpenAI failed: {e}")

        raise SynthesisError("; ".join(errors) or "No TTS provider configured")

    async def synthesize_enumerated(
        self,
        items: list[str],
        workdir: Path,
        stem: str,
        language: str = "English",
        category: str = "Top5",
        voice_id: Optional[str] = None,
        gap_seconds: Optional[float] = None,
    ) -> Path:
        """Synthesize items separately and join them with short silences.

        Raises:
            SynthesisError: If any item cannot be synthesized
        """
        gap = self.config.enumeration_gap if gap_seconds is None else gap_seconds
        parts: list[Path] = []
        try:
            for i, item in enumerate(items):
                audio = await self.synthesize(item, language, category, voice_id)
                part = workdir / f"{stem}_part{i}.mp3"
                part.write_bytes(audio)
                parts.append(part)
            out_path = workdir / f"{stem}_joined.wav"
            return await asyncio.to_thread(join_with_gaps, parts, out_path, gap)
        finally:
            for part in parts:
                part.unlink(missing_ok=True)

    async def narrate(
        self,
        segment: Segment,
        workdir: Path,
        language: str = "English",
        category: str = "Other",
        voice_id: Optional[str] = None,
    ) -> Path:
        """Narration for ``segment`` fitted to exactly its duration.

        Never raises for provider failures or undecodable provider audio: the
        segment gets silence of the right length instead, so the job can
        still finish.
        """
        workdir.mkdir(parents=True, exist_ok=True)
        out_path = workdir / f"voice_{segment.index:02d}.wav"
        raw_path: Optional[Path] = None
        max_tempo = self.config.max_tempo_for(category)

        try:
            items = split_rank_line(segment.script) if category == "Top5" else [segment.script]
            if len(items) > 1:
                raw_path = await self.synthesize_enumerated(
                    items, workdir, f"voice_{segment.index:02d}", language, category, voice_id
                )
            else:
                audio = await self.synthesize(segment.script, language, category, voice_id)
                raw_path = workdir / f"voice_{segment.index:02d}_raw.mp3"
                raw_path.write_bytes(audio)

            await asyncio.to_thread(
                fit_to_duration,
                raw_path,
                segment.duration,
                out_path,
                max_tempo,
                self.config.tolerance,
                self.config.max_pad_ratio,
            )
        except (SynthesisError, FFmpegError, OSError) as e:
            logger.error(f"[Seg {segment.index}] Narration failed ({e}); using silence")
            await asyncio.to_thread(write_silence, out_path, segment.duration)
        finally:
            if raw_path is not None:
                raw_path.unlink(missing_ok=True)

        segment.audio_path = out_path
        return out_path
