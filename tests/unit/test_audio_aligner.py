"""Unit tests for narration synthesis fallback and audio fitting."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
from models.segment import Segment
from services.tts_service import TTSServiceError
from shorts_agent import audio_aligner
from shorts_agent.audio_aligner import (
    AudioSynthesizer,
    SynthesisError,
    VoiceConfig,
    fit_to_duration,
    improve_pronunciation,
    plan_audio_fit,
    split_rank_line,
)


def _provider(audio: bytes = b"ID3audio", side_effect=None, configured: bool = True):
    provider = Mock()
    provider.is_configured.return_value = configured
    provider.synthesize = AsyncMock(return_value=audio, side_effect=side_effect)
    return provider


@pytest.mark.unit
class TestPlanAudioFit:
    """Tests for the tempo/pad/trim decision."""

    def test_within_tolerance_is_noop(self):
        plan = plan_audio_fit(5.05, 5.0)

        assert plan.is_noop
        assert plan.filters() == []

    def test_long_audio_is_sped_up_then_trimmed(self):
        plan = plan_audio_fit(6.0, 5.0, max_tempo=1.08)

        assert plan.tempo == 1.08
        assert plan.trim
        assert plan.filters() == ["atempo=1.0800"]
        assert plan.expected_seconds == 5.0

    def test_slightly_long_audio_only_needs_tempo(self):
        plan = plan_audio_fit(5.2, 5.0, max_tempo=1.08)

        assert plan.tempo == pytest.approx(1.04)
        assert plan.expected_seconds == pytest.approx(5.0)

    def test_short_audio_is_padded_to_exact_length(self):
        plan = plan_audio_fit(2.0, 5.0)

        assert plan.tempo == 1.0
        assert plan.pad_seconds == pytest.approx(3.0)
        assert plan.filters() == ["apad=pad_dur=3.000"]
        assert plan.expected_seconds == pytest.approx(5.0)

    def test_far_short_audio_is_still_padded_fully(self, caplog):
        with caplog.at_level("WARNING"):
            plan = plan_audio_fit(1.0, 5.0, max_pad_ratio=0.5)

        assert plan.pad_seconds == pytest.approx(4.0)
        assert plan.expected_seconds == pytest.approx(5.0)
        assert "far shorter" in caplog.text

    def test_large_tempo_splits_into_atempo_factors(self):
        plan = plan_audio_fit(15.0, 3.0, max_tempo=5.0)

        assert plan.tempo == 5.0
        assert plan.atempo_factors == [2.0, 2.0, 1.25]

    @pytest.mark.parametrize("ratio", [0.5, 0.75, 0.9, 1.0, 1.05, 1.5, 2.0, 3.0])
    @pytest.mark.parametrize("target", [3.0, 5.5, 13.5])
    def test_fitted_length_matches_target(self, ratio, target):
        plan = plan_audio_fit(target * ratio, target)

        assert plan.expected_seconds == pytest.approx(target, abs=0.08)
        assert plan.tempo <= 1.08


@pytest.mark.unit
class TestFitToDuration:
    """Tests for the FFmpeg command built from a fit plan."""

    def test_padding_command(self, monkeypatch, tmp_path):
        run = Mock()
        monkeypatch.setattr(audio_aligner, "probe_duration", Mock(return_value=2.0))
        monkeypatch.setattr(audio_aligner, "run_ffmpeg", run)

        fit_to_duration(tmp_path / "raw.mp3", 5.0, tmp_path / "out.wav")

        cmd = run.call_args[0][0]
        assert cmd[cmd.index("-af") + 1] == "apad=pad_dur=3.000"
        assert cmd[cmd.index("-t") + 1] == "5.000"
        assert cmd[cmd.index("-ar") + 1] == "44100"

    def test_noop_has_no_filters(self, monkeypatch, tmp_path):
        run = Mock()
        monkeypatch.setattr(audio_aligner, "probe_duration", Mock(return_value=5.0))
        monkeypatch.setattr(audio_aligner, "run_ffmpeg", run)

        fit_to_duration(tmp_path / "raw.mp3", 5.0, tmp_path / "out.wav")

        cmd = run.call_args[0][0]
        assert "-af" not in cmd
        assert "-t" not in cmd


@pytest.mark.unit
class TestTextHelpers:
    """Tests for pronunciation and rank splitting."""

    def test_rank_markers_are_spelled_out(self):
        assert improve_pronunciation("#3: The comeback") == "Number three: The comeback"

    def test_small_numbers_become_words(self):
        assert improve_pronunciation("They won 4 titles in 2024") == "They won four titles in 2024"

    def test_decimals_are_left_alone(self):
        assert improve_pronunciation("Up 3.5 percent") == "Up 3.5 percent"

    def test_non_english_keeps_digits(self):
        assert improve_pronunciation("#2: Gagné 4 fois", "Français") == "Number 2: Gagné 4 fois"

    def test_split_rank_line(self):
        assert split_rank_line("#5: Lakers fall in overtime") == ["#5:", "Lakers fall in overtime"]
        assert split_rank_line("No rank here") == ["No rank here"]
        assert split_rank_line("#5:") == ["#5:"]


@pytest.mark.unit
class TestVoiceConfig:
    """Tests for tone and voice selection."""

    def test_sensitive_story_is_slower(self):
        tone = VoiceConfig().tone_for("The singer passed away on Sunday", "Entertainment")

        assert tone.sensitive
        assert tone.speed == 0.94

    def test_hype_category_is_faster(self):
        tone = VoiceConfig().tone_for("The match ended", "Sports")

        assert tone.speed == 1.06
        assert tone.style == 1.0

    def test_voice_override_and_language_fallback(self):
        config = VoiceConfig()

        assert config.voice_for("English", "custom-voice") == "custom-voice"
        assert config.voice_for("Esperanto") == config.voices_by_language["English"]

    def test_top5_allows_faster_tempo(self):
        assert VoiceConfig().max_tempo_for("Top5") == 1.2
        assert VoiceConfig().max_tempo_for("Sports") == 1.08


@pytest.mark.unit
@pytest.mark.asyncio
class TestAudioSynthesizer:
    """Tests for provider fallback and narration."""

    async def test_primary_is_used_first(self):
        primary = _provider(b"eleven")
        secondary = _provider(b"openai")

        audio = await AudioSynthesizer(primary, secondary).synthesize("Hello there", "English", "World")

        assert audio == b"eleven"
        secondary.synthesize.assert_not_called()

    async def test_422_retries_without_style(self):
        primary = _provider(side_effect=[TTSServiceError("bad settings", status_code=422), b"eleven"])

        audio = await AudioSynthesizer(primary, None).synthesize("Hello there")

        assert audio == b"eleven"
        assert primary.synthesize.call_args.kwargs["style"] is None

    async def test_falls_back_to_secondary(self):
        primary = _provider(side_effect=TTSServiceError("quota", status_code=429))
        secondary = _provider(b"openai")

        audio = await AudioSynthesizer(primary, secondary).synthesize("Hello there")

        assert audio == b"openai"
        assert secondary.synthesize.call_args.kwargs["voice_id"] == "shimmer"

    async def test_no_provider_raises(self):
        with pytest.raises(SynthesisError, match="No TTS provider configured"):
            await AudioSynthesizer(_provider(configured=False), None).synthesize("Hello")

    async def test_narrate_fits_to_segment(self, monkeypatch, tmp_path):
        fits = []

        def fake_fit(raw_path, target, out_path, max_tempo, tolerance, max_pad_ratio):
            fits.append((target, max_tempo))
            Path(out_path).touch()
            return out_path

        monkeypatch.setattr(audio_aligner, "fit_to_duration", fake_fit)
        segment = Segment(index=2, duration=6.5, script="A quiet night in the city.")

        path = await AudioSynthesizer(_provider(), None).narrate(segment, tmp_path, category="World")

        assert path == tmp_path / "voice_02.wav"
        assert segment.audio_path == path
        assert fits == [(6.5, 1.08)]
        assert not (tmp_path / "voice_02_raw.mp3").exists()

    async def test_narrate_uses_silence_when_providers_fail(self, monkeypatch, tmp_path):
        silences = []

        def fake_silence(out_path, seconds):
            silences.append(seconds)
            Path(out_path).touch()
            return out_path

        monkeypatch.setattr(audio_aligner, "write_silence", fake_silence)
        segment = Segment(index=1, duration=3.0, script="Hello")

        path = await AudioSynthesizer(None, None).narrate(segment, tmp_path)

        assert path.exists()
        assert silences == [3.0]

    async def test_top5_rank_line_is_enumerated(self, monkeypatch, tmp_path):
        joined = []

        def fake_join(parts, out_path, gap):
            joined.append((len(parts), gap))
            Path(out_path).touch()
            return out_path

        def fake_fit(raw_path, target, out_path, *args):
            Path(out_path).touch()
            return out_path

        monkeypatch.setattr(audio_aligner, "join_with_gaps", fake_join)
        monkeypatch.setattr(audio_aligner, "fit_to_duration", fake_fit)
        primary = _provider()
        segment = Segment(index=3, duration=6.0, script="#4: A buzzer-beater for the ages")

        await AudioSynthesizer(primary, None).narrate(segment, tmp_path, category="Top5")

        assert joined == [(2, 0.4)]
        spoken = [c[0][0] for c in primary.synthesize.call_args_list]
        assert spoken == ["Number four:", "A buzzer-beater for the ages"]

    async def test_undecodable_audio_falls_back_to_silence(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.fail_on = ["_raw.mp3"]
        segment = Segment(index=1, duration=3.0, script="Hello there")

        path = await AudioSynthesizer(_provider(b"<html>not audio</html>"), None).narrate(segment, tmp_path)

        assert path == tmp_path / "voice_01.wav"
        assert path.exists()
        assert segment.audio_path == path
        silence = fake_ffmpeg.matching("anullsrc")
        assert len(silence) == 1
        assert "3.000" in silence[0]
        assert not (tmp_path / "voice_01_raw.mp3").exists()
