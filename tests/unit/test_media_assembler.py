"""Unit tests for final video assembly."""

import pytest
from shorts_agent.media_assembler import (
    FADE_MAX,
    FADE_MIN,
    MUSIC_GAIN_DEFAULT,
    AssemblyError,
    MediaAssembler,
    build_rank_overlay,
    clamp_gain,
    escape_drawtext,
    fade_length,
    rank_label,
)


def _inputs(temp_dir, count):
    clips, voices = [], []
    for i in range(count):
        clip = temp_dir / f"clip_{i + 1:02d}.mp4"
        voice = temp_dir / f"voice_{i + 1:02d}.wav"
        clip.touch()
        voice.touch()
        clips.append(clip)
        voices.append(voice)
    return clips, voices


@pytest.mark.unit
class TestHelpers:
    """Tests for fade and gain helpers."""

    def test_fade_is_bounded(self):
        assert fade_length(0.1) == FADE_MIN
        assert fade_length(20) == FADE_MAX
        assert fade_length(1.0) == pytest.approx(0.18)

    def test_clamp_gain(self):
        assert clamp_gain(None, (0.06, 0.25), MUSIC_GAIN_DEFAULT) == MUSIC_GAIN_DEFAULT
        assert clamp_gain(1.0, (0.06, 0.25), 0.12) == 0.25
        assert clamp_gain(0.01, (0.06, 0.25), 0.12) == 0.06


@pytest.mark.unit
class TestRankOverlay:
    """Tests for Top 5 rank captions."""

    def test_rank_label_strips_prefix(self):
        assert rank_label("#3: The quiet comeback") == "The quiet comeback"
        assert rank_label("An intro without a rank") is None

    def test_rank_label_truncates_long_text(self):
        label = rank_label("#1: " + "word " * 30)

        assert len(label) <= 58
        assert label.endswith("…")

    def test_escape_drawtext(self):
        assert escape_drawtext("It's 100% at 9:30") == "It’s 100\\% at 9\\:30"

    def test_only_ranked_segments_are_captioned(self):
        scripts = [
            "Here are the five best moments.",
            "#2: A late winner",
            "#1: The final whistle",
            "Follow for more.",
        ]

        overlay = build_rank_overlay(scripts, [3.0, 4.0, 4.0, 5.0])

        captions = overlay.split(",drawtext=")
        assert len(captions) == 2
        assert "text='A late winner'" in captions[0]
        assert "text='The final whistle'" in captions[1]
        # 4 words at 2.25 words/s plus the hold: 2.028s after each start
        assert "between(t,3.000,5.028)" in captions[0]
        assert "between(t,7.000,9.028)" in captions[1]

    def test_caption_ends_before_segment_does(self):
        overlay = build_rank_overlay(["#1: " + "word " * 20], [2.0])

        assert "between(t,0.000,1.900)" in overlay

    def test_no_ranks_no_overlay(self):
        assert build_rank_overlay(["Just a story."], [3.0]) is None


@pytest.mark.unit
class TestNormalizeWithFades:
    """Tests for the transition pass."""

    def test_neighbour_caps_fade(self, temp_dir, fake_ffmpeg):
        clips, _ = _inputs(temp_dir, 2)

        MediaAssembler(temp_dir / "out").normalize_with_fades(clips, [0.8, 10.0], 1080, 1920, temp_dir)

        second_vf = fake_ffmpeg.commands[1][fake_ffmpeg.commands[1].index("-vf") + 1]
        assert "fade=t=in:st=0:d=0.144" in second_vf
        assert "fade=t=out:st=9.650:d=0.350" in second_vf

    def test_count_mismatch(self, temp_dir):
        with pytest.raises(AssemblyError):
            MediaAssembler(temp_dir / "out").normalize_with_fades(
                [temp_dir / "a.mp4"], [1.0, 2.0], 1080, 1920, temp_dir
            )


@pytest.mark.unit
@pytest.mark.asyncio
class TestAssemble:
    """Tests for the assembly sequence."""

    async def test_assembles_with_music(self, temp_dir, fake_ffmpeg):
        clips, voices = _inputs(temp_dir, 3)
        music = temp_dir / "music.mp3"
        music.touch()
        assembler = MediaAssembler(temp_dir / "out")

        final = await assembler.assemble(
            clips, [3.0, 13.5, 18.5], voices, 1080, 1920,
            music_path=music, voice_gain=1.5, music_gain=0.18, output_name="job.mp4",
        )

        assert final == temp_dir / "out" / "job.mp4"
        assert final.exists()
        mux = fake_ffmpeg.matching("-c:a aac")[0]
        assert mux[mux.index("-t") + 1] == "35.000"
        mix = fake_ffmpeg.matching("amix")[0]
        assert "volume=1.50" in mix[mix.index("-filter_complex") + 1]
        assert "volume=0.18" in mix[mix.index("-filter_complex") + 1]

    async def test_transition_failure_falls_back_to_hard_cuts(self, temp_dir, fake_ffmpeg):
        clips, voices = _inputs(temp_dir, 2)
        fake_ffmpeg.fail_on = ["fade=t=in"]

        final = await MediaAssembler(temp_dir / "out").assemble(
            clips, [5.0, 5.0], voices, 1080, 1920
        )

        assert final.exists()
        concat = fake_ffmpeg.matching("-f concat")
        assert len(concat) == 1

    async def test_music_failure_keeps_narration(self, temp_dir, fake_ffmpeg):
        clips, voices = _inputs(temp_dir, 2)
        music = temp_dir / "music.mp3"
        music.touch()
        fake_ffmpeg.fail_on = ["amix"]

        final = await MediaAssembler(temp_dir / "out").assemble(
            clips, [5.0, 5.0], voices, 1080, 1920, music_path=music
        )

        assert final.exists()
        assert fake_ffmpeg.matching("volume=1.40")

    async def test_mux_failure_raises(self, temp_dir, fake_ffmpeg):
        clips, voices = _inputs(temp_dir, 1)
        fake_ffmpeg.fail_on = ["-c:a aac"]

        with pytest.raises(AssemblyError):
            await MediaAssembler(temp_dir / "out").assemble(clips, [5.0], voices, 1080, 1920)

    async def test_no_clips(self, temp_dir):
        with pytest.raises(AssemblyError, match="No clips"):
            await MediaAssembler(temp_dir / "out").assemble([], [], [], 1080, 1920)

    async def test_overlay_is_burned_in(self, temp_dir, fake_ffmpeg):
        clips, voices = _inputs(temp_dir, 2)
        overlay = build_rank_overlay(["Intro.", "#1: Top pick"], [5.0, 5.0])

        await MediaAssembler(temp_dir / "out").assemble(
            clips, [5.0, 5.0], voices, 1080, 1920, overlay_filter=overlay
        )

        burn = fake_ffmpeg.matching("drawtext")
        assert len(burn) == 1
        assert burn[0][burn[0].index("-vf") + 1] == overlay
        mux = fake_ffmpeg.matching("-c:a aac")[0]
        assert mux[mux.index("-i") + 1].endswith("captioned.mp4")

    async def test_overlay_failure_keeps_uncaptioned_video(self, temp_dir, fake_ffmpeg):
        clips, voices = _inputs(temp_dir, 2)
        fake_ffmpeg.fail_on = ["drawtext"]

        final = await MediaAssembler(temp_dir / "out").assemble(
            clips, [5.0, 5.0], voices, 1080, 1920,
            overlay_filter=build_rank_overlay(["Intro.", "#1: Top pick"], [5.0, 5.0]),
        )

        assert final.exists()
        mux = fake_ffmpeg.matching("-c:a aac")[0]
        assert mux[mux.index("-i") + 1].endswith("fitted.mp4")
