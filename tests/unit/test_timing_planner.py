"""Unit tests for segment timing planning and re-balancing."""

import pytest
from shorts_agent.timing_planner import (
    MIN_SEGMENT_SECONDS,
    build_segments,
    compute_cta_tolerance,
    compute_engagement_tail,
    fit_to_total,
    plan_segments,
    rebalance,
    word_budgets,
    words_per_second,
)


@pytest.mark.unit
class TestEngagementTail:
    """Tests for the closing call-to-action length."""

    def test_short_videos_get_minimum_tail(self):
        assert compute_engagement_tail(5) == 5
        assert compute_engagement_tail(10) == 5

    def test_tail_scales_then_caps(self):
        assert compute_engagement_tail(30) == 5
        assert compute_engagement_tail(45) == 5
        assert compute_engagement_tail(60) == 6
        assert compute_engagement_tail(90) == 6

    def test_cta_tolerance_covers_word_deficit(self):
        """A 5s English tail holds 11 words; one more word needs half a second."""
        assert compute_cta_tolerance(5) == 0.5

    def test_cta_tolerance_zero_when_tail_is_long_enough(self):
        assert compute_cta_tolerance(6) == 0.0

    def test_cta_tolerance_is_capped(self):
        assert compute_cta_tolerance(0.5, min_cta_words=40) == 4.5

    def test_unknown_language_uses_default_rate(self):
        assert words_per_second("Klingon") == words_per_second("English")


@pytest.mark.unit
class TestPlanSegments:
    """Tests for initial duration planning."""

    def test_standard_30s(self):
        durations = plan_segments("Standard", 30, tail_seconds=0)

        assert durations == [3.0, 13.5, 13.5, 5.0]

    def test_top5_has_five_items(self):
        durations = plan_segments("Top5", 30, tail_seconds=5)

        assert len(durations) == 7
        assert durations[0] == 3.0
        assert durations[1:6] == [6.0, 6.0, 5.0, 5.0, 5.0]
        assert durations[-1] == 5.0

    def test_tolerance_extends_the_tail(self):
        durations = plan_segments("Standard", 30, tail_seconds=5, tolerance_seconds=0.5)

        assert durations[-1] == 5.5
        assert sum(durations) == pytest.approx(35.5, abs=0.01)

    @pytest.mark.parametrize("duration", range(5, 95, 5))
    @pytest.mark.parametrize("category", ["Standard", "Top5", "Sports"])
    def test_totals_match_and_all_positive(self, category, duration):
        tail = compute_engagement_tail(duration)
        durations = plan_segments(category, duration, tail_seconds=tail)

        assert all(d > 0 for d in durations)
        assert sum(durations) == pytest.approx(duration + tail, abs=0.01)

    def test_intro_never_exceeds_half_duration(self):
        durations = plan_segments("Standard", 5, tail_seconds=5)

        assert durations[0] == 2.5


@pytest.mark.unit
class TestFitToTotal:
    """Tests for proportional fitting with a floor."""

    def test_pins_short_segments_to_floor(self):
        assert fit_to_total([1, 10, 10], 21) == [3.0, 9.0, 9.0]

    def test_infeasible_floor_splits_evenly(self):
        assert fit_to_total([1, 1], 5) == [2.5, 2.5]

    def test_empty(self):
        assert fit_to_total([], 10) == []

    def test_zero_weights_split_evenly(self):
        assert fit_to_total([0, 0, 0, 0], 20) == [5.0, 5.0, 5.0, 5.0]


@pytest.mark.unit
class TestRebalance:
    """Tests for duration re-balancing from written narration."""

    def test_rebalanced_total_matches_target(self):
        planned = [3.0, 13.5, 13.5, 5.0]

        durations = rebalance(planned, [6, 30, 30, 12], 35)

        assert len(durations) == 4
        assert sum(durations) == pytest.approx(35, abs=0.01)
        assert all(d >= MIN_SEGMENT_SECONDS for d in durations)

    def test_mismatched_word_counts_keep_plan(self):
        planned = [3.0, 13.5, 13.5, 5.0]

        assert rebalance(planned, [10, 20], 35) == planned

    def test_large_residual_falls_back_to_plan(self):
        """Tiny scripts cannot be stretched 0.8-1.25x to fill the target."""
        planned = [3.0, 13.5, 13.5, 5.0]

        assert rebalance(planned, [1, 1, 1, 1], 35) == planned

    def test_all_zero_word_counts_keep_plan(self):
        planned = [3.0, 7.0, 5.0]

        assert rebalance(planned, [0, 0, 0], 15) == planned

    def test_empty_plan(self):
        assert rebalance([], [], 30) == []


@pytest.mark.unit
class TestBuildSegments:
    """Tests for Segment construction."""

    def test_indexes_budgets_and_tail(self):
        segments = build_segments([3.0, 13.5, 13.5, 5.0])

        assert [s.index for s in segments] == [1, 2, 3, 4]
        assert [s.is_tail for s in segments] == [False, False, False, True]
        assert [s.word_budget for s in segments] == word_budgets([3.0, 13.5, 13.5, 5.0])
        assert segments[0].word_budget == 6

    def test_budget_is_at_least_one_word(self):
        assert word_budgets([0.1]) == [1]
