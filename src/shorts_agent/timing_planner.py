"""Segment timing planner.

Turns (category, duration, language) into an ordered list of segment
durations and word budgets, then re-balances those durations against the
narration actually written. Planning never raises: every function returns a
positive list whose total matches the requested target.
"""

import logging
import math

from models.segment import Segment

logger = logging.getLogger(__name__)

INTRO_SECONDS = 3.0
CONTENT_CHUNK_SECONDS = 10
TOP5_ITEMS = 5

# Floor for any segment after clamping (equal to the intro so it is never inflated)
MIN_SEGMENT_SECONDS = 3.0

ENGAGEMENT_TAIL_MIN = 5
ENGAGEMENT_TAIL_MAX = 6
ENGAGEMENT_TAIL_FACTOR = 0.12

# Call-to-action word floor and the extra tail time granted to reach it
MIN_CTA_WORDS = 12
MAX_CTA_TOLERANCE = 4.5

# Narration estimate constants
SEGMENT_PAUSE_SECONDS = 0.25
TAIL_PAUSE_SECONDS = 0.35
SCALE_MIN = 0.8
SCALE_MAX = 1.25
REBALANCE_MAX_RESIDUAL = 2.0
TOTAL_EPSILON = 0.05

DEFAULT_WORDS_PER_SECOND = 2.25
LANGUAGE_WORDS_PER_SECOND = {
    "English": 2.25,
    "العربية": 2.0,
    "Français": 2.4,
    "Deutsch": 2.1,
    "हिंदी": 2.2,
}


def words_per_second(language: str, table: dict[str, float] | None = None) -> float:
    """Natural narration rate for a language, falling back to the English rate."""
    rates = table if table is not None else LANGUAGE_WORDS_PER_SECOND
    return rates.get(language, DEFAULT_WORDS_PER_SECOND)


def compute_engagement_tail(duration: float) -> int:
    """Length of the closing call-to-action segment in whole seconds."""
    if duration < 12:
        return ENGAGEMENT_TAIL_MIN
    return round(
        max(ENGAGEMENT_TAIL_MIN, min(ENGAGEMENT_TAIL_MAX, duration * ENGAGEMENT_TAIL_FACTOR))
    )


def compute_cta_tolerance(
    tail_seconds: float,
    language: str = "English",
    min_cta_words: int = MIN_CTA_WORDS,
    max_tolerance: float = MAX_CTA_TOLERANCE,
) -> float:
    """Extra tail seconds needed so the call to action is not truncated.

    Granted only when the tail cannot hold ``min_cta_words`` at the natural
    rate; the deficit is converted to seconds, rounded up to 0.5s and capped.
    """
    wps = words_per_second(language)
    capacity = int(tail_seconds * wps)
    deficit = min_cta_words - capacity
    if deficit <= 0:
        return 0.0
    seconds = math.ceil((deficit / wps) * 2) / 2
    return min(max_tolerance, seconds)


def word_budgets(durations: list[float], language: str = "English") -> list[int]:
    """Word budget per segment: duration x words-per-second, at least one word."""
    wps = words_per_second(language)
    return [max(1, int(d * wps)) for d in durations]


def _round_to_total(
    values: list[float], target: float, floor: float = 0.0
) -> list[float]:
    """Round to centiseconds and push the rounding residual onto the last segment.

    If that would push the last segment under ``floor`` the residual goes to
    the longest segment instead.
    """
    rounded = [round(v, 2) for v in values]
    residual = round(target - sum(rounded), 2)
    if residual:
        idx = len(rounded) - 1
        if rounded[idx] + residual < floor:
            idx = max(range(len(rounded)), key=lambda i: rounded[i])
        rounded[idx] = round(rounded[idx] + residual, 2)
    return rounded


def fit_to_total(
    durations: list[float], target: float, floor: float = MIN_SEGMENT_SECONDS
) -> list[float]:
    """Scale durations proportionally to ``target`` while respecting ``floor``.

    Segments that would drop under the floor are pinned to it and the rest
    are rescaled to absorb the difference. When the floor is infeasible
    (``n * floor > target``) the target is split evenly instead.
    """
    n = len(durations)
    if n == 0:
        return []
    target = max(float(target), 0.01 * n)

    if n * floor > target:
        return _round_to_total([target / n] * n, target)

    base = [max(float(d), 0.0) for d in durations]
    if sum(base) <= 0:
        base = [1.0] * n

    pinned: set[int] = set()
    values = list(base)
    while True:
        free = [i for i in range(n) if i not in pinned]
        remaining = target - floor * len(pinned)
        free_total = sum(base[i] for i in free)
        for i in pinned:
            values[i] = floor
        for i in free:
            values[i] = base[i] * remaining / free_total if free_total > 0 else remaining / len(free)
        below = [i for i in free if values[i] < floor]
        if not below:
            break
        pinned.update(below)
        if len(pinned) == n:
            values = [floor] * n
            break

    return _round_to_total(values, target, floor)


def plan_segments(
    category: str,
    total_duration: float,
    tail_seconds: float,
    tolerance_seconds: float = 0.0,
) -> list[float]:
    """Plan initial segment durations: intro, content chunks, engagement tail.

    Returns durations summing to ``total_duration + tail_seconds +
    tolerance_seconds``. Top5 splits the content into five countdown items;
    every other category uses near-equal chunks of roughly ten seconds.
    """
    duration = max(float(total_duration), 1.0)
    if tail_seconds <= 0:
        tail_seconds = compute_engagement_tail(duration)
    tail = tail_seconds + max(0.0, tolerance_seconds)

    intro = min(INTRO_SECONDS, duration / 2)
    remainder = duration - intro

    if category == "Top5":
        whole = int(remainder)
        base, extra = divmod(whole, TOP5_ITEMS)
        if base > 0:
            chunks = [float(base + (1 if i < extra else 0)) for i in range(TOP5_ITEMS)]
            chunks[-1] += remainder - whole
        else:
            chunks = [remainder / TOP5_ITEMS] * TOP5_ITEMS
    else:
        n = max(1, int(remainder // CONTENT_CHUNK_SECONDS))
        chunks = [remainder / n] * n

    content = fit_to_total(chunks, remainder)
    durations = _round_to_total([intro, *content, tail], duration + tail)

    logger.debug(
        f"Planned {len(durations)} segments for {category} {duration:.0f}s "
        f"(tail {tail:.2f}s): {durations}"
    )
    return durations


def rebalance(
    planned: list[float],
    script_word_counts: list[int],
    target_total: float,
    language: str = "English",
    floor: float = MIN_SEGMENT_SECONDS,
) -> list[float]:
    """Recompute durations from the narration actually written.

    Each segment's estimate is words / rate plus a fixed pause, the whole set
    is scaled toward ``target_total`` by a factor clamped to 0.8-1.25, and
    the remaining residual is absorbed by the final segment. If that residual
    is too large (or would push the final segment under the floor) the
    planned lengths are kept, fitted to the target, instead.
    """
    n = len(planned)
    if n == 0:
        return []
    target = float(target_total) if target_total > 0 else float(sum(planned))

    if len(script_word_counts) != n or not any(script_word_counts):
        logger.warning(
            f"Word counts unusable for rebalance ({len(script_word_counts)} for {n} segments); "
            "keeping planned durations"
        )
        return fit_to_total(planned, target, floor)

    if n * floor > target:
        return fit_to_total(planned, target, floor)

    wps = words_per_second(language)
    estimates = [
        max(floor, words / wps + (TAIL_PAUSE_SECONDS if i == n - 1 else SEGMENT_PAUSE_SECONDS))
        for i, words in enumerate(script_word_counts)
    ]

    scale = min(SCALE_MAX, max(SCALE_MIN, target / sum(estimates)))
    durations = [max(floor, e * scale) for e in estimates]

    residual = target - sum(durations)
    final = durations[-1] + residual
    if abs(residual) > REBALANCE_MAX_RESIDUAL or final < floor:
        logger.info(
            f"Rebalance residual {residual:+.2f}s out of bounds (scale {scale:.2f}); "
            "falling back to planned durations"
        )
        return fit_to_total(planned, target, floor)

    durations[-1] = final
    return _round_to_total(durations, target, floor)


def build_segments(durations: list[float], language: str = "English") -> list[Segment]:
    """Create Segment records (1-based, last one is the tail) for planned durations."""
    budgets = word_budgets(durations, language)
    return [
        Segment(
            index=i + 1,
            duration=d,
            word_budget=budgets[i],
            is_tail=(i == len(durations) - 1),
        )
        for i, d in enumerate(durations)
    ]
