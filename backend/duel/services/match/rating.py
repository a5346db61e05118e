"""ELO rating with a performance bonus for the margin of victory.

All functions are pure; persistence happens in the match session.
"""

import math
from typing import Tuple

K_FACTOR = 32
MAX_PERFORMANCE_BONUS = 10
MAX_DELTA = 50


def expected_score(rating: float, opponent_rating: float) -> float:
    """Probability of ``rating`` beating ``opponent_rating``.

    E = 1 / (1 + 10^((opponent - rating) / 400))
    """
    exponent = (opponent_rating - rating) / 400.0
    return 1.0 / (1.0 + 10 ** exponent)


def actual_scores(score_a: float, score_b: float) -> Tuple[float, float]:
    if score_a > score_b:
        return 1.0, 0.0
    if score_b > score_a:
        return 0.0, 1.0
    return 0.5, 0.5


def performance_bonus(score_a: float, score_b: float) -> int:
    return min(MAX_PERFORMANCE_BONUS, math.floor(2 * abs(score_a - score_b)))


def _clamp(delta: int) -> int:
    return max(-MAX_DELTA, min(MAX_DELTA, delta))


def compute_deltas(rating_a: float, rating_b: float, score_a: float, score_b: float) -> Tuple[int, int]:
    """Return ``(delta_a, delta_b)`` for a finished match.

    Swapping the two sides negates both results.
    """
    expected_a = expected_score(rating_a, rating_b)
    actual_a, _ = actual_scores(score_a, score_b)
    base = round(K_FACTOR * (actual_a - expected_a))
    delta_a, delta_b = base, -base

    bonus = performance_bonus(score_a, score_b)
    if score_a > score_b:
        delta_a, delta_b = delta_a + bonus, delta_b - bonus
    elif score_b > score_a:
        delta_a, delta_b = delta_a - bonus, delta_b + bonus

    return _clamp(delta_a), _clamp(delta_b)


def apply_delta(rating: float, delta: int) -> int:
    """New rating after ``delta``; ratings never drop below zero."""
    return max(0, int(rating) + delta)
