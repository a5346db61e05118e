from bisect import bisect_left

# Upper score bound (inclusive) for levels 1..9; anything above the last
# breakpoint plays at MAX_LEVEL.
LEVEL_BREAKPOINTS = (5, 9, 13, 17, 21, 25, 29, 33, 37)
MAX_LEVEL = len(LEVEL_BREAKPOINTS) + 1


def level_for_score(score: float) -> int:
    """Map a (possibly fractional) score to a question level in 1..MAX_LEVEL."""
    return bisect_left(LEVEL_BREAKPOINTS, score) + 1
