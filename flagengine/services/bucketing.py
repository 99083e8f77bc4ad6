# flagengine/services/bucketing.py
from typing import List, Optional, Sequence, Tuple

from flagengine.services.hashing import in_range

BucketRange = Tuple[float, float]


def get_equal_weights(num_variations: int) -> List[float]:
    if num_variations < 1:
        return []
    return [1 / num_variations for _ in range(num_variations)]


def get_bucket_ranges(
    num_variations: int,
    coverage: Optional[float] = 1,
    weights: Optional[Sequence[float]] = None,
) -> List[BucketRange]:
    """
    Turn variation weights and coverage into one half-open range per variation.

    Each range starts at the cumulative (unscaled) weight of the variations before it
    and is `coverage * weight` wide, so partial coverage thins every variation
    proportionally and leaves the gap at the tail of each weight slot.

    Weights fall back to equal weighting when missing, of the wrong length,
    or when they do not sum to 1 (+/- 0.01).
    """
    if coverage is None:
        coverage = 1
    coverage = min(max(coverage, 0), 1)

    if weights is None or len(weights) != num_variations:
        weights = get_equal_weights(num_variations)
    total = sum(weights)
    if total < 0.99 or total > 1.01:
        weights = get_equal_weights(num_variations)

    cumulative = 0.0
    ranges: List[BucketRange] = []
    for w in weights:
        start = cumulative
        cumulative += w
        ranges.append((start, start + coverage * w))
    return ranges


def choose_variation(n: float, ranges: Sequence[Sequence[float]]) -> int:
    """Index of the first range containing n, or -1 when n falls in a gap."""
    for i, r in enumerate(ranges):
        if in_range(n, r):
            return i
    return -1
