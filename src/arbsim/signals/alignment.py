"""Cross-series timestamp alignment.

The two legs tick asynchronously. A tick on the time-source leg is paired
with the nearest tick on the other leg within a tolerance; when there is
none the tick is skipped. A miss is expected noise, not an error.
"""

from bisect import bisect_left
from collections.abc import Sequence


def nearest_within(timestamps: Sequence[int], target: int, tolerance_ms: int) -> int | None:
    """Index of the timestamp closest to target, if within tolerance.

    Args:
        timestamps: Ascending timestamps of the other leg.
        target: Timestamp being aligned.
        tolerance_ms: Maximum allowed |difference|, inclusive.

    Returns:
        The index of the best match, or None. Equal distances resolve to the
        earlier tick.
    """
    if not timestamps:
        return None
    idx = bisect_left(timestamps, target)
    best: int | None = None
    best_diff = tolerance_ms + 1
    for candidate in (idx - 1, idx):
        if 0 <= candidate < len(timestamps):
            diff = abs(timestamps[candidate] - target)
            if diff <= tolerance_ms and diff < best_diff:
                best, best_diff = candidate, diff
    return best
