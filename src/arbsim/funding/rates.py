"""Funding-rate helpers: interval detection, annualization and lookup.

CRITICAL: Rates are Decimal.
"""

from bisect import bisect_right
from collections import Counter
from collections.abc import Sequence
from decimal import Decimal

from arbsim.data.models import FundingPoint

DEFAULT_INTERVAL_HOURS = 8

_HOUR_MS = 3_600_000


def detect_interval_hours(
    points: Sequence[FundingPoint], sample: int = 5, default: int | None = DEFAULT_INTERVAL_HOURS
) -> int | None:
    """Settlement interval in hours from the modal spacing of the first points.

    Returns default with fewer than two points or a sub-hour spacing.
    """
    head = points[:sample]
    if len(head) < 2:
        return default
    spacings = [
        round((b.timestamp - a.timestamp) / _HOUR_MS) for a, b in zip(head, head[1:])
    ]
    hours, _ = Counter(spacings).most_common(1)[0]
    return hours if hours > 0 else default


def annualize(rate: Decimal, interval_hours: int) -> Decimal:
    """Periodic rate to annual rate: rate * (24 / interval_hours) * 365."""
    return rate * Decimal(24 * 365) / Decimal(interval_hours)


class FundingRateLookup:
    """Rate in force at a given time for one funding series.

    Returns the latest rate at or before the timestamp; before the first
    point the first rate is used, and an empty series gives zero.
    """

    def __init__(self, points: Sequence[FundingPoint]) -> None:
        self._timestamps = [p.timestamp for p in points]
        self._rates = [p.rate for p in points]

    def __len__(self) -> int:
        return len(self._rates)

    def rate_at(self, timestamp: int) -> Decimal:
        if not self._rates:
            return Decimal("0")
        idx = bisect_right(self._timestamps, timestamp) - 1
        return self._rates[max(idx, 0)]
