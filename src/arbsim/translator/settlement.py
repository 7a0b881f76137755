"""Funding settlement calendar and fee arithmetic.

Boundaries fall at start_time + k * interval. A position opened at t_open
and closed at t_close is charged at every boundary b with
t_open < b <= t_close.

CRITICAL: Fees are Decimal.
"""

from decimal import Decimal
from enum import Enum

from arbsim.models import Side

_HOUR_MS = 3_600_000


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def from_side(cls, side: Side) -> "PositionSide":
        return cls.LONG if side is Side.BUY else cls.SHORT


def settlement_boundaries(
    open_ts: int, close_ts: int, interval_hours: int, start_time: int = 0
) -> list[int]:
    """Every settlement instant in (open_ts, close_ts]."""
    interval = interval_hours * _HOUR_MS
    if interval <= 0:
        raise ValueError("interval_hours must be positive")
    # ceil((open - start) / interval), exact on integers
    steps = -((start_time - open_ts) // interval)
    boundary = start_time + steps * interval
    boundaries = []
    while boundary <= close_ts:
        if boundary > open_ts:
            boundaries.append(boundary)
        boundary += interval
    return boundaries


def funding_fee(notional: Decimal, rate: Decimal, side: PositionSide) -> Decimal:
    """Income for one settlement: -(notional * rate * (+1 LONG, -1 SHORT)).

    Longs pay positive rates and shorts receive them.
    """
    multiplier = 1 if side is PositionSide.LONG else -1
    return -(notional * rate * multiplier)
