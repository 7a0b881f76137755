"""Data models for time series records.

CRITICAL: Prices and rates are Decimal. Timestamps are Unix milliseconds.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class Metric(str, Enum):
    """Which series a scenario rule perturbs."""

    PRICE = "price"
    FUNDING = "funding"


@dataclass(frozen=True)
class PricePoint:
    """A single price observation (1m close in downloaded files)."""

    timestamp: int
    price: Decimal

    @property
    def value(self) -> Decimal:
        return self.price


@dataclass(frozen=True)
class FundingPoint:
    """A periodic funding rate settlement, e.g. 0.0001 = 0.01% per period."""

    timestamp: int
    rate: Decimal

    @property
    def value(self) -> Decimal:
        return self.rate


@dataclass(frozen=True)
class MixedPoint:
    """A point after scenario mixing, tagged with the rule that produced it.

    segment_id is "default" when no rule matched and the point passed through.
    """

    timestamp: int
    value: Decimal
    original_value: Decimal
    segment_id: str
    metric: Metric
