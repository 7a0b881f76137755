"""Time series persistence layer.

Provides series data models, the file-backed TimeSeriesStore with
merge/dedupe semantics, and the ccxt historical downloader.
"""

from arbsim.data.fetcher import HistoricalFetcher, to_unified_symbol
from arbsim.data.models import FundingPoint, Metric, MixedPoint, PricePoint
from arbsim.data.store import TimeSeriesStore, merge_points

__all__ = [
    "FundingPoint",
    "HistoricalFetcher",
    "Metric",
    "MixedPoint",
    "PricePoint",
    "TimeSeriesStore",
    "merge_points",
    "to_unified_symbol",
]
