"""File-backed store for per-(exchange, symbol) price and funding series.

Each series lives in its own JSON array, ascending by timestamp and unique by
timestamp:
- {exchange}_{symbol}.json            [{"ts": ..., "price": ...}, ...]
- {exchange}_funding_{symbol}.json    [{"ts": ..., "rate": ...}, ...]

Readers accept either "ts" or "timestamp" as the time key. Writers always use
"ts". Series values are written as JSON numbers, matching downloaded files.

CRITICAL: Values are restored as Decimal on read.
"""

import time
from collections.abc import Iterable, Sequence
from decimal import Decimal
from pathlib import Path
from typing import Any, TypeVar

from arbsim.data.files import read_json, write_json_atomic
from arbsim.data.models import FundingPoint, Metric, MixedPoint, PricePoint
from arbsim.exceptions import DataGapError
from arbsim.logging import get_logger

logger = get_logger(__name__)

P = TypeVar("P", PricePoint, FundingPoint)


def merge_points(existing: Iterable[P], incoming: Iterable[P]) -> list[P]:
    """Merge two series, keeping the first record seen per timestamp.

    The result is sorted ascending. Merging a series with itself, or with any
    overlapping subset of itself, is a no-op.
    """
    seen: dict[int, P] = {}
    for point in (*existing, *incoming):
        if point.timestamp not in seen:
            seen[point.timestamp] = point
    return [seen[ts] for ts in sorted(seen)]


def _record_ts(record: dict[str, Any]) -> int:
    if "ts" in record:
        return int(record["ts"])
    return int(record["timestamp"])


def _parse_prices(records: Sequence[dict[str, Any]]) -> list[PricePoint]:
    return [
        PricePoint(timestamp=_record_ts(r), price=Decimal(str(r["price"])))
        for r in records
    ]


def _parse_funding(records: Sequence[dict[str, Any]]) -> list[FundingPoint]:
    return [
        FundingPoint(timestamp=_record_ts(r), rate=Decimal(str(r["rate"])))
        for r in records
    ]


class TimeSeriesStore:
    """Loads, merges, dedupes and saves series under a single directory.

    Args:
        data_dir: Directory holding the series files. Mixed scenarios use a
            separate store rooted at their own output directory.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)

    # ──────────────────────────────────────────────
    # Paths
    # ──────────────────────────────────────────────

    def price_path(self, exchange: str, symbol: str) -> Path:
        return self.data_dir / f"{exchange}_{symbol}.json"

    def funding_path(self, exchange: str, symbol: str) -> Path:
        return self.data_dir / f"{exchange}_funding_{symbol}.json"

    def path_for(self, metric: Metric, exchange: str, symbol: str) -> Path:
        if metric is Metric.PRICE:
            return self.price_path(exchange, symbol)
        return self.funding_path(exchange, symbol)

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    def _load_records(self, path: Path, required: bool) -> list[dict[str, Any]]:
        if not path.exists():
            if required:
                raise DataGapError(str(path), "file not found")
            return []
        data = read_json(path)
        if not isinstance(data, list):
            raise DataGapError(str(path), "expected a JSON array of records")
        if required and not data:
            raise DataGapError(str(path), "series is empty")
        return data

    def load_prices(
        self, exchange: str, symbol: str, required: bool = False
    ) -> list[PricePoint]:
        """Load a price series, sorted and deduped.

        Raises:
            DataGapError: If required and the file is missing or empty.
        """
        path = self.price_path(exchange, symbol)
        points = _parse_prices(self._load_records(path, required))
        return merge_points([], points)

    def load_funding(
        self, exchange: str, symbol: str, required: bool = False
    ) -> list[FundingPoint]:
        """Load a funding-rate series, sorted and deduped.

        Raises:
            DataGapError: If required and the file is missing or empty.
        """
        path = self.funding_path(exchange, symbol)
        points = _parse_funding(self._load_records(path, required))
        return merge_points([], points)

    def load(
        self, metric: Metric, exchange: str, symbol: str, required: bool = False
    ) -> list[PricePoint] | list[FundingPoint]:
        if metric is Metric.PRICE:
            return self.load_prices(exchange, symbol, required)
        return self.load_funding(exchange, symbol, required)

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    def save_prices(self, exchange: str, symbol: str, points: Sequence[PricePoint]) -> None:
        records = [{"ts": p.timestamp, "price": float(p.price)} for p in points]
        write_json_atomic(self.price_path(exchange, symbol), records)

    def save_funding(
        self, exchange: str, symbol: str, points: Sequence[FundingPoint]
    ) -> None:
        records = [{"ts": p.timestamp, "rate": float(p.rate)} for p in points]
        write_json_atomic(self.funding_path(exchange, symbol), records)

    def merge_prices(
        self, exchange: str, symbol: str, incoming: Iterable[PricePoint]
    ) -> int:
        """Merge new price points into the stored series.

        Returns:
            Number of timestamps that were not already stored.
        """
        existing = self.load_prices(exchange, symbol)
        merged = merge_points(existing, incoming)
        added = len(merged) - len(existing)
        self.save_prices(exchange, symbol, merged)
        logger.info(
            "series_merged",
            path=str(self.price_path(exchange, symbol)),
            total=len(merged),
            added=added,
        )
        return added

    def merge_funding(
        self, exchange: str, symbol: str, incoming: Iterable[FundingPoint]
    ) -> int:
        """Merge new funding points into the stored series.

        Returns:
            Number of timestamps that were not already stored.
        """
        existing = self.load_funding(exchange, symbol)
        merged = merge_points(existing, incoming)
        added = len(merged) - len(existing)
        self.save_funding(exchange, symbol, merged)
        logger.info(
            "series_merged",
            path=str(self.funding_path(exchange, symbol)),
            total=len(merged),
            added=added,
        )
        return added

    def save_mixed(
        self,
        exchange: str,
        symbol: str,
        points: Sequence[MixedPoint],
        metric: Metric,
        mixed_at: int | None = None,
    ) -> Path:
        """Write a mixed series with its _segment/_mixed_at/_original_* tags."""
        stamp = mixed_at if mixed_at is not None else int(time.time() * 1000)
        key = metric.value if metric is Metric.PRICE else "rate"
        records = [
            {
                "ts": p.timestamp,
                key: float(p.value),
                f"_original_{key}": float(p.original_value),
                "_segment": p.segment_id,
                "_mixed_at": stamp,
            }
            for p in points
        ]
        path = self.path_for(metric, exchange, symbol)
        write_json_atomic(path, records)
        return path
