"""Per-run engine context: funding-rate cache and translator session table.

A context is owned by one run invocation (or one live loop) and passed to
the stages that need it. Nothing here is module-level state, so tests and
concurrent runs stay isolated.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from arbsim.data.store import TimeSeriesStore
from arbsim.funding.rates import FundingRateLookup
from arbsim.logging import get_logger
from arbsim.models import Side

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionEntry:
    """What the translator remembers about an open session."""

    entry_timestamp: int
    quantities: tuple[Decimal, Decimal]  # base-asset quantity per leg
    prices: tuple[Decimal, Decimal]
    sides: tuple[Side, Side]

    def notional(self, leg_index: int) -> Decimal:
        return self.quantities[leg_index] * self.prices[leg_index]


@dataclass
class EngineContext:
    """Shared state for one run.

    Args:
        funding_stores: Stores searched in order for funding series; the
            first one holding a non-empty series wins (mixed before raw).
    """

    funding_stores: Sequence[TimeSeriesStore] = ()
    series_cache: dict[tuple[str, str], FundingRateLookup] = field(default_factory=dict)
    session_table: dict[str, SessionEntry] = field(default_factory=dict)

    def funding_lookup(self, exchange: str, symbol: str) -> FundingRateLookup:
        key = (exchange, symbol)
        if key not in self.series_cache:
            points = []
            for store in self.funding_stores:
                points = store.load_funding(exchange, symbol)
                if points:
                    break
            if not points:
                logger.warning("funding_series_missing", exchange=exchange, symbol=symbol)
            self.series_cache[key] = FundingRateLookup(points)
        return self.series_cache[key]

    def invalidate(self) -> None:
        """Drop cached series so the next lookup rereads files."""
        self.series_cache.clear()
