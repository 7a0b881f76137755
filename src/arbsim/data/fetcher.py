"""Historical price and funding-rate downloader built on ccxt.

Fetches 1m close prices and funding-rate history for each hedge leg and
merges them into the TimeSeriesStore. Walks FORWARD from the newest stored
timestamp so reruns only pull what is missing.

Notes:
- Files are keyed by the exchange-native symbol (TRXUSDT, TRX-USDT-SWAP);
  ccxt calls use the unified symbol (TRX/USDT:USDT).
- Rate-limit errors back off three times harder than other errors.
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any

import ccxt.async_support

from arbsim.config import DownloadSettings
from arbsim.data.models import FundingPoint, PricePoint
from arbsim.data.store import TimeSeriesStore
from arbsim.exceptions import ConfigError
from arbsim.logging import get_logger

logger = get_logger(__name__)

_QUOTES = ("USDT", "USDC", "BUSD")


def to_unified_symbol(exchange_id: str, symbol: str) -> str:
    """Convert an exchange-native perpetual symbol to ccxt's unified form.

    >>> to_unified_symbol("binance", "TRXUSDT")
    'TRX/USDT:USDT'
    >>> to_unified_symbol("okx", "TRX-USDT-SWAP")
    'TRX/USDT:USDT'
    """
    if "/" in symbol:
        return symbol
    if exchange_id == "okx":
        parts = symbol.split("-")
        if len(parts) < 2:
            raise ConfigError(f"legs.symbol: cannot parse OKX symbol {symbol!r}")
        base, quote = parts[0], parts[1]
        return f"{base}/{quote}:{quote}"
    for quote in _QUOTES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            base = symbol[: -len(quote)]
            return f"{base}/{quote}:{quote}"
    raise ConfigError(f"legs.symbol: cannot parse {exchange_id} symbol {symbol!r}")


def create_exchange(exchange_id: str) -> Any:
    """Instantiate a public (unauthenticated) ccxt async client for swaps."""
    exchange_cls = getattr(ccxt.async_support, exchange_id, None)
    if exchange_cls is None:
        raise ConfigError(f"legs.exchange: unknown exchange {exchange_id!r}")
    return exchange_cls({"enableRateLimit": True, "options": {"defaultType": "swap"}})


class HistoricalFetcher:
    """Downloads series for hedge legs and persists them via the store.

    Usage:
        fetcher = HistoricalFetcher(store, settings)
        try:
            await fetcher.download_leg("binance", "TRXUSDT", since_ms)
        finally:
            await fetcher.close()

    Args:
        store: Destination for merged series.
        settings: Pagination and retry settings.
        exchange_factory: Builds a ccxt client from an exchange id. Injected
            in tests.
        time_fn: Wall clock in seconds, injected in tests.
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        settings: DownloadSettings,
        exchange_factory: Callable[[str], Any] = create_exchange,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._settings = settings
        self._exchange_factory = exchange_factory
        self._time_fn = time_fn
        self._clients: dict[str, Any] = {}

    def _client(self, exchange_id: str) -> Any:
        if exchange_id not in self._clients:
            self._clients[exchange_id] = self._exchange_factory(exchange_id)
        return self._clients[exchange_id]

    async def close(self) -> None:
        """Close every ccxt client opened by this fetcher."""
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    # ──────────────────────────────────────────────
    # Public methods
    # ──────────────────────────────────────────────

    async def download_leg(
        self, exchange_id: str, symbol: str, since_ms: int
    ) -> tuple[int, int]:
        """Fetch prices and funding for one leg and merge them into the store.

        Starts from the later of since_ms and the newest stored timestamp.

        Returns:
            (new price points, new funding points).
        """
        unified = to_unified_symbol(exchange_id, symbol)
        client = self._client(exchange_id)

        stored_prices = self._store.load_prices(exchange_id, symbol)
        price_since = max(since_ms, stored_prices[-1].timestamp + 1) if stored_prices else since_ms
        prices = await self._fetch_prices(client, unified, price_since)
        price_added = self._store.merge_prices(exchange_id, symbol, prices) if prices else 0

        stored_funding = self._store.load_funding(exchange_id, symbol)
        funding_since = (
            max(since_ms, stored_funding[-1].timestamp + 1) if stored_funding else since_ms
        )
        funding = await self._fetch_funding(client, unified, funding_since)
        funding_added = (
            self._store.merge_funding(exchange_id, symbol, funding) if funding else 0
        )

        logger.info(
            "leg_downloaded",
            exchange=exchange_id,
            symbol=symbol,
            new_prices=price_added,
            new_funding=funding_added,
        )
        return price_added, funding_added

    async def download_legs(
        self, legs: list[tuple[str, str]], days: int
    ) -> dict[str, tuple[int, int]]:
        """Download every (exchange, symbol) leg covering the last `days` days."""
        since_ms = int(self._time_fn() * 1000) - days * 86_400 * 1000
        results: dict[str, tuple[int, int]] = {}
        for exchange_id, symbol in legs:
            results[f"{exchange_id}_{symbol}"] = await self.download_leg(
                exchange_id, symbol, since_ms
            )
        return results

    # ──────────────────────────────────────────────
    # Paginated fetch methods
    # ──────────────────────────────────────────────

    async def _fetch_prices(self, client: Any, symbol: str, since_ms: int) -> list[PricePoint]:
        """Walk FORWARD from since_ms collecting candle closes."""
        points: list[PricePoint] = []
        cursor = since_ms
        while True:
            batch = await self._fetch_with_retry(
                client.fetch_ohlcv,
                symbol,
                timeframe=self._settings.timeframe,
                since=cursor,
                limit=self._settings.page_limit,
            )
            batch = [c for c in batch if c[0] >= cursor]
            if not batch:
                break
            batch.sort(key=lambda c: c[0])
            points.extend(PricePoint(timestamp=int(c[0]), price=Decimal(str(c[4]))) for c in batch)

            newest = int(batch[-1][0])
            if newest < cursor or len(batch) < self._settings.page_limit:
                break
            cursor = newest + 1
            await asyncio.sleep(self._settings.fetch_batch_delay)
        return points

    async def _fetch_funding(
        self, client: Any, symbol: str, since_ms: int
    ) -> list[FundingPoint]:
        """Walk FORWARD from since_ms collecting funding-rate settlements."""
        points: list[FundingPoint] = []
        cursor = since_ms
        while True:
            batch = await self._fetch_with_retry(
                client.fetch_funding_rate_history,
                symbol,
                since=cursor,
                limit=self._settings.page_limit,
            )
            batch = [r for r in batch if r["timestamp"] >= cursor]
            if not batch:
                break
            batch.sort(key=lambda r: r["timestamp"])
            points.extend(
                FundingPoint(timestamp=int(r["timestamp"]), rate=Decimal(str(r["fundingRate"])))
                for r in batch
            )

            newest = int(batch[-1]["timestamp"])
            if newest < cursor or len(batch) < self._settings.page_limit:
                break
            cursor = newest + 1
            await asyncio.sleep(self._settings.fetch_batch_delay)
        return points

    # ──────────────────────────────────────────────
    # Retry wrapper
    # ──────────────────────────────────────────────

    async def _fetch_with_retry(self, fetch_fn: Callable, *args, **kwargs) -> list:
        """Execute a fetch function with exponential backoff retry.

        Delays are base * 2**attempt, tripled for ccxt rate-limit errors.
        Re-raises on final failure.
        """
        max_retries = self._settings.max_retries
        base_delay = self._settings.retry_base_delay

        for attempt in range(max_retries):
            try:
                return await fetch_fn(*args, **kwargs)
            except Exception as e:
                if attempt == max_retries - 1:
                    logger.error("fetch_failed_permanently", error=str(e), attempts=max_retries)
                    raise

                delay = base_delay * (2**attempt)
                if isinstance(e, ccxt.async_support.RateLimitExceeded):
                    delay *= 3
                    logger.warning(
                        "rate_limit_exceeded",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                    )
                else:
                    logger.warning(
                        "fetch_retry",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                await asyncio.sleep(delay)

        return []
