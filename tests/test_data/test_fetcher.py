"""Tests for HistoricalFetcher.

All tests use a mocked ccxt client to avoid real API calls.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from arbsim.config import DownloadSettings
from arbsim.data.fetcher import HistoricalFetcher, create_exchange, to_unified_symbol
from arbsim.data.models import PricePoint
from arbsim.data.store import TimeSeriesStore
from arbsim.exceptions import ConfigError

DAY_MS = 86_400_000


@pytest.fixture
def settings() -> DownloadSettings:
    return DownloadSettings(page_limit=2, max_retries=3, retry_base_delay=0.0, fetch_batch_delay=0.0)


def _client(candles: list[list], funding: list[dict]) -> MagicMock:
    client = MagicMock()
    client.fetch_ohlcv = AsyncMock(side_effect=_paged(candles, key=lambda c: c[0]))
    client.fetch_funding_rate_history = AsyncMock(
        side_effect=_paged(funding, key=lambda r: r["timestamp"])
    )
    client.close = AsyncMock()
    return client


def _paged(rows: list, key):
    """Serve rows like an exchange: those at or after `since`, up to `limit`."""

    async def fetch(symbol, timeframe=None, since=0, limit=500):
        return [r for r in rows if key(r) >= since][:limit]

    return fetch


class TestUnifiedSymbol:
    """Exchange-native symbols map to ccxt's unified swap form."""

    def test_binance(self) -> None:
        assert to_unified_symbol("binance", "TRXUSDT") == "TRX/USDT:USDT"

    def test_okx(self) -> None:
        assert to_unified_symbol("okx", "TRX-USDT-SWAP") == "TRX/USDT:USDT"

    def test_already_unified(self) -> None:
        assert to_unified_symbol("bybit", "BTC/USDT:USDT") == "BTC/USDT:USDT"

    def test_unparseable_symbol(self) -> None:
        with pytest.raises(ConfigError, match="legs.symbol"):
            to_unified_symbol("binance", "TRXEUR")

    def test_unknown_exchange(self) -> None:
        with pytest.raises(ConfigError, match="legs.exchange"):
            create_exchange("not_an_exchange")


class TestDownloadLeg:
    """download_leg pages forward and merges into the store."""

    @pytest.mark.asyncio
    async def test_paginates_and_merges(
        self, store: TimeSeriesStore, settings: DownloadSettings
    ) -> None:
        candles = [[t, 0, 0, 0, 0.3 + t / 1_000_000, 0] for t in (0, 60000, 120000)]
        funding = [{"timestamp": 0, "fundingRate": 0.0001}]
        client = _client(candles, funding)
        fetcher = HistoricalFetcher(store, settings, exchange_factory=lambda _: client)

        added = await fetcher.download_leg("binance", "TRXUSDT", since_ms=0)

        assert added == (3, 1)
        prices = store.load_prices("binance", "TRXUSDT")
        assert [p.timestamp for p in prices] == [0, 60000, 120000]
        assert client.fetch_ohlcv.await_count == 2
        assert client.fetch_ohlcv.await_args_list[0].args == ("TRX/USDT:USDT",)
        assert store.load_funding("binance", "TRXUSDT")[0].rate == Decimal("0.0001")

    @pytest.mark.asyncio
    async def test_resumes_after_newest_stored(
        self, store: TimeSeriesStore, settings: DownloadSettings
    ) -> None:
        store.save_prices("okx", "TRX-USDT-SWAP", [PricePoint(60000, Decimal("0.3"))])
        client = _client([[60000, 0, 0, 0, 0.3, 0], [120000, 0, 0, 0, 0.31, 0]], [])
        fetcher = HistoricalFetcher(store, settings, exchange_factory=lambda _: client)

        added = await fetcher.download_leg("okx", "TRX-USDT-SWAP", since_ms=0)

        assert added == (1, 0)
        assert client.fetch_ohlcv.await_args_list[0].kwargs["since"] == 60001

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(
        self, store: TimeSeriesStore, settings: DownloadSettings
    ) -> None:
        client = _client([], [])
        client.fetch_ohlcv = AsyncMock(
            side_effect=[RuntimeError("boom"), [[0, 0, 0, 0, 0.3, 0]]]
        )
        fetcher = HistoricalFetcher(store, settings, exchange_factory=lambda _: client)

        added = await fetcher.download_leg("binance", "TRXUSDT", since_ms=0)

        assert added == (1, 0)
        assert client.fetch_ohlcv.await_count == 2

    @pytest.mark.asyncio
    async def test_raises_after_max_retries(
        self, store: TimeSeriesStore, settings: DownloadSettings
    ) -> None:
        client = _client([], [])
        client.fetch_ohlcv = AsyncMock(side_effect=RuntimeError("down"))
        fetcher = HistoricalFetcher(store, settings, exchange_factory=lambda _: client)

        with pytest.raises(RuntimeError, match="down"):
            await fetcher.download_leg("binance", "TRXUSDT", since_ms=0)
        assert client.fetch_ohlcv.await_count == 3
        assert store.load_prices("binance", "TRXUSDT") == []


class TestDownloadLegs:
    """download_legs and close manage one client per exchange."""

    @pytest.mark.asyncio
    async def test_downloads_each_leg_and_closes(
        self, store: TimeSeriesStore, settings: DownloadSettings
    ) -> None:
        now_ms = 10 * DAY_MS
        stale, recent = now_ms - 2 * DAY_MS, now_ms - 60_000
        clients = {
            "binance": _client([[stale, 0, 0, 0, 0.29, 0], [recent, 0, 0, 0, 0.3, 0]], []),
            "okx": _client([[recent, 0, 0, 0, 0.301, 0]], []),
        }
        fetcher = HistoricalFetcher(
            store, settings, exchange_factory=clients.__getitem__, time_fn=lambda: now_ms / 1000
        )

        results = await fetcher.download_legs(
            [("binance", "TRXUSDT"), ("okx", "TRX-USDT-SWAP")], days=1
        )
        await fetcher.close()

        assert results == {"binance_TRXUSDT": (1, 0), "okx_TRX-USDT-SWAP": (1, 0)}
        clients["binance"].close.assert_awaited_once()
        clients["okx"].close.assert_awaited_once()
        assert [p.timestamp for p in store.load_prices("binance", "TRXUSDT")] == [recent]
        assert clients["binance"].fetch_ohlcv.await_args_list[0].kwargs["since"] == now_ms - DAY_MS
