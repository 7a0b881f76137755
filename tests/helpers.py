"""Builders shared by test modules (not fixtures)."""

from decimal import Decimal
from typing import Any

from arbsim.data.models import FundingPoint, PricePoint
from arbsim.data.store import TimeSeriesStore

MINUTE = 60_000
HOUR = 3_600_000
EIGHT_HOURS = 8 * HOUR


def hedge_config(**signal: Any) -> dict[str, Any]:
    """Binance TRXUSDT (legA) against OKX TRX-USDT-SWAP (legB, 1000 TRX contracts)."""
    return {
        "hedge_name": "trx_binance_okx",
        "enabled": True,
        "legs": [
            {
                "role": "legA",
                "exchange": "binance",
                "symbol": "TRXUSDT",
                "contract_profile": {"contract_size": 1},
            },
            {
                "role": "legB",
                "exchange": "okx",
                "symbol": "TRX-USDT-SWAP",
                "contract_profile": {"contract_size": 1000},
            },
        ],
        "alignment": {"time_source": "legA", "tolerance_ms": 2000},
        "signal": {
            "spread_pct_thresholds": {"open": "0.005", "close": "0.001"},
            **signal,
        },
    }


def seed_spreads(
    store: TimeSeriesStore, spreads: list[str], base_price: str = "0.3", step: int = MINUTE
) -> None:
    """Write legA/legB minute series whose spread (a - b) / b follows `spreads`."""
    base = Decimal(base_price)
    leg_a = [
        PricePoint(timestamp=i * step, price=base * (1 + Decimal(s)))
        for i, s in enumerate(spreads)
    ]
    leg_b = [PricePoint(timestamp=i * step, price=base) for i in range(len(spreads))]
    store.save_prices("binance", "TRXUSDT", leg_a)
    store.save_prices("okx", "TRX-USDT-SWAP", leg_b)


def seed_funding(
    store: TimeSeriesStore, rates_a: list[str], rates_b: list[str], step: int = EIGHT_HOURS
) -> None:
    """Write funding series for both legs at step-spaced settlements from 0."""
    store.save_funding(
        "binance",
        "TRXUSDT",
        [FundingPoint(timestamp=i * step, rate=Decimal(r)) for i, r in enumerate(rates_a)],
    )
    store.save_funding(
        "okx",
        "TRX-USDT-SWAP",
        [FundingPoint(timestamp=i * step, rate=Decimal(r)) for i, r in enumerate(rates_b)],
    )
