"""Tests for the funding settlement engine.

Scenario used throughout (8h settlements, default params):
  legA rates: 0.0001, 0.0002, 0.0002, 0.0001
  legB rates: 0.0001, 0.0001, 0.0001, 0.0001
Annualized (x1095): spread 0, 0.1095, 0.1095, 0 -> OPEN at 8h, SETTLE at
16h, CLOSE at 24h.

Sizing: qty_a = floor(10000 / 0.3 / 1) = 33333, qty_b = floor(33333.3 / 1000) = 33.
"""

from decimal import Decimal
from pathlib import Path

import pytest

from arbsim.data.models import FundingPoint
from arbsim.data.store import TimeSeriesStore
from arbsim.exceptions import DataGapError
from arbsim.funding.checkpoint import CheckpointStore
from arbsim.funding.engine import FundingRun, FundingSettlementEngine, contract_quantity
from arbsim.funding.models import Checkpoint
from arbsim.funding.rates import FundingRateLookup, annualize, detect_interval_hours
from arbsim.models import Side, SignalType, Strategy, Veracity
from arbsim.profiles import StrategyProfile
from arbsim.signals.history import SignalHistory

from helpers import EIGHT_HOURS, HOUR, seed_funding

RATES_A = ["0.0001", "0.0002", "0.0002", "0.0001"]
RATES_B = ["0.0001", "0.0001", "0.0001", "0.0001"]


def _series(rates: list[str], step: int = EIGHT_HOURS) -> list[FundingPoint]:
    return [FundingPoint(timestamp=i * step, rate=Decimal(r)) for i, r in enumerate(rates)]


@pytest.fixture
def engine(profile: StrategyProfile) -> FundingSettlementEngine:
    return FundingSettlementEngine(profile)


class TestRates:
    def test_annualize_8h(self) -> None:
        assert annualize(Decimal("0.0001"), 8) == Decimal("0.1095")

    def test_annualize_1h(self) -> None:
        assert annualize(Decimal("0.0001"), 1) == Decimal("0.876")

    def test_detect_interval(self) -> None:
        assert detect_interval_hours(_series(["0"] * 4, step=HOUR)) == 1
        assert detect_interval_hours(_series(["0"] * 4, step=4 * HOUR)) == 4

    def test_detect_interval_falls_back_to_8h(self) -> None:
        assert detect_interval_hours(_series(["0"])) == 8
        assert detect_interval_hours(_series(["0", "0"], step=60_000)) == 8

    def test_lookup(self) -> None:
        lookup = FundingRateLookup(_series(["0.1", "0.2"]))
        assert lookup.rate_at(-5) == Decimal("0.1")
        assert lookup.rate_at(EIGHT_HOURS - 1) == Decimal("0.1")
        assert lookup.rate_at(EIGHT_HOURS) == Decimal("0.2")
        assert FundingRateLookup([]).rate_at(0) == Decimal("0")

    def test_contract_quantity_floors(self) -> None:
        assert contract_quantity(Decimal("10000"), Decimal("0.3"), Decimal("1")) == 33333
        assert contract_quantity(Decimal("10000"), Decimal("0.3"), Decimal("1000")) == 33


class TestProcess:
    """One full open/settle/close cycle."""

    def test_lifecycle(self, engine: FundingSettlementEngine) -> None:
        outcome = engine.process(_series(RATES_A), _series(RATES_B), Checkpoint())

        assert [(e.type, e.timestamp) for e in outcome.events] == [
            (SignalType.OPEN, EIGHT_HOURS),
            (SignalType.SETTLE, 2 * EIGHT_HOURS),
            (SignalType.CLOSE, 3 * EIGHT_HOURS),
        ]
        open_, settle, close = outcome.events
        assert open_.strategy is Strategy.FUNDING
        assert open_.session_id == "ARB_REAL_28800000"
        assert open_.action == "SELL_A_BUY_B"
        assert open_.leg_sides() == (Side.SELL, Side.BUY)
        assert settle.metrics["income"] == Decimal("1.00998")
        assert close.pnl == Decimal("1.01997")
        assert outcome.checkpoint == Checkpoint(
            last_processed_timestamp=3 * EIGHT_HOURS,
            active_position=None,
            total_income=Decimal("1.01997"),
            interval_hours_a=8,
            interval_hours_b=8,
        )

    def test_income_records(self, engine: FundingSettlementEngine) -> None:
        outcome = engine.process(_series(RATES_A), _series(RATES_B), Checkpoint())

        amounts = [(i.symbol, i.amount) for i in outcome.incomes]
        assert amounts == [
            ("TRXUSDT", Decimal("1.99998")),
            ("TRX-USDT-SWAP", Decimal("-0.99")),
            ("TRXUSDT", Decimal("0.99999")),
            ("TRX-USDT-SWAP", Decimal("-0.99")),
        ]
        assert outcome.incomes[0].info == "Funding Fee | Session: ARB_REAL_28800000"
        assert outcome.incomes[0].income_type == "FUNDING_FEE"

    def test_orders(self, engine: FundingSettlementEngine) -> None:
        outcome = engine.process(_series(RATES_A), _series(RATES_B), Checkpoint())

        assert [(o.symbol, o.side, o.quantity) for o in outcome.orders] == [
            ("TRXUSDT", Side.SELL, Decimal("33333")),
            ("TRX-USDT-SWAP", Side.BUY, Decimal("33")),
            ("TRXUSDT", Side.BUY, Decimal("33333")),
            ("TRX-USDT-SWAP", Side.SELL, Decimal("33")),
        ]
        assert outcome.orders[0].client_order_id == "ARB_REAL_28800000_open_A"
        assert outcome.orders[3].client_order_id == "ARB_REAL_28800000_close_B"

    def test_higher_leg_b_sells_b(self, engine: FundingSettlementEngine) -> None:
        outcome = engine.process(_series(RATES_B), _series(RATES_A), Checkpoint())
        assert outcome.events[0].action == "BUY_A_SELL_B"

    def test_skip_before_suppresses_side_effects_only(
        self, engine: FundingSettlementEngine
    ) -> None:
        outcome = engine.process(
            _series(RATES_A), _series(RATES_B), Checkpoint(), skip_before=2 * EIGHT_HOURS + 1
        )
        assert len(outcome.events) == 3
        # only the CLOSE round is live: its two incomes and two orders
        assert [i.timestamp for i in outcome.incomes] == [3 * EIGHT_HOURS] * 2
        assert [o.client_order_id for o in outcome.orders] == [
            "ARB_REAL_28800000_close_A",
            "ARB_REAL_28800000_close_B",
        ]

    def test_fake_veracity_session_id(self, engine: FundingSettlementEngine) -> None:
        outcome = engine.process(
            _series(RATES_A), _series(RATES_B), Checkpoint(), veracity=Veracity.FAKE
        )
        assert outcome.events[0].session_id == "ARB_FAKE_28800000"
        assert outcome.events[0].veracity is Veracity.FAKE

    def test_nothing_new_keeps_checkpoint(self, engine: FundingSettlementEngine) -> None:
        checkpoint = Checkpoint(last_processed_timestamp=10 * EIGHT_HOURS)
        outcome = engine.process(_series(RATES_A), _series(RATES_B), checkpoint)
        assert outcome.events == []
        assert outcome.checkpoint.last_processed_timestamp == 10 * EIGHT_HOURS
        assert outcome.checkpoint.total_income == Decimal("0")

    def test_zero_income_round_is_not_a_settlement(self, engine: FundingSettlementEngine) -> None:
        # legB alone updates to 0 at 12h: nothing accrues, the position stays open
        series_b = sorted(
            _series(RATES_B) + [FundingPoint(timestamp=12 * HOUR, rate=Decimal("0"))],
            key=lambda p: p.timestamp,
        )
        pinned = Checkpoint(interval_hours_a=8, interval_hours_b=8)

        outcome = engine.process(_series(RATES_A), series_b, pinned)

        assert [(e.type, e.timestamp) for e in outcome.events] == [
            (SignalType.OPEN, EIGHT_HOURS),
            (SignalType.SETTLE, 2 * EIGHT_HOURS),
            (SignalType.CLOSE, 3 * EIGHT_HOURS),
        ]


class TestSplitInvariance:
    """Any split into resumed runs gives the same events and checkpoint."""

    @pytest.mark.parametrize("split", [1, 2, 3])
    def test_split(self, engine: FundingSettlementEngine, split: int) -> None:
        series_a, series_b = _series(RATES_A), _series(RATES_B)
        single = engine.process(series_a, series_b, Checkpoint())

        first = engine.process(series_a[:split], series_b[:split], Checkpoint())
        second = engine.process(series_a, series_b, first.checkpoint)

        assert first.events + second.events == single.events
        assert first.incomes + second.incomes == single.incomes
        assert second.checkpoint == single.checkpoint

    @pytest.mark.parametrize("split", [1, 2, 3])
    def test_split_on_four_hour_series(self, engine: FundingSettlementEngine, split: int) -> None:
        series_a, series_b = _series(RATES_A, step=4 * HOUR), _series(RATES_B, step=4 * HOUR)
        single = engine.process(series_a, series_b, Checkpoint())

        first = engine.process(series_a[:split], series_b[:split], Checkpoint())
        second = engine.process(series_a, series_b, first.checkpoint)

        assert [(e.type, e.timestamp) for e in single.events] == [
            (SignalType.OPEN, 4 * HOUR),
            (SignalType.SETTLE, 8 * HOUR),
            (SignalType.CLOSE, 12 * HOUR),
        ]
        assert first.events + second.events == single.events
        assert first.incomes + second.incomes == single.incomes
        assert second.checkpoint == single.checkpoint
        assert second.checkpoint.interval_hours_a == 4

    def test_single_point_defers_processing(self, engine: FundingSettlementEngine) -> None:
        outcome = engine.process(_series(RATES_A)[:1], _series(RATES_B)[:1], Checkpoint())
        assert outcome.events == []
        assert outcome.checkpoint == Checkpoint()

    def test_checkpoint_survives_disk(
        self, engine: FundingSettlementEngine, tmp_path: Path
    ) -> None:
        store = CheckpointStore(tmp_path, "TRXUSDT")
        first = engine.process(_series(RATES_A)[:3], _series(RATES_B)[:3], Checkpoint())
        store.save(first.checkpoint)

        reloaded = store.load()
        assert reloaded == first.checkpoint
        assert reloaded.active_position.side_leg_a is Side.SELL


class TestFundingRun:
    """File-backed runs: series, checkpoint and shared history."""

    def test_run_persists_history_and_checkpoint(
        self,
        store: TimeSeriesStore,
        profile: StrategyProfile,
        history: SignalHistory,
        signals_dir: Path,
    ) -> None:
        seed_funding(store, RATES_A, RATES_B)
        run = FundingRun.for_profile(profile, signals_dir, history)

        outcome = run.run(store)

        assert len(outcome.appended) == 3
        assert (signals_dir / "strategy_checkpoint_TRXUSDT.json").exists()
        again = run.run(store)
        assert again.events == []
        assert again.orders == []

    def test_reset_replays_from_scratch(
        self,
        store: TimeSeriesStore,
        profile: StrategyProfile,
        history: SignalHistory,
        signals_dir: Path,
    ) -> None:
        seed_funding(store, RATES_A, RATES_B)
        run = FundingRun.for_profile(profile, signals_dir, history)
        run.run(store)

        outcome = run.run(store, reset=True)

        assert len(outcome.events) == 3
        assert len(outcome.appended) == 3
        funding = [s for s in history.load() if s.strategy is Strategy.FUNDING]
        assert len(funding) == 3

    def test_missing_series_leaves_state_untouched(
        self,
        store: TimeSeriesStore,
        profile: StrategyProfile,
        history: SignalHistory,
        signals_dir: Path,
    ) -> None:
        store.save_funding("binance", "TRXUSDT", _series(RATES_A))
        run = FundingRun.for_profile(profile, signals_dir, history)

        with pytest.raises(DataGapError):
            run.run(store, reset=True)
        assert not (signals_dir / "strategy_checkpoint_TRXUSDT.json").exists()
        assert not history.history_path.exists()
