"""Funding settlement engine: incremental funding-carry replay.

Merges both legs' funding updates newer than the checkpoint into one
timeline. At each event the last known rate of each leg is annualized and
the spread A - B drives an OPEN/CLOSE machine:

- While a position is open, every leg that just updated accrues
  qty * contract_size * approx_price * rate, credited to the short leg and
  debited from the long leg.
- IDLE and |spread| >= open: open, selling the higher-annualized leg.
- Open and |spread| < close: close, carrying the accumulated income as pnl.
- Otherwise, if the round's income is non-zero, a SETTLE event is recorded.

Each leg's settlement interval is detected once and pinned in the
checkpoint. Until both legs have two points nothing is processed.

The checkpoint advances after every event, so any split of the event
sequence into resumed runs produces the same checkpoint and events.

CRITICAL: All arithmetic is Decimal.
"""

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import ROUND_FLOOR, Decimal
from pathlib import Path

from arbsim.data.models import FundingPoint
from arbsim.data.store import TimeSeriesStore
from arbsim.funding.checkpoint import CheckpointStore
from arbsim.funding.models import ActivePosition, Checkpoint, FundingOutcome
from arbsim.funding.rates import annualize, detect_interval_hours
from arbsim.logging import get_logger
from arbsim.models import (
    IncomeRecord,
    OrderIntent,
    Side,
    Signal,
    SignalLeg,
    SignalType,
    Strategy,
    Veracity,
)
from arbsim.profiles import LegConfig, StrategyProfile
from arbsim.signals.history import SignalHistory

logger = get_logger(__name__)


@dataclass(frozen=True)
class FundingLeg:
    """Sizing for one leg of the funding position."""

    exchange: str
    symbol: str
    quantity: Decimal
    contract_size: Decimal


def contract_quantity(position_size: Decimal, approx_price: Decimal, contract_size: Decimal) -> Decimal:
    """Whole contracts for a notional: floor((size / price) / contract_size)."""
    return ((position_size / approx_price) / contract_size).to_integral_value(rounding=ROUND_FLOOR)


def _last_rate_at_or_before(points: Sequence[FundingPoint], timestamp: int) -> Decimal | None:
    rate = None
    for point in points:
        if point.timestamp > timestamp:
            break
        rate = point.rate
    return rate


class FundingSettlementEngine:
    """Pure funding-carry state machine over two funding series.

    Args:
        profile: Resolved strategy; uses params.funding and both legs.
    """

    def __init__(self, profile: StrategyProfile) -> None:
        params = profile.params.funding
        self.open_threshold = params.open_threshold_annualized_pct
        self.close_threshold = params.close_threshold_annualized_pct
        self.approx_price = params.approx_price
        self.leg_a = self._leg(profile, profile.hedge.leg_a)
        self.leg_b = self._leg(profile, profile.hedge.leg_b)

    def _leg(self, profile: StrategyProfile, leg: LegConfig) -> FundingLeg:
        params = profile.params.funding
        contract_size = profile.contract_size(leg.role)
        return FundingLeg(
            exchange=leg.exchange,
            symbol=leg.symbol,
            quantity=contract_quantity(params.position_size_usdt, params.approx_price, contract_size),
            contract_size=contract_size,
        )

    def _income(self, leg: FundingLeg, rate: Decimal, side: Side) -> Decimal:
        sign = 1 if side is Side.SELL else -1
        return leg.quantity * leg.contract_size * self.approx_price * rate * sign

    def process(
        self,
        series_a: Sequence[FundingPoint],
        series_b: Sequence[FundingPoint],
        checkpoint: Checkpoint,
        skip_before: int = 0,
        veracity: Veracity = Veracity.REAL,
    ) -> FundingOutcome:
        """Process every event newer than the checkpoint.

        Args:
            series_a: Full legA funding series, ascending.
            series_b: Full legB funding series, ascending.
            checkpoint: State from the previous run.
            skip_before: Orders and income injections are only produced for
                events at or after this timestamp.
            veracity: Tag for emitted events and session ids.

        Returns:
            The advanced checkpoint, events and side-effect intents.
        """
        interval_a = checkpoint.interval_hours_a or detect_interval_hours(series_a, default=None)
        interval_b = checkpoint.interval_hours_b or detect_interval_hours(series_b, default=None)
        if interval_a is None or interval_b is None:
            logger.info(
                "funding_interval_pending",
                points_a=len(series_a),
                points_b=len(series_b),
            )
            return FundingOutcome(checkpoint=checkpoint)
        since = checkpoint.last_processed_timestamp

        timeline: dict[int, dict[str, Decimal]] = {}
        for point in series_a:
            if point.timestamp > since:
                timeline.setdefault(point.timestamp, {})["a"] = point.rate
        for point in series_b:
            if point.timestamp > since:
                timeline.setdefault(point.timestamp, {})["b"] = point.rate

        rate_a = _last_rate_at_or_before(series_a, since)
        rate_b = _last_rate_at_or_before(series_b, since)
        position = checkpoint.active_position
        total_income = checkpoint.total_income
        last_ts = since
        outcome = FundingOutcome(checkpoint=checkpoint)

        for ts in sorted(timeline):
            updates = timeline[ts]
            last_ts = ts
            if "a" in updates:
                rate_a = updates["a"]
            if "b" in updates:
                rate_b = updates["b"]
            if rate_a is None or rate_b is None:
                continue

            ann_a = annualize(rate_a, interval_a)
            ann_b = annualize(rate_b, interval_b)
            spread = ann_a - ann_b
            live = ts >= skip_before

            income_round = Decimal("0")
            if position is not None:
                for key, leg, rate, side in (
                    ("a", self.leg_a, rate_a, position.side_leg_a),
                    ("b", self.leg_b, rate_b, position.side_leg_b),
                ):
                    if key not in updates:
                        continue
                    income = self._income(leg, rate, side)
                    income_round += income
                    if live:
                        outcome.incomes.append(
                            IncomeRecord(
                                symbol=leg.symbol,
                                amount=income,
                                timestamp=ts,
                                info=f"Funding Fee | Session: {position.session_id}",
                                exchange=leg.exchange,
                            )
                        )
                position = replace(
                    position, accumulated_income=position.accumulated_income + income_round
                )
                total_income += income_round

            if position is None:
                if abs(spread) >= self.open_threshold:
                    position = self._open(ts, ann_a, ann_b, spread, veracity, live, outcome)
            elif abs(spread) < self.close_threshold:
                self._close(ts, position, spread, veracity, live, outcome)
                position = None
            elif income_round != 0:
                outcome.events.append(
                    self._signal(
                        ts,
                        SignalType.SETTLE,
                        position.session_id,
                        "",
                        spread,
                        veracity,
                        extra={"income": income_round},
                    )
                )

        outcome.checkpoint = Checkpoint(
            last_processed_timestamp=last_ts,
            active_position=position,
            total_income=total_income,
            interval_hours_a=interval_a,
            interval_hours_b=interval_b,
        )
        return outcome

    # ──────────────────────────────────────────────
    # Transitions
    # ──────────────────────────────────────────────

    def _open(
        self,
        ts: int,
        ann_a: Decimal,
        ann_b: Decimal,
        spread: Decimal,
        veracity: Veracity,
        live: bool,
        outcome: FundingOutcome,
    ) -> ActivePosition:
        sell_a = ann_a > ann_b
        side_a, side_b = (Side.SELL, Side.BUY) if sell_a else (Side.BUY, Side.SELL)
        action = "SELL_A_BUY_B" if sell_a else "BUY_A_SELL_B"
        session_id = f"ARB_{veracity.value}_{ts}"
        position = ActivePosition(
            session_id=session_id, entry_timestamp=ts, side_leg_a=side_a, side_leg_b=side_b
        )
        outcome.events.append(
            self._signal(ts, SignalType.OPEN, session_id, action, spread, veracity, (side_a, side_b))
        )
        logger.info(
            "funding_open",
            session_id=session_id,
            timestamp=ts,
            spread_annualized=str(spread),
            action=action,
            live=live,
        )
        if live:
            outcome.orders.extend(self._orders(ts, session_id, side_a, side_b, "open"))
        return position

    def _close(
        self,
        ts: int,
        position: ActivePosition,
        spread: Decimal,
        veracity: Veracity,
        live: bool,
        outcome: FundingOutcome,
    ) -> None:
        outcome.events.append(
            self._signal(
                ts,
                SignalType.CLOSE,
                position.session_id,
                "",
                spread,
                veracity,
                pnl=position.accumulated_income,
            )
        )
        logger.info(
            "funding_close",
            session_id=position.session_id,
            timestamp=ts,
            pnl=str(position.accumulated_income),
            live=live,
        )
        if live:
            outcome.orders.extend(
                self._orders(
                    ts,
                    position.session_id,
                    position.side_leg_a.reverse(),
                    position.side_leg_b.reverse(),
                    "close",
                )
            )

    def _orders(
        self, ts: int, session_id: str, side_a: Side, side_b: Side, phase: str
    ) -> list[OrderIntent]:
        return [
            OrderIntent(
                exchange=leg.exchange,
                symbol=leg.symbol,
                side=side,
                quantity=leg.quantity,
                price=self.approx_price,
                client_order_id=f"{session_id}_{phase}_{suffix}",
                timestamp=ts,
            )
            for leg, side, suffix in ((self.leg_a, side_a, "A"), (self.leg_b, side_b, "B"))
        ]

    def _signal(
        self,
        ts: int,
        kind: SignalType,
        session_id: str,
        action: str,
        spread: Decimal,
        veracity: Veracity,
        sides: tuple[Side, Side] | None = None,
        pnl: Decimal | None = None,
        extra: dict[str, Decimal] | None = None,
    ) -> Signal:
        side_a, side_b = sides if sides is not None else (None, None)
        metrics = {"spreadAnnualizedPct": spread}
        metrics.update(extra or {})
        return Signal(
            strategy=Strategy.FUNDING,
            id=f"fund_{ts}_{kind.value.lower()}",
            timestamp=ts,
            type=kind,
            session_id=session_id,
            action=action,
            legs=(
                SignalLeg(self.leg_a.exchange, self.approx_price, side_a, self.leg_a.symbol),
                SignalLeg(self.leg_b.exchange, self.approx_price, side_b, self.leg_b.symbol),
            ),
            metrics=metrics,
            status="paper",
            veracity=veracity,
            pnl=pnl,
        )


class FundingRun:
    """Runs the engine against files: series, checkpoint and shared history.

    Side effects (orders, income) are returned, not dispatched.
    """

    def __init__(
        self,
        engine: FundingSettlementEngine,
        checkpoints: CheckpointStore,
        history: SignalHistory,
    ) -> None:
        self._engine = engine
        self._checkpoints = checkpoints
        self._history = history

    @classmethod
    def for_profile(cls, profile: StrategyProfile, signals_dir: Path, history: SignalHistory) -> "FundingRun":
        return cls(
            FundingSettlementEngine(profile),
            CheckpointStore(signals_dir, profile.hedge.leg_a.symbol),
            history,
        )

    def run(
        self,
        store: TimeSeriesStore,
        skip_before: int = 0,
        reset: bool = False,
        veracity: Veracity = Veracity.REAL,
    ) -> FundingOutcome:
        """Load, process, persist.

        History is written before the checkpoint, so a crash between the two
        only causes already-deduplicated events to be recomputed.

        Raises:
            DataGapError: If either funding series is missing or empty. The
                checkpoint and history are left untouched.
        """
        leg_a, leg_b = self._engine.leg_a, self._engine.leg_b
        series_a = store.load_funding(leg_a.exchange, leg_a.symbol, required=True)
        series_b = store.load_funding(leg_b.exchange, leg_b.symbol, required=True)

        if reset:
            self._checkpoints.delete()
            dropped = self._history.drop(lambda s: s.strategy is Strategy.FUNDING)
            logger.info("funding_state_reset", dropped_signals=dropped)

        checkpoint = self._checkpoints.load()
        outcome = self._engine.process(
            series_a, series_b, checkpoint, skip_before=skip_before, veracity=veracity
        )
        outcome.appended = self._history.append(outcome.events)
        self._checkpoints.save(outcome.checkpoint)
        logger.info(
            "funding_run_complete",
            since=checkpoint.last_processed_timestamp,
            until=outcome.checkpoint.last_processed_timestamp,
            events=len(outcome.events),
            orders=len(outcome.orders),
            incomes=len(outcome.incomes),
            total_income=str(outcome.checkpoint.total_income),
        )
        return outcome
