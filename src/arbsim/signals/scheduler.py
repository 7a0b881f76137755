"""Spread signal scheduler: replays two price legs through the state machine.

Iterates the time-source leg's ticks, pairs each with the nearest tick on
the other leg within tolerance, computes spread = (priceA - priceB) / priceB
and emits HEDGE OPEN/CLOSE signals on threshold crossings.

Runs are incremental: the machine resumes from the last HEDGE signal in the
shared history and only ticks strictly newer than it are replayed. Together
with history deduplication this makes overlapping lookback windows safe.

CRITICAL: Prices and spreads are Decimal.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from arbsim.data.models import PricePoint
from arbsim.data.store import TimeSeriesStore
from arbsim.logging import get_logger
from arbsim.models import Side, Signal, SignalLeg, SignalType, Strategy, Veracity
from arbsim.profiles import StrategyProfile
from arbsim.signals.alignment import nearest_within
from arbsim.signals.history import SignalHistory, last_signal
from arbsim.signals.state_machine import SpreadState, SpreadStateMachine, Transition

logger = get_logger(__name__)


@dataclass
class ScheduleResult:
    """What one scheduler run did."""

    processed: int = 0
    aligned: int = 0
    emitted: list[Signal] = field(default_factory=list)
    appended: list[Signal] = field(default_factory=list)


def lookback_start(
    series_a: Sequence[PricePoint], series_b: Sequence[PricePoint], lookback_minutes: int | None
) -> int | None:
    """First timestamp inside the lookback window, measured from the newest tick."""
    if lookback_minutes is None:
        return None
    latest = max(
        series_a[-1].timestamp if series_a else 0,
        series_b[-1].timestamp if series_b else 0,
    )
    return latest - lookback_minutes * 60_000


class SignalScheduler:
    """Generates HEDGE signals for one strategy profile.

    Args:
        profile: Resolved strategy (legs, alignment, thresholds, cooldown).
        history: Shared signal history.
    """

    def __init__(self, profile: StrategyProfile, history: SignalHistory) -> None:
        self._profile = profile
        self._history = history

    def _machine(self, resume_from: Signal | None) -> SpreadStateMachine:
        profile = self._profile
        state, session_id, last_close = SpreadState.IDLE, None, None
        if resume_from is not None:
            if resume_from.type is SignalType.OPEN:
                state, session_id = SpreadState.HOLDING, resume_from.session_id
            else:
                last_close = resume_from.timestamp
        return SpreadStateMachine(
            open_threshold=profile.open_threshold,
            close_threshold=profile.close_threshold,
            cooldown_ms=profile.cooldown_ms,
            state=state,
            session_id=session_id,
            last_close_ts=last_close,
        )

    def generate(
        self,
        series_a: Sequence[PricePoint],
        series_b: Sequence[PricePoint],
        skip_before: int = 0,
        lookback_minutes: int | None = None,
        resume_from: Signal | None = None,
        veracity: Veracity = Veracity.REAL,
        result: ScheduleResult | None = None,
    ) -> list[Signal]:
        """Replay both legs and return the signals emitted, in time order.

        Pure: reads nothing from disk and writes nothing.

        Args:
            series_a: legA prices, ascending.
            series_b: legB prices, ascending.
            skip_before: Ticks earlier than this are ignored.
            lookback_minutes: Only time-source ticks this recent are iterated.
                The other leg is always searched in full.
            resume_from: Last HEDGE signal of a previous run, if any.
            veracity: Tag for emitted signals.
            result: Optional accumulator for counters.
        """
        hedge = self._profile.hedge
        tolerance = hedge.alignment.tolerance_ms
        source_is_a = hedge.alignment.time_source == "legA"
        source, target = (series_a, series_b) if source_is_a else (series_b, series_a)
        target_ts = [p.timestamp for p in target]

        start = lookback_start(series_a, series_b, lookback_minutes)
        resume_ts = resume_from.timestamp if resume_from is not None else None
        machine = self._machine(resume_from)
        stats = result if result is not None else ScheduleResult()

        signals: list[Signal] = []
        for tick in source:
            ts = tick.timestamp
            if start is not None and ts < start:
                continue
            if ts < skip_before:
                continue
            if resume_ts is not None and ts <= resume_ts:
                continue
            stats.processed += 1

            idx = nearest_within(target_ts, ts, tolerance)
            if idx is None:
                continue
            stats.aligned += 1

            match = target[idx]
            price_a, price_b = (tick.price, match.price) if source_is_a else (match.price, tick.price)
            if price_b == 0:
                continue
            spread = (price_a - price_b) / price_b

            transition = machine.step(ts, spread)
            if transition is None:
                continue
            signal = self._build_signal(transition, price_a, price_b, veracity)
            signals.append(signal)
            logger.info(
                "hedge_signal",
                type=signal.type.value,
                session_id=signal.session_id,
                timestamp=ts,
                spread_pct=str(spread),
                action=signal.action,
            )

        stats.emitted.extend(signals)
        return signals

    def _build_signal(
        self, transition: Transition, price_a: Decimal, price_b: Decimal, veracity: Veracity
    ) -> Signal:
        hedge = self._profile.hedge
        leg_a, leg_b = hedge.leg_a, hedge.leg_b
        ts = transition.timestamp
        ex_a, ex_b = leg_a.exchange.upper(), leg_b.exchange.upper()

        if transition.type is SignalType.OPEN:
            if transition.spread > 0:
                side_a, side_b = Side.SELL, Side.BUY
                action = f"SELL_{ex_a}_BUY_{ex_b}"
            else:
                side_a, side_b = Side.BUY, Side.SELL
                action = f"BUY_{ex_a}_SELL_{ex_b}"
            legs = (
                SignalLeg(leg_a.exchange, price_a, side_a, leg_a.symbol),
                SignalLeg(leg_b.exchange, price_b, side_b, leg_b.symbol),
            )
            suffix = "open"
        else:
            action = ""
            legs = (
                SignalLeg(leg_a.exchange, price_a, symbol=leg_a.symbol),
                SignalLeg(leg_b.exchange, price_b, symbol=leg_b.symbol),
            )
            suffix = "close"

        return Signal(
            strategy=Strategy.HEDGE,
            id=f"sig_{ts}_{suffix}",
            timestamp=ts,
            type=transition.type,
            session_id=transition.session_id,
            action=action,
            legs=legs,
            metrics={"spreadPct": transition.spread},
            status="paper",
            veracity=veracity,
        )

    def run(
        self,
        store: TimeSeriesStore,
        skip_before: int = 0,
        lookback_minutes: int | None = None,
        veracity: Veracity = Veracity.REAL,
    ) -> ScheduleResult:
        """Load both legs, replay new ticks and persist the signals.

        Raises:
            DataGapError: If either price series is missing or empty. Nothing
                is written in that case.
        """
        hedge = self._profile.hedge
        series_a = store.load_prices(hedge.leg_a.exchange, hedge.leg_a.symbol, required=True)
        series_b = store.load_prices(hedge.leg_b.exchange, hedge.leg_b.symbol, required=True)

        history = self._history.load()
        resume_from = last_signal(history, Strategy.HEDGE)

        result = ScheduleResult()
        signals = self.generate(
            series_a,
            series_b,
            skip_before=skip_before,
            lookback_minutes=lookback_minutes,
            resume_from=resume_from,
            veracity=veracity,
            result=result,
        )
        result.appended = self._history.append(signals)
        logger.info(
            "schedule_complete",
            source=str(store.data_dir),
            processed=result.processed,
            aligned=result.aligned,
            emitted=len(result.emitted),
            appended=len(result.appended),
        )
        return result
