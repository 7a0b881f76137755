"""Signal translator: abstract signals to venue orders and settlements.

OPEN sizes each leg at notional / entry price, converts to venue units and
remembers the session. CLOSE first charges every funding settlement the
session crossed, then reverses both legs with the exact quantities it was
opened with, then forgets the session. SETTLE translates to nothing.

If a CLOSE arrives for a session this translator never saw (for instance
after a restart), quantities are recomputed from the close prices and no
settlements are produced. That fallback is lossy and logged.

CRITICAL: Quantities, prices and fees are Decimal.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from arbsim.context import EngineContext, SessionEntry
from arbsim.logging import get_logger
from arbsim.models import IncomeRecord, OrderIntent, Side, Signal, SignalType
from arbsim.profiles import LegConfig, StrategyProfile
from arbsim.translator.adapters import ExchangeAdapter, get_adapter
from arbsim.translator.settlement import PositionSide, funding_fee, settlement_boundaries

logger = get_logger(__name__)


class ItemKind(str, Enum):
    ORDER = "ORDER"
    INCOME = "INCOME"


@dataclass(frozen=True)
class TranslationItem:
    kind: ItemKind
    exchange: str
    data: OrderIntent | IncomeRecord


def parse_action(action: str, exchange_a: str, exchange_b: str) -> tuple[Side, Side] | None:
    """Leg sides from an action string.

    Reads (SIDE, LEG) token pairs such as SELL_BINANCE_BUY_OKX or
    BUY_A_SELL_B. A leg token is "A"/"B" or the leg's exchange name.
    """
    tokens = action.upper().split("_")
    names_a = {"A", exchange_a.upper()}
    names_b = {"B", exchange_b.upper()}
    side_a = side_b = None
    for side_token, leg_token in zip(tokens, tokens[1:]):
        if side_token not in ("BUY", "SELL"):
            continue
        side = Side(side_token)
        if leg_token in names_a and side_a is None:
            side_a = side
        elif leg_token in names_b and side_b is None:
            side_b = side
    if side_a is None or side_b is None:
        return None
    return side_a, side_b


class SignalTranslator:
    """Stateful translator for one strategy profile.

    Args:
        profile: Resolved strategy; legs, contracts, funding calendars and
            params.funding (position size, approximate price).
        context: Owns the session table and the funding-rate cache.

    Raises:
        ConfigError: If a leg's exchange has no adapter.
    """

    def __init__(self, profile: StrategyProfile, context: EngineContext) -> None:
        self._profile = profile
        self._context = context
        self._legs: tuple[LegConfig, LegConfig] = (profile.hedge.leg_a, profile.hedge.leg_b)
        self._adapters: tuple[ExchangeAdapter, ExchangeAdapter] = (
            get_adapter(self._legs[0].exchange),
            get_adapter(self._legs[1].exchange),
        )
        self.notional = profile.params.funding.position_size_usdt
        self.approx_price = profile.params.funding.approx_price

    @property
    def sessions(self) -> dict[str, SessionEntry]:
        return self._context.session_table

    def translate(self, signal: Signal) -> list[TranslationItem]:
        if signal.type is SignalType.SETTLE:
            return []
        if signal.type is SignalType.OPEN:
            return self._translate_open(signal)
        return self._translate_close(signal)

    # ──────────────────────────────────────────────
    # OPEN / CLOSE
    # ──────────────────────────────────────────────

    def _signal_prices(self, signal: Signal, fallback: tuple[Decimal, Decimal]) -> tuple[Decimal, Decimal]:
        prices = list(fallback)
        for i, leg in enumerate(signal.legs[:2]):
            if leg.price > 0:
                prices[i] = leg.price
        return prices[0], prices[1]

    def _signal_sides(self, signal: Signal) -> tuple[Side, Side] | None:
        sides = signal.leg_sides()
        if sides is not None:
            return sides
        if signal.action:
            return parse_action(signal.action, self._legs[0].exchange, self._legs[1].exchange)
        return None

    def _translate_open(self, signal: Signal) -> list[TranslationItem]:
        sides = self._signal_sides(signal)
        if sides is None:
            logger.warning("open_without_sides", signal_id=signal.id, action=signal.action)
            return []
        prices = self._signal_prices(signal, (self.approx_price, self.approx_price))
        quantities = (self.notional / prices[0], self.notional / prices[1])
        self.sessions[signal.session_id] = SessionEntry(
            entry_timestamp=signal.timestamp,
            quantities=quantities,
            prices=prices,
            sides=sides,
        )
        return self._orders(signal, sides, quantities, prices)

    def _translate_close(self, signal: Signal) -> list[TranslationItem]:
        session = self.sessions.get(signal.session_id)
        if session is None:
            return self._translate_orphan_close(signal)

        items = self._settlements(signal, session)
        sides = self._signal_sides(signal)
        if sides is None:
            sides = (session.sides[0].reverse(), session.sides[1].reverse())
        prices = self._signal_prices(signal, session.prices)
        items += self._orders(signal, sides, session.quantities, prices)
        del self.sessions[signal.session_id]
        return items

    def _translate_orphan_close(self, signal: Signal) -> list[TranslationItem]:
        prices = self._signal_prices(signal, (self.approx_price, self.approx_price))
        sides = self._signal_sides(signal)
        if sides is None:
            spread = signal.metrics.get("spreadPct", Decimal("0"))
            entry = (Side.SELL, Side.BUY) if spread > 0 else (Side.BUY, Side.SELL)
            sides = (entry[0].reverse(), entry[1].reverse())
        logger.warning(
            "session_state_miss",
            session_id=signal.session_id,
            fallback="quantities recomputed from close prices",
        )
        quantities = (self.notional / prices[0], self.notional / prices[1])
        return self._orders(signal, sides, quantities, prices)

    def _orders(
        self,
        signal: Signal,
        sides: tuple[Side, Side],
        quantities: tuple[Decimal, Decimal],
        prices: tuple[Decimal, Decimal],
    ) -> list[TranslationItem]:
        prefix = signal.id or signal.session_id
        items = []
        for i, suffix in enumerate(("A", "B")):
            leg, adapter = self._legs[i], self._adapters[i]
            order = adapter.build_order(
                symbol=leg.symbol,
                side=sides[i],
                base_quantity=quantities[i],
                price=prices[i],
                client_order_id=f"{prefix}_{suffix}",
                contract=leg.contract_profile,
                timestamp=signal.timestamp,
            )
            items.append(TranslationItem(ItemKind.ORDER, leg.exchange, order))
        return items

    # ──────────────────────────────────────────────
    # Settlements
    # ──────────────────────────────────────────────

    def _settlements(self, signal: Signal, session: SessionEntry) -> list[TranslationItem]:
        """One INCOME item per leg per settlement boundary crossed."""
        items = []
        for i, leg in enumerate(self._legs):
            calendar = leg.funding_profile
            lookup = self._context.funding_lookup(leg.exchange, leg.symbol)
            side = PositionSide.from_side(session.sides[i])
            notional = session.notional(i)
            for boundary in settlement_boundaries(
                session.entry_timestamp,
                signal.timestamp,
                calendar.interval_hours,
                calendar.start_time,
            ):
                rate = lookup.rate_at(boundary)
                record = IncomeRecord(
                    symbol=leg.symbol,
                    amount=funding_fee(notional, rate, side),
                    timestamp=boundary,
                    info=f"Funding Fee | Session: {signal.session_id}",
                    exchange=leg.exchange,
                )
                items.append(TranslationItem(ItemKind.INCOME, leg.exchange, record))
        if items:
            logger.info(
                "settlements_generated",
                session_id=signal.session_id,
                count=len(items),
            )
        return items
