"""Shared data models for the simulation harness.

CRITICAL: All prices, rates, quantities and income use Decimal. Never use float
for anything that flows into a signal, an order or a checkpoint.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class Side(str, Enum):
    """Order direction."""

    BUY = "BUY"
    SELL = "SELL"

    def reverse(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class SignalType(str, Enum):
    """Lifecycle event carried by a Signal."""

    OPEN = "OPEN"
    CLOSE = "CLOSE"
    SETTLE = "SETTLE"


class Strategy(str, Enum):
    """Which state machine produced a Signal."""

    HEDGE = "HEDGE"
    FUNDING = "FUNDING"


class Veracity(str, Enum):
    """REAL for signals replayed from raw data, FAKE for mixed scenarios."""

    REAL = "REAL"
    FAKE = "FAKE"


@dataclass(frozen=True)
class SignalLeg:
    """One leg of a signal: where it trades and at what observed price."""

    exchange: str
    price: Decimal
    side: Side | None = None
    symbol: str = ""


@dataclass(frozen=True)
class Signal:
    """An immutable OPEN/CLOSE/SETTLE event.

    Persisted with camelCase keys (timestamp, sessionId) so history files
    stay readable by the mock exchange tooling. Decimals are written as
    strings to survive a reload exactly.
    """

    strategy: Strategy
    id: str
    timestamp: int  # Unix milliseconds
    type: SignalType
    session_id: str
    action: str
    legs: tuple[SignalLeg, ...] = ()
    metrics: dict[str, Decimal] = field(default_factory=dict)
    status: str = "paper"
    veracity: Veracity = Veracity.REAL
    pnl: Decimal | None = None

    @property
    def key(self) -> tuple[int, str, str]:
        """History deduplication key."""
        return (self.timestamp, self.type.value, self.session_id)

    def leg_sides(self) -> tuple[Side, Side] | None:
        """Structured (legA, legB) sides when both legs carry one."""
        if len(self.legs) < 2:
            return None
        side_a, side_b = self.legs[0].side, self.legs[1].side
        if side_a is None or side_b is None:
            return None
        return side_a, side_b

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "strategy": self.strategy.value,
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "sessionId": self.session_id,
            "action": self.action,
            "legs": [_leg_to_dict(leg) for leg in self.legs],
            "metrics": {k: str(v) for k, v in self.metrics.items()},
            "status": self.status,
            "veracity": self.veracity.value,
        }
        if self.pnl is not None:
            data["pnl"] = str(self.pnl)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Signal":
        pnl = data.get("pnl")
        return cls(
            strategy=Strategy(data.get("strategy", Strategy.HEDGE.value)),
            id=str(data["id"]),
            timestamp=int(data.get("timestamp", data.get("ts", 0))),
            type=SignalType(data["type"]),
            session_id=str(data["sessionId"]),
            action=str(data.get("action", "")),
            legs=tuple(_leg_from_dict(leg) for leg in data.get("legs", [])),
            metrics={k: Decimal(str(v)) for k, v in data.get("metrics", {}).items()},
            status=str(data.get("status", "paper")),
            veracity=Veracity(data.get("veracity", Veracity.REAL.value)),
            pnl=Decimal(str(pnl)) if pnl is not None else None,
        )


def _leg_to_dict(leg: SignalLeg) -> dict[str, Any]:
    data: dict[str, Any] = {"exchange": leg.exchange, "price": str(leg.price)}
    if leg.side is not None:
        data["side"] = leg.side.value
    if leg.symbol:
        data["symbol"] = leg.symbol
    return data


def _leg_from_dict(data: dict[str, Any]) -> SignalLeg:
    side = data.get("side")
    return SignalLeg(
        exchange=str(data["exchange"]),
        price=Decimal(str(data.get("price", "0"))),
        side=Side(side) if side else None,
        symbol=str(data.get("symbol", "")),
    )


@dataclass(frozen=True)
class OrderIntent:
    """A market order bound for the mock exchange. Never persisted."""

    exchange: str
    symbol: str
    side: Side
    quantity: Decimal
    price: Decimal
    client_order_id: str
    timestamp: int = 0

    def to_payload(self) -> dict[str, Any]:
        """Body for POST /mock/order."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "type": "MARKET",
            "quantity": str(self.quantity),
            "price": str(self.price),
            "clientOrderId": self.client_order_id,
        }


@dataclass(frozen=True)
class IncomeRecord:
    """A funding fee credited or debited on one leg. Never persisted."""

    symbol: str
    amount: Decimal
    timestamp: int
    info: str = ""
    asset: str = "USDT"
    income_type: str = "FUNDING_FEE"
    exchange: str = ""

    def to_payload(self) -> dict[str, Any]:
        """Body for POST /mock/income."""
        return {
            "symbol": self.symbol,
            "incomeType": self.income_type,
            "income": str(self.amount),
            "asset": self.asset,
            "time": self.timestamp,
            "info": self.info,
        }
