"""In-memory ledger behind the mock exchange.

Market orders fill immediately at the order's price (or the last posted mark
price when the order carries none) and update a net position per symbol.
Every fill produces a trade charged a flat taker commission. Funding income
is injected from outside and reported alongside commissions in the income
history.

CRITICAL: All amounts are Decimal. Nothing here talks to disk; the optional
journal in database.py mirrors mutations.
"""

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any

from arbsim.exceptions import ArbSimError
from arbsim.logging import get_logger

logger = get_logger(__name__)

# Positions smaller than this are treated as flat
_DUST = Decimal("0.0001")


class LedgerError(ArbSimError):
    """Request the ledger cannot honour (missing price, bad side)."""


@dataclass
class MockPosition:
    symbol: str
    entry_price: Decimal
    size: Decimal  # signed: positive long, negative short
    margin: Decimal
    side: str
    updated_at: int

    def unrealized_pnl(self, mark: Decimal | None) -> Decimal:
        if mark is None:
            return Decimal("0")
        return (mark - self.entry_price) * self.size


@dataclass(frozen=True)
class MockOrder:
    id: int
    symbol: str
    side: str
    quantity: Decimal
    price: Decimal
    status: str
    client_order_id: str
    timestamp: int


@dataclass(frozen=True)
class MockTrade:
    id: int
    order_id: int
    symbol: str
    side: str
    price: Decimal
    qty: Decimal
    commission: Decimal
    commission_asset: str
    timestamp: int


@dataclass(frozen=True)
class MockIncome:
    symbol: str
    income_type: str
    income: Decimal
    asset: str
    time: int
    info: str = ""
    tran_id: int = 0
    trade_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "incomeType": self.income_type,
            "income": str(self.income),
            "asset": self.asset,
            "time": self.time,
            "info": self.info,
            "tranId": self.tran_id,
            "tradeId": self.trade_id,
        }


@dataclass
class MockLedger:
    """Prices, positions, orders, trades and custom income for the mock venue.

    Args:
        commission_rate: Taker fee charged on every fill's notional.
        leverage: Used only to derive a position's margin.
        time_fn: Wall clock in seconds, injected in tests.
    """

    commission_rate: Decimal = Decimal("0.0004")
    leverage: Decimal = Decimal("10")
    time_fn: Callable[[], float] = time.time
    prices: dict[str, Decimal] = field(default_factory=dict)
    positions: dict[str, MockPosition] = field(default_factory=dict)
    orders: list[MockOrder] = field(default_factory=list)
    trades: list[MockTrade] = field(default_factory=list)
    incomes: list[MockIncome] = field(default_factory=list)
    _next_order_id: int = field(default=1, init=False, repr=False)
    _next_trade_id: int = field(default=1, init=False, repr=False)

    def _now_ms(self) -> int:
        return int(self.time_fn() * 1000)

    # ──────────────────────────────────────────────
    # Prices and manual positions
    # ──────────────────────────────────────────────

    def set_price(self, symbol: str, price: Decimal) -> None:
        if price <= 0:
            raise LedgerError(f"price for {symbol} must be positive")
        self.prices[symbol] = price

    def set_position(
        self,
        symbol: str,
        size: Decimal,
        margin: Decimal,
        entry_price: Decimal,
        side: str,
    ) -> MockPosition | None:
        """Overwrite a position; a size below dust deletes it."""
        if abs(size) < _DUST:
            self.positions.pop(symbol, None)
            return None
        position = MockPosition(
            symbol=symbol,
            entry_price=entry_price,
            size=size,
            margin=margin,
            side=side.upper(),
            updated_at=self._now_ms(),
        )
        self.positions[symbol] = position
        return position

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    def place_order(
        self,
        symbol: str,
        side: str,
        quantity: Decimal,
        price: Decimal | None = None,
        client_order_id: str = "",
        status: str = "FILLED",
    ) -> tuple[MockOrder, MockTrade | None]:
        """Record an order and, when FILLED, its trade and position change.

        Raises:
            LedgerError: If side is not BUY/SELL, quantity is not positive,
                or no fill price is known.
        """
        side = side.upper()
        if side not in ("BUY", "SELL"):
            raise LedgerError(f"unknown side {side!r}")
        if quantity <= 0:
            raise LedgerError("quantity must be positive")
        fill_price = price if price is not None and price > 0 else self.prices.get(symbol)
        if fill_price is None:
            raise LedgerError(f"no price available for {symbol}")

        now = self._now_ms()
        order = MockOrder(
            id=self._next_order_id,
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=fill_price,
            status=status.upper(),
            client_order_id=client_order_id or f"order_{self._next_order_id}",
            timestamp=now,
        )
        self._next_order_id += 1
        self.orders.append(order)

        if order.status != "FILLED":
            logger.info("mock_order_placed", symbol=symbol, side=side, quantity=str(quantity))
            return order, None

        trade = MockTrade(
            id=self._next_trade_id,
            order_id=order.id,
            symbol=symbol,
            side=side,
            price=fill_price,
            qty=quantity,
            commission=fill_price * quantity * self.commission_rate,
            commission_asset="USDT",
            timestamp=now,
        )
        self._next_trade_id += 1
        self.trades.append(trade)
        self._apply_fill(symbol, side, quantity, fill_price, now)
        logger.info(
            "mock_order_filled",
            symbol=symbol,
            side=side,
            quantity=str(quantity),
            price=str(fill_price),
            client_order_id=order.client_order_id,
        )
        return order, trade

    def _apply_fill(self, symbol: str, side: str, quantity: Decimal, price: Decimal, now: int) -> None:
        signed = quantity if side == "BUY" else -quantity
        existing = self.positions.get(symbol)
        if existing is None:
            new_size, entry = signed, price
        else:
            new_size = existing.size + signed
            same_direction = (existing.size > 0) == (signed > 0)
            if same_direction:
                entry = (existing.entry_price * abs(existing.size) + price * quantity) / abs(new_size)
            elif (existing.size > 0) != (new_size > 0) and abs(new_size) >= _DUST:
                entry = price  # flipped through flat
            else:
                entry = existing.entry_price

        if abs(new_size) < _DUST:
            self.positions.pop(symbol, None)
            return
        self.positions[symbol] = MockPosition(
            symbol=symbol,
            entry_price=entry,
            size=new_size,
            margin=abs(new_size) * entry / self.leverage,
            side="LONG" if new_size > 0 else "SHORT",
            updated_at=now,
        )

    # ──────────────────────────────────────────────
    # Income
    # ──────────────────────────────────────────────

    def add_income(
        self,
        symbol: str,
        income_type: str,
        income: Decimal,
        asset: str = "USDT",
        time_ms: int | None = None,
        info: str = "",
        trade_id: str = "",
    ) -> MockIncome:
        record = MockIncome(
            symbol=symbol,
            income_type=income_type,
            income=income,
            asset=asset or "USDT",
            time=time_ms or self._now_ms(),
            info=info,
            tran_id=self._now_ms(),
            trade_id=trade_id,
        )
        self.incomes.append(record)
        return record

    def income_history(self, limit: int = 50) -> list[dict[str, Any]]:
        """Commissions from trades plus injected income, newest first."""
        entries = [
            MockIncome(
                symbol=t.symbol,
                income_type="COMMISSION",
                income=-t.commission,
                asset=t.commission_asset,
                time=t.timestamp,
                info="Commission for trade",
                tran_id=t.id * 10,
                trade_id=str(t.id),
            )
            for t in self.trades
        ]
        entries.extend(self.incomes)
        entries.sort(key=lambda e: e.time, reverse=True)
        return [e.to_dict() for e in entries[:limit]]

    # ──────────────────────────────────────────────
    # Views
    # ──────────────────────────────────────────────

    def position_views(self) -> list[dict[str, Any]]:
        views = []
        for symbol, position in self.positions.items():
            mark = self.prices.get(symbol)
            pnl = position.unrealized_pnl(mark)
            roe = pnl / position.margin * 100 if position.margin else Decimal("0")
            views.append(
                {
                    "symbol": symbol,
                    "entryPrice": str(position.entry_price),
                    "size": str(position.size),
                    "margin": str(position.margin),
                    "side": position.side,
                    "updatedAt": position.updated_at,
                    "currentPrice": str(mark or 0),
                    "unRealizedProfit": str(pnl.quantize(Decimal("0.0001"))),
                    "roe": f"{roe.quantize(Decimal('0.01'))}%",
                }
            )
        return views

    def reset(self) -> None:
        self.prices.clear()
        self.positions.clear()
        self.orders.clear()
        self.trades.clear()
        self.incomes.clear()
        self._next_order_id = 1
        self._next_trade_id = 1
        logger.info("mock_ledger_reset")

    def restore(
        self,
        prices: dict[str, Decimal],
        positions: list[MockPosition],
        orders: list[MockOrder],
        trades: list[MockTrade],
        incomes: list[MockIncome],
    ) -> None:
        """Replace state with journaled records, continuing id sequences."""
        self.prices = dict(prices)
        self.positions = {p.symbol: p for p in positions}
        self.orders = sorted(orders, key=lambda o: o.id)
        self.trades = sorted(trades, key=lambda t: t.id)
        self.incomes = sorted(incomes, key=lambda i: i.time)
        self._next_order_id = max((o.id for o in orders), default=0) + 1
        self._next_trade_id = max((t.id for t in trades), default=0) + 1


def record_to_dict(record: MockOrder | MockTrade) -> dict[str, Any]:
    """JSON view of an order or trade, amounts as strings."""
    return {k: str(v) if isinstance(v, Decimal) else v for k, v in asdict(record).items()}
