"""Async SQLite journal for the mock exchange ledger.

Mirrors every ledger mutation so a restarted mock server comes back with the
same prices, positions, orders, trades and injected income. Uses aiosqlite
with WAL mode.

CRITICAL: Amounts are stored as TEXT and restored as Decimal.
"""

import os
from decimal import Decimal
from typing import Self

import aiosqlite

from arbsim.logging import get_logger
from arbsim.mock_exchange.ledger import (
    MockIncome,
    MockLedger,
    MockOrder,
    MockPosition,
    MockTrade,
)

logger = get_logger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS prices (
    symbol TEXT PRIMARY KEY,
    price TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS positions (
    symbol TEXT PRIMARY KEY,
    entry_price TEXT NOT NULL,
    size TEXT NOT NULL,
    margin TEXT NOT NULL,
    side TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS orders (
    id INTEGER PRIMARY KEY,
    symbol TEXT NOT NULL,
    side TEXT NOT NULL,
    quantity TEXT NOT NULL,
    price TEXT NOT NULL,
    status TEXT NOT NULL,
    client_order_id TEXT,
    timestamp INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY,
    order_id INTEGER NOT NULL,
    symbol TEXT NOT NULL,
    side TEXT NOT NULL,
    price TEXT NOT NULL,
    qty TEXT NOT NULL,
    commission TEXT NOT NULL,
    commission_asset TEXT NOT NULL,
    timestamp INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS incomes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    income_type TEXT NOT NULL,
    income TEXT NOT NULL,
    asset TEXT NOT NULL,
    time INTEGER NOT NULL,
    info TEXT,
    tran_id INTEGER,
    trade_id TEXT
);
"""


class LedgerJournal:
    """aiosqlite-backed journal of ledger state.

    Usage:
        async with LedgerJournal("data/mock_exchange.db") as journal:
            await journal.restore(ledger)
            ...
            await journal.record_order(order, trade, ledger.positions.get(order.symbol))
    """

    def __init__(self, db_path: str = "data/mock_exchange.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Raw connection. Raises RuntimeError if not connected."""
        if self._connection is None:
            raise RuntimeError("Journal not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.commit()
        logger.info("mock_journal_connected", db_path=self._db_path)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("mock_journal_closed", db_path=self._db_path)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def record_price(self, symbol: str, price: Decimal) -> None:
        await self.db.execute(
            "INSERT OR REPLACE INTO prices (symbol, price) VALUES (?, ?)",
            (symbol, str(price)),
        )
        await self.db.commit()

    async def record_position(self, symbol: str, position: MockPosition | None) -> None:
        """Upsert a position, or delete the row when it went flat."""
        if position is None:
            await self.db.execute("DELETE FROM positions WHERE symbol = ?", (symbol,))
        else:
            await self.db.execute(
                "INSERT OR REPLACE INTO positions "
                "(symbol, entry_price, size, margin, side, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    position.symbol,
                    str(position.entry_price),
                    str(position.size),
                    str(position.margin),
                    position.side,
                    position.updated_at,
                ),
            )
        await self.db.commit()

    async def record_order(
        self,
        order: MockOrder,
        trade: MockTrade | None,
        position: MockPosition | None,
    ) -> None:
        """Journal an order, its trade and the resulting position together."""
        await self.db.execute(
            "INSERT INTO orders "
            "(id, symbol, side, quantity, price, status, client_order_id, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                order.id,
                order.symbol,
                order.side,
                str(order.quantity),
                str(order.price),
                order.status,
                order.client_order_id,
                order.timestamp,
            ),
        )
        if trade is not None:
            await self.db.execute(
                "INSERT INTO trades "
                "(id, order_id, symbol, side, price, qty, commission, commission_asset, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    trade.id,
                    trade.order_id,
                    trade.symbol,
                    trade.side,
                    str(trade.price),
                    str(trade.qty),
                    str(trade.commission),
                    trade.commission_asset,
                    trade.timestamp,
                ),
            )
        await self.record_position(order.symbol, position)

    async def record_income(self, income: MockIncome) -> None:
        await self.db.execute(
            "INSERT INTO incomes "
            "(symbol, income_type, income, asset, time, info, tran_id, trade_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                income.symbol,
                income.income_type,
                str(income.income),
                income.asset,
                income.time,
                income.info,
                income.tran_id,
                income.trade_id,
            ),
        )
        await self.db.commit()

    async def clear(self) -> None:
        for table in ("prices", "positions", "orders", "trades", "incomes"):
            await self.db.execute(f"DELETE FROM {table}")
        await self.db.commit()

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def restore(self, ledger: MockLedger) -> None:
        """Load every journaled record into ledger."""
        cursor = await self.db.execute("SELECT symbol, price FROM prices")
        prices = {row[0]: Decimal(row[1]) for row in await cursor.fetchall()}

        cursor = await self.db.execute(
            "SELECT symbol, entry_price, size, margin, side, updated_at FROM positions"
        )
        positions = [
            MockPosition(
                symbol=row[0],
                entry_price=Decimal(row[1]),
                size=Decimal(row[2]),
                margin=Decimal(row[3]),
                side=row[4],
                updated_at=row[5],
            )
            for row in await cursor.fetchall()
        ]

        cursor = await self.db.execute(
            "SELECT id, symbol, side, quantity, price, status, client_order_id, timestamp FROM orders"
        )
        orders = [
            MockOrder(
                id=row[0],
                symbol=row[1],
                side=row[2],
                quantity=Decimal(row[3]),
                price=Decimal(row[4]),
                status=row[5],
                client_order_id=row[6] or "",
                timestamp=row[7],
            )
            for row in await cursor.fetchall()
        ]

        cursor = await self.db.execute(
            "SELECT id, order_id, symbol, side, price, qty, commission, commission_asset, timestamp "
            "FROM trades"
        )
        trades = [
            MockTrade(
                id=row[0],
                order_id=row[1],
                symbol=row[2],
                side=row[3],
                price=Decimal(row[4]),
                qty=Decimal(row[5]),
                commission=Decimal(row[6]),
                commission_asset=row[7],
                timestamp=row[8],
            )
            for row in await cursor.fetchall()
        ]

        cursor = await self.db.execute(
            "SELECT symbol, income_type, income, asset, time, info, tran_id, trade_id FROM incomes"
        )
        incomes = [
            MockIncome(
                symbol=row[0],
                income_type=row[1],
                income=Decimal(row[2]),
                asset=row[3],
                time=row[4],
                info=row[5] or "",
                tran_id=row[6] or 0,
                trade_id=row[7] or "",
            )
            for row in await cursor.fetchall()
        ]

        ledger.restore(prices, positions, orders, trades, incomes)
        logger.info(
            "mock_journal_restored",
            prices=len(prices),
            positions=len(positions),
            orders=len(orders),
            trades=len(trades),
            incomes=len(incomes),
        )
