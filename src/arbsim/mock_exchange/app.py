"""FastAPI application factory for the mock exchange.

Endpoints:
  POST /mock/price        set a mark price
  GET  /mock/price/{sym}  read a mark price
  POST /mock/position     overwrite a position (size 0 clears it)
  GET  /mock/positions    positions with unrealized PnL
  POST /mock/order        market order, filled immediately
  GET  /mock/orders       orders, newest first
  GET  /mock/trades       trades, newest first
  POST /mock/income       inject an income record (FUNDING_FEE etc.)
  GET  /fapi/v1/income    commissions and injected income, newest first
  POST /mock/reset        wipe all state
  GET  /health            liveness
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from arbsim.logging import get_logger
from arbsim.mock_exchange.database import LedgerJournal
from arbsim.mock_exchange.ledger import LedgerError, MockLedger, record_to_dict

log = get_logger(__name__)

router = APIRouter()


class PriceBody(BaseModel):
    symbol: str
    price: Decimal


class PositionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    size: Decimal
    margin: Decimal
    entry_price: Decimal = Field(alias="entryPrice")
    side: str


class OrderBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    side: str
    quantity: Decimal
    price: Decimal | None = None
    type: str = "MARKET"
    client_order_id: str = Field(default="", alias="clientOrderId")
    status: str = "FILLED"


class IncomeBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    income_type: str = Field(alias="incomeType")
    income: Decimal
    asset: str = "USDT"
    time: int | None = None
    info: str = ""
    trade_id: str = Field(default="", alias="tradeId")


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


# ──────────────────────────────────────────────
# Prices and positions
# ──────────────────────────────────────────────


@router.post("/mock/price")
async def set_price(body: PriceBody, request: Request) -> Any:
    ledger: MockLedger = request.app.state.ledger
    try:
        ledger.set_price(body.symbol, body.price)
    except LedgerError as e:
        return _error(400, str(e))
    journal: LedgerJournal | None = request.app.state.journal
    if journal is not None:
        await journal.record_price(body.symbol, body.price)
    return {"success": True, "symbol": body.symbol, "price": str(body.price)}


@router.get("/mock/price/{symbol}")
async def get_price(symbol: str, request: Request) -> Any:
    price = request.app.state.ledger.prices.get(symbol)
    if price is None:
        return _error(404, "Price not found")
    return {"symbol": symbol, "price": str(price)}


@router.post("/mock/position")
async def set_position(body: PositionBody, request: Request) -> Any:
    ledger: MockLedger = request.app.state.ledger
    position = ledger.set_position(
        body.symbol, body.size, body.margin, body.entry_price, body.side
    )
    journal: LedgerJournal | None = request.app.state.journal
    if journal is not None:
        await journal.record_position(body.symbol, position)
    if position is None:
        return {"success": True, "message": f"Position for {body.symbol} deleted/cleared"}
    return {"success": True, "symbol": body.symbol}


@router.get("/mock/positions")
async def get_positions(request: Request) -> Any:
    return request.app.state.ledger.position_views()


# ──────────────────────────────────────────────
# Orders and trades
# ──────────────────────────────────────────────


@router.post("/mock/order")
async def place_order(body: OrderBody, request: Request) -> Any:
    ledger: MockLedger = request.app.state.ledger
    try:
        order, trade = ledger.place_order(
            symbol=body.symbol,
            side=body.side,
            quantity=body.quantity,
            price=body.price,
            client_order_id=body.client_order_id,
            status=body.status,
        )
    except LedgerError as e:
        log.warning("mock_order_rejected", symbol=body.symbol, error=str(e))
        return _error(400, str(e))

    journal: LedgerJournal | None = request.app.state.journal
    if journal is not None:
        await journal.record_order(order, trade, ledger.positions.get(order.symbol))
    return {
        "success": True,
        "orderId": order.id,
        "tradeId": trade.id if trade is not None else None,
        "symbol": order.symbol,
        "side": order.side,
        "quantity": str(order.quantity),
        "price": str(order.price),
        "clientOrderId": order.client_order_id,
    }


@router.get("/mock/orders")
async def get_orders(request: Request) -> Any:
    orders = request.app.state.ledger.orders
    return [record_to_dict(o) for o in sorted(orders, key=lambda o: o.timestamp, reverse=True)]


@router.get("/mock/trades")
async def get_trades(request: Request) -> Any:
    trades = request.app.state.ledger.trades
    return [record_to_dict(t) for t in sorted(trades, key=lambda t: t.timestamp, reverse=True)]


# ──────────────────────────────────────────────
# Income
# ──────────────────────────────────────────────


@router.post("/mock/income")
async def inject_income(body: IncomeBody, request: Request) -> Any:
    ledger: MockLedger = request.app.state.ledger
    record = ledger.add_income(
        symbol=body.symbol,
        income_type=body.income_type,
        income=body.income,
        asset=body.asset,
        time_ms=body.time,
        info=body.info,
        trade_id=body.trade_id,
    )
    journal: LedgerJournal | None = request.app.state.journal
    if journal is not None:
        await journal.record_income(record)
    log.info(
        "mock_income_injected",
        symbol=record.symbol,
        income_type=record.income_type,
        income=str(record.income),
    )
    return {"success": True, "income": record.to_dict()}


@router.get("/fapi/v1/income")
async def income_history(request: Request, limit: int = 50) -> Any:
    return request.app.state.ledger.income_history(limit=limit)


# ──────────────────────────────────────────────
# Admin
# ──────────────────────────────────────────────


@router.post("/mock/reset")
async def reset(request: Request) -> Any:
    request.app.state.ledger.reset()
    journal: LedgerJournal | None = request.app.state.journal
    if journal is not None:
        await journal.clear()
    return {"success": True}


@router.get("/health")
async def health(request: Request) -> Any:
    ledger: MockLedger = request.app.state.ledger
    return {
        "status": "ok",
        "positions": len(ledger.positions),
        "orders": len(ledger.orders),
        "incomes": len(ledger.incomes),
    }


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(400, f"Missing or invalid fields: {exc.errors()}")


def create_app(ledger: MockLedger | None = None, journal: LedgerJournal | None = None) -> FastAPI:
    """Create the mock exchange application.

    Args:
        ledger: State to serve; a fresh ledger when omitted.
        journal: Optional SQLite journal. When given it is connected and
            replayed into the ledger at startup and closed at shutdown.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if journal is not None:
            await journal.connect()
            await journal.restore(app.state.ledger)
        try:
            yield
        finally:
            if journal is not None:
                await journal.close()

    app = FastAPI(title="Mock Exchange", lifespan=lifespan)
    app.state.ledger = ledger or MockLedger()
    app.state.journal = journal
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.include_router(router)
    return app
