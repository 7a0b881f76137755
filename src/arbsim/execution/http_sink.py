"""HTTP sink posting to the mock exchange.

POST {base_url}/mock/order   {symbol, side, type, quantity, price, clientOrderId}
POST {base_url}/mock/income  {symbol, incomeType, income, asset, time, info}

Every request is bounded by the configured timeout. Failures are logged and
returned as SinkResult(ok=False); nothing is retried here, the next cycle
re-derives state from history instead.
"""

from typing import Any

import httpx

from arbsim.config import MockExchangeSettings
from arbsim.exceptions import ExternalSinkError
from arbsim.execution.sink import Sink, SinkResult
from arbsim.logging import get_logger
from arbsim.models import IncomeRecord, OrderIntent

logger = get_logger(__name__)


class MockExchangeSink(Sink):
    """Sink backed by the mock exchange HTTP API.

    Args:
        settings: Mock server location and timeout.
        client: Optional pre-built client (tests pass one with a mock transport).
    """

    def __init__(
        self,
        settings: MockExchangeSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def inject_order(self, order: OrderIntent) -> SinkResult:
        result = await self._send("/mock/order", order.to_payload())
        if result.ok:
            logger.info(
                "order_injected",
                exchange=order.exchange,
                symbol=order.symbol,
                side=order.side.value,
                quantity=str(order.quantity),
                client_order_id=order.client_order_id,
            )
        return result

    async def inject_income(self, income: IncomeRecord) -> SinkResult:
        result = await self._send("/mock/income", income.to_payload())
        if result.ok:
            logger.info(
                "income_injected",
                exchange=income.exchange,
                symbol=income.symbol,
                amount=str(income.amount),
                timestamp=income.timestamp,
            )
        return result

    async def _send(self, path: str, payload: dict[str, Any]) -> SinkResult:
        try:
            return await self._post(path, payload)
        except ExternalSinkError as e:
            logger.error("sink_request_failed", path=path, error=str(e))
            return SinkResult(ok=False, error=str(e))

    async def _post(self, path: str, payload: dict[str, Any]) -> SinkResult:
        """POST payload; raises ExternalSinkError on transport or HTTP errors."""
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise ExternalSinkError(f"{path}: timed out after {self._settings.timeout_seconds}s") from e
        except httpx.RequestError as e:
            raise ExternalSinkError(f"{path}: {e}") from e

        if response.status_code >= 400:
            raise ExternalSinkError(f"{path}: HTTP {response.status_code} {response.text[:200]}")
        try:
            body = response.json()
        except ValueError:
            body = {}
        return SinkResult(ok=True, status=response.status_code, body=body if isinstance(body, dict) else {})
