"""In-memory sink for dry runs and tests."""

from arbsim.execution.sink import Sink, SinkResult
from arbsim.models import IncomeRecord, OrderIntent


class RecordingSink(Sink):
    """Keeps every injection, in order. Optionally fails every call."""

    def __init__(self, fail: bool = False) -> None:
        self.orders: list[OrderIntent] = []
        self.incomes: list[IncomeRecord] = []
        self._fail = fail

    async def inject_order(self, order: OrderIntent) -> SinkResult:
        if self._fail:
            return SinkResult(ok=False, error="recording sink set to fail")
        self.orders.append(order)
        return SinkResult(ok=True, status=200)

    async def inject_income(self, income: IncomeRecord) -> SinkResult:
        if self._fail:
            return SinkResult(ok=False, error="recording sink set to fail")
        self.incomes.append(income)
        return SinkResult(ok=True, status=200)
