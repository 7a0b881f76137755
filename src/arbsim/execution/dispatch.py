"""Push translated items and engine side effects into a sink."""

from collections.abc import Iterable
from dataclasses import dataclass

from arbsim.execution.sink import Sink
from arbsim.logging import get_logger
from arbsim.models import IncomeRecord, OrderIntent
from arbsim.translator.engine import ItemKind, TranslationItem

logger = get_logger(__name__)


@dataclass
class DispatchReport:
    orders_ok: int = 0
    incomes_ok: int = 0
    failed: int = 0

    def merge(self, other: "DispatchReport") -> None:
        self.orders_ok += other.orders_ok
        self.incomes_ok += other.incomes_ok
        self.failed += other.failed


async def dispatch(
    sink: Sink,
    orders: Iterable[OrderIntent] = (),
    incomes: Iterable[IncomeRecord] = (),
) -> DispatchReport:
    """Inject orders then incomes, continuing past failures."""
    report = DispatchReport()
    for order in orders:
        result = await sink.inject_order(order)
        if result.ok:
            report.orders_ok += 1
        else:
            report.failed += 1
    for income in incomes:
        result = await sink.inject_income(income)
        if result.ok:
            report.incomes_ok += 1
        else:
            report.failed += 1
    if report.failed:
        logger.warning(
            "dispatch_partial_failure",
            failed=report.failed,
            orders_ok=report.orders_ok,
            incomes_ok=report.incomes_ok,
        )
    return report


async def dispatch_items(sink: Sink, items: Iterable[TranslationItem]) -> DispatchReport:
    """Inject translator output in its original order."""
    report = DispatchReport()
    for item in items:
        if item.kind is ItemKind.ORDER:
            report.merge(await dispatch(sink, orders=[item.data]))
        else:
            report.merge(await dispatch(sink, incomes=[item.data]))
    return report
