"""Abstract sink interface for translated side effects.

Orders and funding income produced by the translator and the funding engine
are handed to a Sink. The HTTP sink posts them to the mock exchange; the
recording sink keeps them in memory for dry runs and tests.

A failed injection never raises into the pipeline: it comes back as a
SinkResult with ok=False and the cycle carries on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from arbsim.models import IncomeRecord, OrderIntent


@dataclass(frozen=True)
class SinkResult:
    ok: bool
    status: int | None = None
    body: dict[str, Any] = field(default_factory=dict)
    error: str = ""


class Sink(ABC):
    """Destination for order and income injections."""

    @abstractmethod
    async def inject_order(self, order: OrderIntent) -> SinkResult:
        """Submit one order.

        Args:
            order: Venue-converted order intent.

        Returns:
            SinkResult; ok=False on any transport or HTTP failure.
        """
        ...

    @abstractmethod
    async def inject_income(self, income: IncomeRecord) -> SinkResult:
        """Submit one funding income record."""
        ...

    async def close(self) -> None:
        return None
