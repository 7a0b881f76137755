"""Funding engine state: the resumable checkpoint and its open position.

CRITICAL: Income values are Decimal and persisted as strings.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from arbsim.models import IncomeRecord, OrderIntent, Side, Signal


@dataclass(frozen=True)
class ActivePosition:
    """An open funding-carry position."""

    session_id: str
    entry_timestamp: int
    side_leg_a: Side
    side_leg_b: Side
    accumulated_income: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "entryTs": self.entry_timestamp,
            "sideA": self.side_leg_a.value,
            "sideB": self.side_leg_b.value,
            "accumulatedIncome": str(self.accumulated_income),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivePosition":
        return cls(
            session_id=str(data["sessionId"]),
            entry_timestamp=int(data["entryTs"]),
            side_leg_a=Side(data["sideA"]),
            side_leg_b=Side(data["sideB"]),
            accumulated_income=Decimal(str(data.get("accumulatedIncome", "0"))),
        )


@dataclass(frozen=True)
class Checkpoint:
    """Where the funding engine left off.

    Mutated only by the engine. Processing a series in one run or in any
    number of resumed runs yields the same final Checkpoint. Settlement
    intervals are pinned the first time they can be detected so later runs
    annualize with the same hours.
    """

    last_processed_timestamp: int = 0
    active_position: ActivePosition | None = None
    total_income: Decimal = Decimal("0")
    interval_hours_a: int | None = None
    interval_hours_b: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastProcessedTs": self.last_processed_timestamp,
            "activePosition": self.active_position.to_dict() if self.active_position else None,
            "totalIncome": str(self.total_income),
            "intervalHoursA": self.interval_hours_a,
            "intervalHoursB": self.interval_hours_b,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Checkpoint":
        position = data.get("activePosition")
        return cls(
            last_processed_timestamp=int(data.get("lastProcessedTs", 0)),
            active_position=ActivePosition.from_dict(position) if position else None,
            total_income=Decimal(str(data.get("totalIncome", "0"))),
            interval_hours_a=data.get("intervalHoursA"),
            interval_hours_b=data.get("intervalHoursB"),
        )


@dataclass
class FundingOutcome:
    """Result of processing one batch of funding events.

    orders and incomes hold only side effects at or after skip-before; events
    holds every OPEN/CLOSE/SETTLE regardless.
    """

    checkpoint: Checkpoint
    events: list[Signal] = field(default_factory=list)
    orders: list[OrderIntent] = field(default_factory=list)
    incomes: list[IncomeRecord] = field(default_factory=list)
    appended: list[Signal] = field(default_factory=list)
