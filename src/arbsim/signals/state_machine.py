"""Spread hysteresis state machine for a single leg pair.

IDLE -> HOLDING when |spread| >= open threshold (and any post-close cooldown
has elapsed). HOLDING -> IDLE when |spread| < close threshold. Nothing
happens in between, which keeps a spread hovering near one threshold from
flapping.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from arbsim.models import SignalType


class SpreadState(str, Enum):
    IDLE = "IDLE"
    HOLDING = "HOLDING"


@dataclass(frozen=True)
class Transition:
    """A state change produced by one tick."""

    type: SignalType
    timestamp: int
    spread: Decimal
    session_id: str


def hedge_session_id(timestamp: int) -> str:
    return f"HEDGE_{timestamp}"


class SpreadStateMachine:
    """Pure hysteresis machine. Feed it (timestamp, spread) pairs in order.

    Args:
        open_threshold: |spread| at or above which an IDLE pair opens.
        close_threshold: |spread| below which a HOLDING pair closes.
        cooldown_ms: After a close, re-opening requires strictly more than
            this much time to have passed.
        state: Resume state.
        session_id: Open session when resuming in HOLDING.
        last_close_ts: Timestamp of the last close, for the cooldown.
    """

    def __init__(
        self,
        open_threshold: Decimal,
        close_threshold: Decimal,
        cooldown_ms: int = 0,
        state: SpreadState = SpreadState.IDLE,
        session_id: str | None = None,
        last_close_ts: int | None = None,
    ) -> None:
        if close_threshold >= open_threshold:
            raise ValueError("close_threshold must be below open_threshold")
        if state is SpreadState.HOLDING and session_id is None:
            raise ValueError("HOLDING state requires a session_id")
        self.open_threshold = open_threshold
        self.close_threshold = close_threshold
        self.cooldown_ms = cooldown_ms
        self.state = state
        self.session_id = session_id
        self.last_close_ts = last_close_ts

    def _cooling_down(self, timestamp: int) -> bool:
        if self.last_close_ts is None or self.cooldown_ms <= 0:
            return False
        return timestamp - self.last_close_ts <= self.cooldown_ms

    def step(self, timestamp: int, spread: Decimal) -> Transition | None:
        """Advance one tick. Returns the transition, if any."""
        magnitude = abs(spread)
        if self.state is SpreadState.IDLE:
            if magnitude >= self.open_threshold and not self._cooling_down(timestamp):
                self.state = SpreadState.HOLDING
                self.session_id = hedge_session_id(timestamp)
                return Transition(SignalType.OPEN, timestamp, spread, self.session_id)
            return None

        if magnitude < self.close_threshold:
            session_id = self.session_id or hedge_session_id(timestamp)
            self.state = SpreadState.IDLE
            self.session_id = None
            self.last_close_ts = timestamp
            return Transition(SignalType.CLOSE, timestamp, spread, session_id)
        return None
