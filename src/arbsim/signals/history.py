"""Append-only signal history and the derived active-signals view.

Both strategies write to the same pair of files:
- signals/indexed_history_<SYM>.json  every signal ever emitted, ascending
- signals/signals_<SYM>.json          history minus sessions that have a CLOSE

History entries are immutable. New signals are deduplicated by
(timestamp, type, session id), and a CLOSE for a session that already has one
is never appended, so overlapping replays are harmless.
"""

from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from arbsim.data.files import read_json, write_json_atomic
from arbsim.exceptions import DataGapError
from arbsim.logging import get_logger
from arbsim.models import Signal, SignalType, Strategy

logger = get_logger(__name__)


def merge_signals(
    existing: Sequence[Signal], incoming: Iterable[Signal]
) -> tuple[list[Signal], list[Signal]]:
    """Merge new signals into history.

    Returns:
        (merged history sorted by timestamp, signals actually appended).
    """
    keys = {s.key for s in existing}
    closed = {s.session_id for s in existing if s.type is SignalType.CLOSE}
    appended: list[Signal] = []
    for signal in incoming:
        if signal.type is SignalType.CLOSE and signal.session_id in closed:
            logger.debug("duplicate_close_dropped", session_id=signal.session_id)
            continue
        if signal.key in keys:
            continue
        keys.add(signal.key)
        if signal.type is SignalType.CLOSE:
            closed.add(signal.session_id)
        appended.append(signal)

    merged = sorted([*existing, *appended], key=lambda s: s.timestamp)
    return merged, appended


def active_signals(history: Sequence[Signal]) -> list[Signal]:
    """History minus every signal whose session has a CLOSE."""
    closed = {s.session_id for s in history if s.type is SignalType.CLOSE}
    return sorted(
        (s for s in history if s.session_id not in closed), key=lambda s: s.timestamp
    )


def last_signal(history: Sequence[Signal], strategy: Strategy) -> Signal | None:
    """Most recent OPEN or CLOSE emitted by a strategy."""
    for signal in reversed(history):
        if signal.strategy is strategy and signal.type in (SignalType.OPEN, SignalType.CLOSE):
            return signal
    return None


class SignalHistory:
    """File-backed history shared by the scheduler and the funding engine.

    Args:
        signals_dir: Directory holding the history and active-view files.
        symbol: Suffix used in the file names.
    """

    def __init__(self, signals_dir: Path, symbol: str = "TRX") -> None:
        self.signals_dir = Path(signals_dir)
        self.symbol = symbol

    @property
    def history_path(self) -> Path:
        return self.signals_dir / f"indexed_history_{self.symbol}.json"

    @property
    def active_path(self) -> Path:
        return self.signals_dir / f"signals_{self.symbol}.json"

    def load(self) -> list[Signal]:
        """Read history; a missing file is an empty history.

        Raises:
            DataGapError: If the file exists but is not a JSON array.
        """
        if not self.history_path.exists():
            return []
        data = read_json(self.history_path)
        if not isinstance(data, list):
            raise DataGapError(str(self.history_path), "expected a JSON array of signals")
        return sorted((Signal.from_dict(d) for d in data), key=lambda s: s.timestamp)

    def load_active(self) -> list[Signal]:
        if not self.active_path.exists():
            return []
        return [Signal.from_dict(d) for d in read_json(self.active_path)]

    def save(self, history: Sequence[Signal]) -> None:
        """Rewrite history and the derived active view atomically."""
        write_json_atomic(self.history_path, [s.to_dict() for s in history])
        active = active_signals(history)
        write_json_atomic(self.active_path, [s.to_dict() for s in active])
        logger.info(
            "signal_files_updated",
            history=len(history),
            active=len(active),
            path=str(self.history_path),
        )

    def append(self, signals: Iterable[Signal]) -> list[Signal]:
        """Merge signals into the persisted history.

        Returns:
            The signals that were new.
        """
        merged, appended = merge_signals(self.load(), signals)
        self.save(merged)
        return appended

    def drop(self, predicate: Callable[[Signal], bool]) -> int:
        """Remove every signal matching predicate. Returns how many went."""
        history = self.load()
        kept = [s for s in history if not predicate(s)]
        removed = len(history) - len(kept)
        if removed:
            self.save(kept)
        return removed
