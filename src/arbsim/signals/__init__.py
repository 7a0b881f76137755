"""Spread signal generation: alignment, hysteresis and signal history."""

from arbsim.signals.alignment import nearest_within
from arbsim.signals.history import SignalHistory, active_signals, merge_signals
from arbsim.signals.scheduler import ScheduleResult, SignalScheduler
from arbsim.signals.state_machine import SpreadState, SpreadStateMachine

__all__ = [
    "ScheduleResult",
    "SignalHistory",
    "SignalScheduler",
    "SpreadState",
    "SpreadStateMachine",
    "active_signals",
    "merge_signals",
    "nearest_within",
]
