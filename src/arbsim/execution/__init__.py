"""Sinks for orders and funding income."""

from arbsim.execution.dispatch import DispatchReport, dispatch, dispatch_items
from arbsim.execution.http_sink import MockExchangeSink
from arbsim.execution.recording_sink import RecordingSink
from arbsim.execution.sink import Sink, SinkResult

__all__ = [
    "DispatchReport",
    "MockExchangeSink",
    "RecordingSink",
    "Sink",
    "SinkResult",
    "dispatch",
    "dispatch_items",
]
