"""Pipeline cycle and live loop."""

from arbsim.pipeline.live import LiveRunner
from arbsim.pipeline.runner import CycleReport, Pipeline

__all__ = ["CycleReport", "LiveRunner", "Pipeline"]
