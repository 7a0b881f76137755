"""Live loop driver: reruns the pipeline every interval.

Cycles never overlap. After each cycle the loop sleeps only for what is left
of the interval. A failing cycle is retried up to max_retries times with
retry_delay between attempts; after that the error is logged and the loop
waits for the next interval.

Unless full_replay is set, signals and side effects are only produced for
data newer than the moment the runner booted. With full_replay the whole
history is replayed and the funding state is reset on the first cycle.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from arbsim.config import RunnerSettings
from arbsim.exceptions import ConfigError
from arbsim.logging import cycle_context, get_logger
from arbsim.pipeline.runner import CycleReport, Pipeline

logger = get_logger(__name__)


class LiveRunner:
    """Drives a Pipeline on a fixed cadence.

    Args:
        pipeline: Wired pipeline to run.
        settings: Interval, retries and lookback.
        full_replay: Replay from the beginning instead of from boot time.
        skip_before: Explicit skip-before (ms); overrides boot time.
        time_fn: Wall clock in seconds, injected in tests.
        sleep_fn: Async sleep, injected in tests.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        settings: RunnerSettings,
        full_replay: bool = False,
        skip_before: int | None = None,
        time_fn: Callable[[], float] = time.time,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._pipeline = pipeline
        self._settings = settings
        self._full_replay = full_replay
        self._time_fn = time_fn
        self._sleep = sleep_fn
        self._running = False
        self._cycles = 0
        if skip_before is not None:
            self.skip_before = skip_before
        elif full_replay:
            self.skip_before = 0
        else:
            self.skip_before = int(time_fn() * 1000)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycles(self) -> int:
        return self._cycles

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        logger.info("live_runner_stopping")
        self._running = False

    async def run(self, max_cycles: int | None = None) -> None:
        """Loop until stop() is called or max_cycles cycles have run.

        Raises:
            ConfigError: Invalid configuration is not retried.
        """
        self._running = True
        logger.info(
            "live_runner_started",
            interval=self._settings.interval_seconds,
            skip_before=self.skip_before,
            full_replay=self._full_replay,
            scenario_mode=self._pipeline.scenario_mode,
        )
        try:
            while self._running:
                started = self._time_fn()
                await self.run_once()
                if max_cycles is not None and self._cycles >= max_cycles:
                    break
                if not self._running:
                    break
                remaining = self._settings.interval_seconds - (self._time_fn() - started)
                if remaining > 0:
                    await self._sleep(remaining)
        except asyncio.CancelledError:
            logger.info("live_runner_cancelled")
        finally:
            self._running = False
            logger.info("live_runner_stopped", cycles=self._cycles)

    async def run_once(self) -> CycleReport | None:
        """One cycle with retries. Returns None if every attempt failed."""
        reset = self._full_replay and self._cycles == 0
        self._cycles += 1
        attempts = max(1, self._settings.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                with cycle_context(cycle=self._cycles, attempt=attempt):
                    return await self._pipeline.run_cycle(
                        skip_before=self.skip_before,
                        lookback_minutes=self._settings.lookback_minutes,
                        reset_funding=reset,
                    )
            except ConfigError:
                raise
            except Exception as e:
                logger.error(
                    "cycle_failed",
                    cycle=self._cycles,
                    attempt=attempt,
                    max_retries=attempts,
                    error=str(e),
                    exc_info=True,
                )
                if attempt < attempts:
                    await self._sleep(self._settings.retry_delay_seconds)
        logger.error("cycle_abandoned", cycle=self._cycles)
        return None
