"""One pipeline cycle: rules, data, mix, signals, translation, funding.

Each cycle:
  1. REFRESH: resolve the current scenario rule and flush rule history
  2. DOWNLOAD: optionally pull new real data for both legs
  3. MIX: rewrite both legs through the rule set into the scenario directory
  4. SCHEDULE: replay prices into HEDGE signals (appended to history)
  5. TRANSLATE: turn newly appended HEDGE signals into orders and settlements
  6. FUNDING: advance the funding engine from its checkpoint
  7. SINK: inject every order and income record

Without a rule controller the cycle reads real data directly and tags
signals REAL; with one it reads the mixed scenario and tags them FAKE.
A stage that finds a required series missing is skipped for this cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from arbsim.context import EngineContext
from arbsim.data.fetcher import HistoricalFetcher
from arbsim.data.store import TimeSeriesStore
from arbsim.exceptions import DataGapError
from arbsim.execution.dispatch import DispatchReport, dispatch, dispatch_items
from arbsim.execution.sink import Sink
from arbsim.funding.engine import FundingRun
from arbsim.funding.models import FundingOutcome
from arbsim.logging import get_logger
from arbsim.models import Strategy, Veracity
from arbsim.profiles import StrategyProfile
from arbsim.scenario.controller import RuleController
from arbsim.scenario.mixer import MixReport, ScenarioMixer
from arbsim.signals.history import SignalHistory
from arbsim.signals.scheduler import ScheduleResult, SignalScheduler
from arbsim.translator.engine import SignalTranslator

logger = get_logger(__name__)


@dataclass
class CycleReport:
    """What one cycle did, stage by stage."""

    rule_id: str | None = None
    downloaded: dict[str, tuple[int, int]] = field(default_factory=dict)
    mix: MixReport | None = None
    schedule: ScheduleResult | None = None
    translated: int = 0
    funding: FundingOutcome | None = None
    dispatch: DispatchReport = field(default_factory=DispatchReport)
    skipped: dict[str, str] = field(default_factory=dict)


class Pipeline:
    """Wires the stages for one strategy profile.

    Args:
        profile: Resolved strategy profile.
        raw_store: Store holding downloaded real series.
        history: Shared signal history.
        sink: Destination for orders and income.
        signals_dir: Directory for the funding checkpoint.
        mixer: Scenario mixer; required when rules is given.
        rules: Rule controller; enables scenario mode.
        fetcher: Optional downloader, run at the start of every cycle.
        download_days: History window requested from the downloader.
        context: Engine context; a fresh one when omitted.
    """

    def __init__(
        self,
        profile: StrategyProfile,
        raw_store: TimeSeriesStore,
        history: SignalHistory,
        sink: Sink,
        signals_dir: Path,
        mixer: ScenarioMixer | None = None,
        rules: RuleController | None = None,
        fetcher: HistoricalFetcher | None = None,
        download_days: int = 1,
        context: EngineContext | None = None,
    ) -> None:
        if rules is not None and mixer is None:
            raise ValueError("scenario mode needs a mixer")
        self._profile = profile
        self._raw_store = raw_store
        self._history = history
        self._sink = sink
        self._mixer = mixer
        self._rules = rules
        self._fetcher = fetcher
        self._download_days = download_days
        self.context = context or EngineContext()
        self._scheduler = SignalScheduler(profile, history)
        self._translator = SignalTranslator(profile, self.context)
        self._funding = FundingRun.for_profile(profile, signals_dir, history)

    @property
    def scenario_mode(self) -> bool:
        return self._rules is not None

    async def run_cycle(
        self,
        skip_before: int = 0,
        lookback_minutes: int | None = None,
        reset_funding: bool = False,
    ) -> CycleReport:
        """Run every stage once.

        Args:
            skip_before: Ticks and funding events earlier than this produce
                no signals or side effects.
            lookback_minutes: Scheduler iteration window.
            reset_funding: Drop the funding checkpoint and FUNDING history
                before processing.

        Raises:
            ConfigError: If the rule set or profile is invalid.
        """
        report = CycleReport()
        hedge = self._profile.hedge

        if self._rules is not None:
            rule = self._rules.refresh()
            report.rule_id = rule.id if rule else None
            if self._rules.history:
                self._rules.record_history()

        if self._fetcher is not None:
            legs = [(leg.exchange, leg.symbol) for leg in hedge.legs]
            report.downloaded = await self._fetcher.download_legs(legs, self._download_days)

        store, veracity = self._raw_store, Veracity.REAL
        if self._rules is not None and self._mixer is not None:
            rule_set = self._rules.load()
            report.mix = self._mixer.mix_scenario(hedge, rule_set)
            store, veracity = self._mixer.output_store(rule_set.name), Veracity.FAKE

        self.context.funding_stores = (store, self._raw_store)
        self.context.invalidate()

        try:
            report.schedule = self._scheduler.run(
                store,
                skip_before=skip_before,
                lookback_minutes=lookback_minutes,
                veracity=veracity,
            )
        except DataGapError as e:
            logger.warning("stage_skipped", stage="schedule", path=e.path, reason=str(e))
            report.skipped["schedule"] = str(e)

        if report.schedule is not None:
            items = []
            for signal in report.schedule.appended:
                if signal.strategy is Strategy.HEDGE:
                    items.extend(self._translator.translate(signal))
            report.translated = len(items)
            report.dispatch.merge(await dispatch_items(self._sink, items))

        try:
            report.funding = self._funding.run(
                store, skip_before=skip_before, reset=reset_funding, veracity=veracity
            )
        except DataGapError as e:
            logger.warning("stage_skipped", stage="funding", path=e.path, reason=str(e))
            report.skipped["funding"] = str(e)

        if report.funding is not None:
            report.dispatch.merge(
                await dispatch(self._sink, report.funding.orders, report.funding.incomes)
            )

        logger.info(
            "cycle_complete",
            rule_id=report.rule_id,
            veracity=veracity.value,
            hedge_signals=len(report.schedule.appended) if report.schedule else 0,
            funding_events=len(report.funding.events) if report.funding else 0,
            translated=report.translated,
            orders_ok=report.dispatch.orders_ok,
            incomes_ok=report.dispatch.incomes_ok,
            failed=report.dispatch.failed,
        )
        return report
