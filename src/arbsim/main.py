"""Command-line entry point for the arbitrage simulation harness.

Subcommands:
  download          pull real prices and funding for both legs
  mix               rewrite the legs through the rule set into a scenario
  schedule          replay prices into HEDGE signals
  funding           advance the funding engine from its checkpoint
  translate         translate HEDGE history into orders and inject them
  rules list        show the rule set
  rules status      show the rule active now
  rules switch ID   make a rule (or a template) take effect now
  rules create ID   add or replace a rule
  live              rerun the whole pipeline every interval
  mock-server       serve the mock exchange

Exit codes: 0 success, 2 configuration error, 3 missing data.

Handles SIGINT/SIGTERM in live mode by letting the current cycle finish.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any

import uvicorn

from arbsim.config import AppSettings
from arbsim.context import EngineContext
from arbsim.data.fetcher import HistoricalFetcher
from arbsim.data.store import TimeSeriesStore
from arbsim.exceptions import ConfigError, DataGapError
from arbsim.execution.dispatch import dispatch, dispatch_items
from arbsim.execution.http_sink import MockExchangeSink
from arbsim.execution.recording_sink import RecordingSink
from arbsim.execution.sink import Sink
from arbsim.funding.engine import FundingRun
from arbsim.logging import get_logger, setup_logging
from arbsim.mock_exchange.app import create_app
from arbsim.mock_exchange.database import LedgerJournal
from arbsim.mock_exchange.ledger import MockLedger
from arbsim.models import Strategy, Veracity
from arbsim.pipeline.live import LiveRunner
from arbsim.pipeline.runner import Pipeline
from arbsim.profiles import StrategyProfile, load_profile
from arbsim.scenario.controller import RuleController
from arbsim.scenario.mixer import ScenarioMixer
from arbsim.scenario.models import format_local_time, parse_local_time
from arbsim.signals.history import SignalHistory
from arbsim.signals.scheduler import SignalScheduler
from arbsim.translator.engine import SignalTranslator

EXIT_CONFIG = 2
EXIT_DATA_GAP = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="arbsim",
        description="Market-simulation harness for cross-exchange arbitrage strategies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  arbsim download --days 3
  arbsim rules switch seg_B --duration 30
  arbsim mix && arbsim schedule --mixed --lookback 120
  arbsim live --scenario --full-replay
  arbsim mock-server --port 3000
        """,
    )
    parser.add_argument("--config", type=Path, help="Strategy profile JSON (default: <config_dir>/strategy.json)")
    parser.add_argument("--rules", type=Path, help="Rule set JSON (default: <config_dir>/mix_rules.json)")
    parser.add_argument("--data-dir", type=Path, help="Directory holding raw series")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    download = subparsers.add_parser("download", help="Download real series for both legs")
    download.add_argument("--days", type=int, help="Days of history to request")

    subparsers.add_parser("mix", help="Mix both legs through the rule set")

    schedule = subparsers.add_parser("schedule", help="Generate HEDGE signals")
    _add_replay_options(schedule)
    schedule.add_argument("--lookback", type=int, help="Only iterate the last N minutes")

    funding = subparsers.add_parser("funding", help="Run the funding engine")
    _add_replay_options(funding)
    funding.add_argument("--reset", action="store_true", help="Drop checkpoint and FUNDING history first")

    translate = subparsers.add_parser("translate", help="Translate HEDGE history and inject it")
    translate.add_argument("--mixed", action="store_true", help="Read funding rates from the scenario")
    translate.add_argument("--dry-run", action="store_true", help="Print items instead of injecting")

    rules = subparsers.add_parser("rules", help="Inspect or change scenario rules")
    rule_commands = rules.add_subparsers(dest="rules_command", required=True)
    rule_commands.add_parser("list", help="List rules")
    rule_commands.add_parser("status", help="Show the rule active now")
    switch = rule_commands.add_parser("switch", help="Activate a rule now")
    switch.add_argument("rule_id")
    switch.add_argument("--duration", type=int, default=60, help="Minutes (default: 60)")
    create = rule_commands.add_parser("create", help="Add or replace a rule")
    create.add_argument("rule_id")
    create.add_argument("--start", required=True, help='Local time "YYYY-MM-DD HH:MM"')
    create.add_argument("--end", required=True, help='Local time "YYYY-MM-DD HH:MM"')
    create.add_argument("--ops", required=True, help='JSON: {"funding": [...], "price": [...]}')
    create.add_argument("--priority", type=int, default=10)
    create.add_argument("--notes", default="")

    live = subparsers.add_parser("live", help="Run the pipeline every interval")
    live.add_argument("--scenario", action="store_true", help="Mix through the rule set each cycle")
    live.add_argument("--download", action="store_true", help="Download new data each cycle")
    live.add_argument("--full-replay", action="store_true", help="Replay all history, resetting funding")
    live.add_argument("--skip-before", type=int, help="Ignore data before this timestamp (ms)")
    live.add_argument("--lookback", type=int, help="Scheduler lookback in minutes")
    live.add_argument("--dry-run", action="store_true", help="Record side effects instead of posting")

    server = subparsers.add_parser("mock-server", help="Serve the mock exchange")
    server.add_argument("--host", help="Bind address")
    server.add_argument("--port", type=int, help="Port")
    server.add_argument("--no-journal", action="store_true", help="Keep state in memory only")

    return parser


def _add_replay_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--mixed", action="store_true", help="Read the mixed scenario (tags FAKE)")
    parser.add_argument("--skip-before", type=int, default=0, help="Ignore data before this timestamp (ms)")


# ──────────────────────────────────────────────
# Wiring
# ──────────────────────────────────────────────


class _Runtime:
    """Paths and shared objects resolved from settings and arguments."""

    def __init__(self, args: argparse.Namespace, settings: AppSettings) -> None:
        self.args = args
        self.settings = settings
        data = settings.data
        self.config_path = args.config or data.config_dir / "strategy.json"
        self.rules_path = args.rules or data.config_dir / "mix_rules.json"
        self.raw_store = TimeSeriesStore(args.data_dir or data.data_dir)
        self.signals_dir = data.signals_dir
        self.history = SignalHistory(self.signals_dir, data.history_symbol)
        self._profile: StrategyProfile | None = None

    @property
    def profile(self) -> StrategyProfile:
        if self._profile is None:
            self._profile = load_profile(self.config_path)
        return self._profile

    def rules(self) -> RuleController:
        return RuleController(self.rules_path)

    def mixer(self) -> ScenarioMixer:
        return ScenarioMixer(self.raw_store, self.settings.data.mixed_dir)

    def source(self, mixed: bool) -> tuple[TimeSeriesStore, Veracity]:
        if not mixed:
            return self.raw_store, Veracity.REAL
        rule_set = self.rules().load()
        return self.mixer().output_store(rule_set.name), Veracity.FAKE

    def sink(self, dry_run: bool = False) -> Sink:
        if dry_run or not self.settings.mock_server.enabled:
            return RecordingSink()
        return MockExchangeSink(self.settings.mock_server)


# ──────────────────────────────────────────────
# Commands
# ──────────────────────────────────────────────


async def _cmd_download(rt: _Runtime) -> int:
    days = rt.args.days or rt.settings.runner.download_days
    fetcher = HistoricalFetcher(rt.raw_store, rt.settings.download)
    legs = [(leg.exchange, leg.symbol) for leg in rt.profile.hedge.legs]
    try:
        results = await fetcher.download_legs(legs, days)
    finally:
        await fetcher.close()
    for name, (prices, funding) in results.items():
        print(f"{name}: +{prices} prices, +{funding} funding")
    return 0


async def _cmd_mix(rt: _Runtime) -> int:
    report = rt.mixer().mix_scenario(rt.profile.hedge, rt.rules().load())
    print(f"scenario {report.scenario} -> {report.output_dir}")
    for name, counts in sorted(report.written.items()):
        print(f"  {name}: {counts}")
    for name, reason in sorted(report.skipped.items()):
        print(f"  {name}: skipped ({reason})")
    return 0


async def _cmd_schedule(rt: _Runtime) -> int:
    store, veracity = rt.source(rt.args.mixed)
    result = SignalScheduler(rt.profile, rt.history).run(
        store,
        skip_before=rt.args.skip_before,
        lookback_minutes=rt.args.lookback,
        veracity=veracity,
    )
    print(
        f"processed={result.processed} aligned={result.aligned} "
        f"emitted={len(result.emitted)} appended={len(result.appended)}"
    )
    return 0


async def _cmd_funding(rt: _Runtime) -> int:
    store, veracity = rt.source(rt.args.mixed)
    run = FundingRun.for_profile(rt.profile, rt.signals_dir, rt.history)
    outcome = run.run(store, skip_before=rt.args.skip_before, reset=rt.args.reset, veracity=veracity)
    sink = rt.sink()
    try:
        report = await dispatch(sink, outcome.orders, outcome.incomes)
    finally:
        await sink.close()
    print(
        f"events={len(outcome.events)} appended={len(outcome.appended)} "
        f"orders={report.orders_ok} incomes={report.incomes_ok} failed={report.failed} "
        f"total_income={outcome.checkpoint.total_income}"
    )
    return 0


async def _cmd_translate(rt: _Runtime) -> int:
    store, _ = rt.source(rt.args.mixed)
    context = EngineContext(funding_stores=(store, rt.raw_store))
    translator = SignalTranslator(rt.profile, context)
    items = []
    for signal_ in rt.history.load():
        if signal_.strategy is Strategy.HEDGE:
            items.extend(translator.translate(signal_))

    if rt.args.dry_run:
        for item in items:
            print(json.dumps({"kind": item.kind.value, "exchange": item.exchange, **item.data.to_payload()}))
        return 0

    sink = rt.sink()
    try:
        report = await dispatch_items(sink, items)
    finally:
        await sink.close()
    print(f"items={len(items)} orders={report.orders_ok} incomes={report.incomes_ok} failed={report.failed}")
    return 0


async def _cmd_rules(rt: _Runtime) -> int:
    controller = rt.rules()
    command = rt.args.rules_command

    if command == "list":
        rule_set = controller.load()
        print(f"{rule_set.name} ({rule_set.timezone})")
        for rule in rule_set.segments:
            start = format_local_time(rule.start_time, rule_set.timezone)
            end = format_local_time(rule.end_time, rule_set.timezone)
            print(f"  {rule.id:<20} p={rule.priority:<4} {start} -> {end}  {rule.notes}")
        return 0

    if command == "status":
        status = controller.status()
        if status.rule_id is None:
            print("no rule active")
        else:
            print(
                f"{status.rule_id} p={status.priority} "
                f"remaining={status.remaining_ms // 60_000}m  {status.notes}"
            )
        controller.record_history()
        return 0

    if command == "switch":
        if not controller.switch_rule(rt.args.rule_id, rt.args.duration):
            print(f"unknown rule {rt.args.rule_id!r}", file=sys.stderr)
            return 1
        controller.record_history()
        print(f"switched to {rt.args.rule_id} for {rt.args.duration} minutes")
        return 0

    # create
    try:
        ops = json.loads(rt.args.ops)
    except ValueError as e:
        raise ConfigError(f"--ops: invalid JSON ({e})") from e
    timezone = controller.load().timezone
    rule = controller.create_rule(
        rt.args.rule_id,
        parse_local_time(rt.args.start, timezone),
        parse_local_time(rt.args.end, timezone),
        ops,
        priority=rt.args.priority,
        notes=rt.args.notes,
    )
    print(f"saved {rule.id} p={rule.priority}")
    return 0


async def _cmd_live(rt: _Runtime) -> int:
    logger = get_logger("arbsim.main")
    settings = rt.settings
    runner_settings = settings.runner
    if rt.args.lookback is not None:
        runner_settings = runner_settings.model_copy(update={"lookback_minutes": rt.args.lookback})

    scenario = rt.args.scenario
    fetcher = HistoricalFetcher(rt.raw_store, settings.download) if rt.args.download else None
    sink = rt.sink(rt.args.dry_run)
    pipeline = Pipeline(
        rt.profile,
        rt.raw_store,
        rt.history,
        sink,
        rt.signals_dir,
        mixer=rt.mixer() if scenario else None,
        rules=rt.rules() if scenario else None,
        fetcher=fetcher,
        download_days=runner_settings.download_days,
    )
    runner = LiveRunner(
        pipeline,
        runner_settings,
        full_replay=rt.args.full_replay,
        skip_before=rt.args.skip_before,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runner.stop)

    logger.info("live_mode_starting", scenario=scenario, download=rt.args.download)
    try:
        await runner.run()
    finally:
        await sink.close()
        if fetcher is not None:
            await fetcher.close()
    return 0


async def _cmd_mock_server(rt: _Runtime) -> int:
    mock = rt.settings.mock_server
    journal = None if rt.args.no_journal or not mock.db_path else LedgerJournal(mock.db_path)
    app = create_app(
        MockLedger(commission_rate=mock.commission_rate, leverage=mock.leverage),
        journal,
    )
    get_logger("arbsim.main").info(
        "mock_server_starting",
        host=rt.args.host or mock.bind_host,
        port=rt.args.port or mock.port,
        journal=mock.db_path if journal else None,
    )
    config = uvicorn.Config(
        app,
        host=rt.args.host or mock.bind_host,
        port=rt.args.port or mock.port,
        log_level="warning",
    )
    await uvicorn.Server(config).serve()
    return 0


_COMMANDS: dict[str, Any] = {
    "download": _cmd_download,
    "mix": _cmd_mix,
    "schedule": _cmd_schedule,
    "funding": _cmd_funding,
    "translate": _cmd_translate,
    "rules": _cmd_rules,
    "live": _cmd_live,
    "mock-server": _cmd_mock_server,
}


async def run(argv: list[str] | None = None, settings: AppSettings | None = None) -> int:
    """Parse arguments, run one command and map errors to exit codes."""
    args = build_parser().parse_args(argv)
    settings = settings or AppSettings()
    setup_logging(args.log_level or settings.log_level)
    logger = get_logger("arbsim.main")

    try:
        return await _COMMANDS[args.command](_Runtime(args, settings))
    except ConfigError as e:
        logger.error("config_error", command=args.command, error=str(e))
        print(f"config error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except DataGapError as e:
        logger.error("data_gap", command=args.command, path=e.path, error=str(e))
        print(f"missing data: {e}", file=sys.stderr)
        return EXIT_DATA_GAP


def main() -> None:
    """Synchronous entry point."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
