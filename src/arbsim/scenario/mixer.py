"""Scenario mixer: applies prioritized, time-windowed rules to raw series.

For each point the highest-priority rule whose window contains the point's
own timestamp AND whose target names this leg and metric is applied; other
points pass through tagged "default". A rule never perturbs a leg it does
not target, even inside its active window, so a single-exchange stress
scenario runs against a stable counterpart.

Known gap: target_spread_pct needs the reference leg's price at the same
timestamp. With no exact match the point's own pre-mix price is used; there
is no interpolation or tolerance search here.

CRITICAL: All arithmetic is Decimal.
"""

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from arbsim.data.files import write_text_atomic
from arbsim.data.models import FundingPoint, Metric, MixedPoint, PricePoint
from arbsim.data.store import TimeSeriesStore
from arbsim.exceptions import DataGapError
from arbsim.logging import get_logger
from arbsim.profiles import HedgeProfile
from arbsim.scenario.models import (
    Noise,
    Offset,
    PriceOp,
    RuleSet,
    Scale,
    ScenarioRule,
    TargetSpreadPct,
)

logger = get_logger(__name__)

DEFAULT_SEGMENT = "default"


def find_rule(
    rules: Sequence[ScenarioRule],
    timestamp: int,
    exchange: str,
    symbol: str,
    metric: Metric,
) -> ScenarioRule | None:
    """Highest-priority rule matching (timestamp, exchange, symbol, metric)."""
    best: ScenarioRule | None = None
    for rule in rules:
        if rule.applies_to(timestamp, exchange, symbol, metric):
            if best is None or rule.priority > best.priority:
                best = rule
    return best


def _apply_price_ops(
    price: Decimal, reference: Decimal, ops: Sequence[PriceOp], timestamp: int
) -> Decimal:
    value = price
    for op in ops:
        if isinstance(op, TargetSpreadPct):
            value = op.apply(value, reference)
        elif isinstance(op, Noise):
            value = op.apply(value, timestamp)
        elif isinstance(op, (Scale, Offset)):
            value = op.apply(value)
    return value


def mix(
    series: Sequence[PricePoint] | Sequence[FundingPoint],
    rules: Sequence[ScenarioRule],
    exchange: str,
    symbol: str,
    metric: Metric,
    reference: Mapping[int, Decimal] | None = None,
    is_reference_leg: bool = False,
) -> list[MixedPoint]:
    """Mix one leg's series.

    Args:
        series: Raw points, ascending.
        rules: Candidate rules; order does not matter.
        exchange: Leg exchange, matched against rule targets.
        symbol: Leg symbol, matched against rule targets.
        metric: Which series this is.
        reference: Reference leg prices by timestamp, for target_spread_pct.
        is_reference_leg: True when this leg is the reference, so its own
            unmodified price is the reference.

    Returns:
        One MixedPoint per input point, same order.
    """
    reference = reference or {}
    mixed: list[MixedPoint] = []
    for point in series:
        original = point.value
        rule = find_rule(rules, point.timestamp, exchange, symbol, metric)
        if rule is None:
            mixed.append(
                MixedPoint(point.timestamp, original, original, DEFAULT_SEGMENT, metric)
            )
            continue

        if metric is Metric.FUNDING:
            value = original
            for op in rule.funding_ops:
                value = op.apply(value)
        else:
            if is_reference_leg:
                ref_price = original
            else:
                ref_price = reference.get(point.timestamp, original)
            value = _apply_price_ops(original, ref_price, rule.price_ops, point.timestamp)

        mixed.append(MixedPoint(point.timestamp, value, original, rule.id, metric))
    return mixed


@dataclass
class MixReport:
    """Outcome of a scenario mix run, one entry per written or skipped file."""

    scenario: str
    output_dir: Path
    written: dict[str, dict[str, int]] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)


class ScenarioMixer:
    """Mixes both legs of a hedge (prices and funding) for one rule set.

    Args:
        source: Store holding the raw series.
        output_root: Parent directory; output goes to output_root/<scenario>.
        time_fn: Clock used for the _mixed_at tag.
    """

    def __init__(
        self,
        source: TimeSeriesStore,
        output_root: Path,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._output_root = Path(output_root)
        self._time_fn = time_fn

    def output_store(self, scenario: str) -> TimeSeriesStore:
        return TimeSeriesStore(self._output_root / scenario)

    def mix_scenario(self, hedge: HedgeProfile, rule_set: RuleSet) -> MixReport:
        """Mix every leg file of the hedge and write the audit report.

        Missing or empty leg files are skipped with a warning; the rest of the
        scenario is still written.
        """
        out = self.output_store(rule_set.name)
        report = MixReport(scenario=rule_set.name, output_dir=out.data_dir)
        mixed_at = int(self._time_fn() * 1000)

        ref_leg = hedge.leg_a if hedge.alignment.time_source == "legA" else hedge.leg_b
        ref_prices = self._source.load_prices(ref_leg.exchange, ref_leg.symbol)
        reference = {p.timestamp: p.price for p in ref_prices}

        for leg in hedge.legs:
            for metric in (Metric.PRICE, Metric.FUNDING):
                path = self._source.path_for(metric, leg.exchange, leg.symbol)
                try:
                    series = self._source.load(metric, leg.exchange, leg.symbol, required=True)
                except DataGapError as e:
                    logger.warning("mix_leg_skipped", path=str(path), reason=str(e))
                    report.skipped[path.name] = str(e)
                    continue

                points = mix(
                    series,
                    rule_set.segments,
                    leg.exchange,
                    leg.symbol,
                    metric,
                    reference=reference,
                    is_reference_leg=leg.role == ref_leg.role,
                )
                written = out.save_mixed(leg.exchange, leg.symbol, points, metric, mixed_at)

                counts: dict[str, int] = {}
                for p in points:
                    counts[p.segment_id] = counts.get(p.segment_id, 0) + 1
                report.written[written.name] = counts
                logger.info(
                    "mix_leg_written",
                    path=str(written),
                    points=len(points),
                    segments=counts,
                )

        self._write_audit(rule_set, report, mixed_at)
        return report

    def _write_audit(self, rule_set: RuleSet, report: MixReport, mixed_at: int) -> None:
        lines = [
            f"# Audit Report: {rule_set.name}",
            "",
            f"Generated at: {mixed_at}",
            "",
            "## Segments",
        ]
        for rule in rule_set.segments:
            target = rule.target
            lines.append(
                f"- **{rule.id}**: {rule.start_time} to {rule.end_time} (Priority: {rule.priority})"
            )
            lines.append(f"  - Target: {target.exchange} {target.symbol}")
            lines.append(f"  - Notes: {rule.notes}")
        lines += ["", "## Files"]
        for name, counts in sorted(report.written.items()):
            summary = ", ".join(f"{seg}={n}" for seg, n in sorted(counts.items()))
            lines.append(f"- {name}: {summary}")
        for name, reason in sorted(report.skipped.items()):
            lines.append(f"- {name}: SKIPPED ({reason})")
        write_text_atomic(report.output_dir / "audit_report.md", "\n".join(lines) + "\n")
