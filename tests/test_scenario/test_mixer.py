"""Tests for rule parsing and the scenario mixer."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from arbsim.data.models import FundingPoint, Metric, PricePoint
from arbsim.data.store import TimeSeriesStore
from arbsim.exceptions import ConfigError
from arbsim.profiles import StrategyProfile
from arbsim.scenario.mixer import ScenarioMixer, find_rule, mix
from arbsim.scenario.models import (
    Clamp,
    Noise,
    RuleSet,
    RuleTarget,
    Scale,
    ScenarioRule,
    TargetSpreadPct,
    format_local_time,
    parse_funding_op,
    parse_local_time,
    parse_price_op,
)

from helpers import MINUTE, seed_funding, seed_spreads

OKX = RuleTarget(exchange="okx", symbol="TRX-USDT-SWAP")
BINANCE = RuleTarget(exchange="binance", symbol="TRXUSDT")


def _rule(rule_id: str, priority: int, start: int = 0, end: int = 10 * MINUTE, **kw) -> ScenarioRule:
    return ScenarioRule(
        id=rule_id,
        start_time=start,
        end_time=end,
        priority=priority,
        target=kw.pop("target", OKX),
        **kw,
    )


class TestOps:
    """Op parsing and application."""

    def test_funding_chain(self) -> None:
        ops = [
            parse_funding_op({"type": "scale", "value": 1.3}),
            parse_funding_op({"type": "offset", "value": "0.001"}),
            parse_funding_op({"type": "clamp", "min": "-0.002", "max": "0.002"}),
        ]
        value = Decimal("0.001")
        for op in ops:
            value = op.apply(value)
        assert value == Decimal("0.002")

    def test_clamp_min_above_max_rejected(self) -> None:
        with pytest.raises(ConfigError, match="exceeds max"):
            parse_funding_op({"type": "clamp", "min": "1", "max": "0"})

    def test_unknown_funding_op(self) -> None:
        with pytest.raises(ConfigError, match="unknown funding op"):
            parse_funding_op({"type": "noise", "amplitude": "1"})

    def test_unknown_noise_mode(self) -> None:
        with pytest.raises(ConfigError, match="noise mode"):
            parse_price_op({"type": "noise", "mode": "pink", "amplitude": "0.1"})

    def test_target_spread_pct(self) -> None:
        op = TargetSpreadPct(Decimal("0.0015"))
        assert op.apply(Decimal("9"), Decimal("0.3")) == Decimal("0.3") * Decimal("1.0015")

    def test_noise_is_deterministic_per_timestamp(self) -> None:
        op = Noise(mode="gaussian", amplitude=Decimal("0.001"), seed=7)
        price = Decimal("0.3")
        assert op.apply(price, 60000) == op.apply(price, 60000)
        assert op.apply(price, 60000) != op.apply(price, 120000)

    def test_uniform_noise_bounded(self) -> None:
        op = Noise(mode="uniform", amplitude=Decimal("0.01"))
        for ts in range(0, 50 * MINUTE, MINUTE):
            assert abs(op.sample(ts)) <= Decimal("0.5")


class TestLocalTime:
    """Local wall-clock windows."""

    def test_utc(self) -> None:
        assert parse_local_time("1970-01-01 01:00", "UTC") == 3_600_000

    def test_timezone_offset(self) -> None:
        ts = parse_local_time("2025-12-30 09:00", "Asia/Shanghai")
        assert ts == 1_767_056_400_000
        assert format_local_time(ts, "Asia/Shanghai") == "2025-12-30 09:00"

    def test_bad_format(self) -> None:
        with pytest.raises(ConfigError, match="YYYY-MM-DD HH:MM"):
            parse_local_time("30/12/2025", "UTC")

    def test_unknown_timezone(self) -> None:
        with pytest.raises(ConfigError, match="timezone"):
            parse_local_time("2025-12-30 09:00", "Mars/Olympus")


class TestRuleSet:
    """Rule-set parsing."""

    def test_segments_sorted_by_priority_and_default_target(self) -> None:
        rule_set = RuleSet.from_dict(
            {
                "mix_name": "demo",
                "timezone": "UTC",
                "default_target": {"exchange": "okx", "symbol": "TRX-USDT-SWAP"},
                "segments": [
                    {"id": "low", "start_ts": 0, "end_ts": 10, "priority": 10},
                    {"id": "high", "start_ts": 0, "end_ts": 10, "priority": 200},
                ],
            }
        )
        assert [r.id for r in rule_set.segments] == ["high", "low"]
        assert rule_set.segments[0].target == OKX

    def test_window_is_half_open(self) -> None:
        rule = _rule("r", 10, start=0, end=MINUTE)
        assert rule.contains(0)
        assert not rule.contains(MINUTE)

    def test_missing_target_names_segment(self) -> None:
        with pytest.raises(ConfigError, match=r"segments\[orphan\]"):
            RuleSet.from_dict({"segments": [{"id": "orphan", "start_ts": 0, "end_ts": 1}]})

    def test_empty_window_rejected(self) -> None:
        with pytest.raises(ConfigError, match="end must be after start"):
            ScenarioRule.from_dict(
                {"id": "r", "start_ts": 5, "end_ts": 5}, default_target=OKX
            )

    def test_missing_segments(self) -> None:
        with pytest.raises(ConfigError, match="segments"):
            RuleSet.from_dict({"mix_name": "x"})

    def test_to_dict_keeps_unknown_keys(self) -> None:
        data = {"mix_name": "m", "description": "keep me", "segments": []}
        assert RuleSet.from_dict(data).to_dict()["description"] == "keep me"


class TestFindRule:
    """Per-point rule resolution."""

    def test_highest_priority_wins(self) -> None:
        rules = [_rule("low", 10), _rule("high", 200)]
        assert find_rule(rules, MINUTE, "okx", "TRX-USDT-SWAP", Metric.PRICE).id == "high"

    def test_untargeted_leg_never_matches(self) -> None:
        rules = [_rule("okx_only", 200)]
        assert find_rule(rules, MINUTE, "binance", "TRXUSDT", Metric.PRICE) is None

    def test_metric_must_be_listed(self) -> None:
        target = RuleTarget("okx", "TRX-USDT-SWAP", frozenset({Metric.FUNDING}))
        rules = [_rule("funding_only", 10, target=target)]
        assert find_rule(rules, MINUTE, "okx", "TRX-USDT-SWAP", Metric.PRICE) is None


class TestMix:
    """mix() over a single leg."""

    def test_priority_200_overrides_10(self) -> None:
        rules = [
            _rule("low", 10, funding_ops=(Scale(Decimal("2")),)),
            _rule("high", 200, funding_ops=(Scale(Decimal("3")),)),
        ]
        series = [FundingPoint(timestamp=MINUTE, rate=Decimal("0.0001"))]
        [point] = mix(series, rules, "okx", "TRX-USDT-SWAP", Metric.FUNDING)
        assert point.segment_id == "high"
        assert point.value == Decimal("0.0003")
        assert point.original_value == Decimal("0.0001")

    def test_points_outside_window_pass_through(self) -> None:
        rules = [_rule("r", 10, start=0, end=MINUTE, funding_ops=(Clamp(Decimal("0"), Decimal("0")),))]
        series = [FundingPoint(0, Decimal("0.5")), FundingPoint(MINUTE, Decimal("0.5"))]
        mixed = mix(series, rules, "okx", "TRX-USDT-SWAP", Metric.FUNDING)
        assert [(p.segment_id, p.value) for p in mixed] == [
            ("r", Decimal("0")),
            ("default", Decimal("0.5")),
        ]

    def test_target_spread_uses_reference_at_same_timestamp(self) -> None:
        rules = [_rule("spread", 10, price_ops=(TargetSpreadPct(Decimal("0.01")),))]
        series = [PricePoint(0, Decimal("0.5")), PricePoint(MINUTE, Decimal("0.5"))]
        reference = {0: Decimal("0.3")}
        mixed = mix(series, rules, "okx", "TRX-USDT-SWAP", Metric.PRICE, reference=reference)
        assert mixed[0].value == Decimal("0.303")
        # no reference price at MINUTE: falls back to the point's own price
        assert mixed[1].value == Decimal("0.505")

    def test_reference_leg_uses_own_price(self) -> None:
        rules = [_rule("spread", 10, target=BINANCE, price_ops=(TargetSpreadPct(Decimal("0.01")),))]
        series = [PricePoint(0, Decimal("0.3"))]
        mixed = mix(
            series,
            rules,
            "binance",
            "TRXUSDT",
            Metric.PRICE,
            reference={0: Decimal("9")},
            is_reference_leg=True,
        )
        assert mixed[0].value == Decimal("0.303")


class TestScenarioMixer:
    """mix_scenario writes both legs, both metrics, and the audit report."""

    def test_writes_scenario_directory(
        self, store: TimeSeriesStore, profile: StrategyProfile, tmp_path: Path
    ) -> None:
        seed_spreads(store, ["0", "0", "0"])
        seed_funding(store, ["0.0001"], ["0.0001"])
        rule_set = RuleSet(
            name="stress",
            segments=[
                _rule("wide", 100, start=MINUTE, end=2 * MINUTE,
                      price_ops=(TargetSpreadPct(Decimal("0.02")),),
                      funding_ops=(Scale(Decimal("2")),)),
            ],
        )
        mixer = ScenarioMixer(store, tmp_path / "mixed", time_fn=lambda: 1.0)

        report = mixer.mix_scenario(profile.hedge, rule_set)

        out = mixer.output_store("stress")
        assert report.output_dir == tmp_path / "mixed" / "stress"
        assert report.written["okx_TRX-USDT-SWAP.json"] == {"default": 2, "wide": 1}
        assert report.written["binance_TRXUSDT.json"] == {"default": 3}
        okx = out.load_prices("okx", "TRX-USDT-SWAP")
        assert okx[1].price == Decimal("0.306")
        assert okx[0].price == Decimal("0.3")
        # funding at ts=0 is outside the window
        assert out.load_funding("okx", "TRX-USDT-SWAP")[0].rate == Decimal("0.0001")
        record = json.loads(out.price_path("okx", "TRX-USDT-SWAP").read_text())[1]
        assert record["_segment"] == "wide"
        assert record["_mixed_at"] == 1000
        audit = (report.output_dir / "audit_report.md").read_text()
        assert "# Audit Report: stress" in audit
        assert "**wide**" in audit

    def test_missing_leg_file_is_skipped(
        self, store: TimeSeriesStore, profile: StrategyProfile, tmp_path: Path
    ) -> None:
        seed_spreads(store, ["0"])
        mixer = ScenarioMixer(store, tmp_path / "mixed")

        report = mixer.mix_scenario(profile.hedge, RuleSet(name="s"))

        assert set(report.written) == {"binance_TRXUSDT.json", "okx_TRX-USDT-SWAP.json"}
        assert set(report.skipped) == {
            "binance_funding_TRXUSDT.json",
            "okx_funding_TRX-USDT-SWAP.json",
        }
        assert "SKIPPED" in (report.output_dir / "audit_report.md").read_text()
