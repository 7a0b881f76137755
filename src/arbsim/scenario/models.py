"""Scenario rule models: targets, op chains and rule sets.

A rule set file looks like:

    {
      "mix_name": "demo_mix_trx_okx_binance",
      "timezone": "Asia/Shanghai",
      "default_target": {"exchange": "okx", "symbol": "TRX-USDT-SWAP",
                         "metrics": ["funding", "price"]},
      "segments": [
        {"id": "seg_A", "start_local": "2025-12-30 09:00",
         "end_local": "2025-12-30 10:00", "priority": 10,
         "target": {...}, "ops": {"funding": [...], "price": [...]},
         "notes": "..."}
      ]
    }

Windows are half-open [start, end). Segments may give exact start_ts/end_ts
(ms) instead of, or in addition to, local times; exact values win.

CRITICAL: Op parameters are Decimal.
"""

import random
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from arbsim.data.models import Metric
from arbsim.exceptions import ConfigError

LOCAL_TIME_FORMAT = "%Y-%m-%d %H:%M"


def _zone(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"timezone: unknown timezone {timezone!r}") from e


def parse_local_time(value: str, timezone: str) -> int:
    """Parse "YYYY-MM-DD HH:MM" in the given timezone to Unix milliseconds."""
    try:
        naive = datetime.strptime(value, LOCAL_TIME_FORMAT)
    except ValueError as e:
        raise ConfigError(f"segments: bad local time {value!r}, expected YYYY-MM-DD HH:MM") from e
    return int(naive.replace(tzinfo=_zone(timezone)).timestamp() * 1000)


def format_local_time(ts_ms: int, timezone: str) -> str:
    """Render Unix milliseconds as "YYYY-MM-DD HH:MM" in the given timezone."""
    return datetime.fromtimestamp(ts_ms / 1000, tz=_zone(timezone)).strftime(LOCAL_TIME_FORMAT)


def _dec(data: dict[str, Any], key: str, where: str) -> Decimal:
    if key not in data:
        raise ConfigError(f"{where}: missing {key!r}")
    try:
        return Decimal(str(data[key]))
    except InvalidOperation as e:
        raise ConfigError(f"{where}.{key}: expected a number, got {data[key]!r}") from e


def _int(data: dict[str, Any], key: str, default: int, where: str) -> int:
    value = data.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}.{key}: expected an integer, got {value!r}") from e


def _mapping(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{where}: expected an object, got {type(value).__name__}")
    return value


# ──────────────────────────────────────────────
# Ops
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class Scale:
    factor: Decimal

    def apply(self, value: Decimal) -> Decimal:
        return value * self.factor

    def to_dict(self) -> dict[str, Any]:
        return {"type": "scale", "value": str(self.factor)}


@dataclass(frozen=True)
class Offset:
    delta: Decimal

    def apply(self, value: Decimal) -> Decimal:
        return value + self.delta

    def to_dict(self) -> dict[str, Any]:
        return {"type": "offset", "value": str(self.delta)}


@dataclass(frozen=True)
class Clamp:
    min: Decimal
    max: Decimal

    def apply(self, value: Decimal) -> Decimal:
        return max(self.min, min(self.max, value))

    def to_dict(self) -> dict[str, Any]:
        return {"type": "clamp", "min": str(self.min), "max": str(self.max)}


@dataclass(frozen=True)
class TargetSpreadPct:
    """Pin the price at reference * (1 + pct)."""

    pct: Decimal

    def apply(self, value: Decimal, reference: Decimal) -> Decimal:
        return reference * (1 + self.pct)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "target_spread_pct", "value": str(self.pct)}


@dataclass(frozen=True)
class Noise:
    """Relative price noise, deterministic per (seed, timestamp).

    gaussian draws z ~ N(0, 1); uniform draws z ~ U(-0.5, 0.5). The price
    becomes price * (1 + z * amplitude).
    """

    mode: Literal["uniform", "gaussian"]
    amplitude: Decimal
    seed: int = 42

    def sample(self, timestamp: int) -> Decimal:
        rng = random.Random(self.seed + timestamp)
        z = rng.gauss(0.0, 1.0) if self.mode == "gaussian" else rng.random() - 0.5
        return Decimal(repr(z))

    def apply(self, value: Decimal, timestamp: int) -> Decimal:
        return value * (1 + self.sample(timestamp) * self.amplitude)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "noise",
            "mode": self.mode,
            "amplitude": str(self.amplitude),
            "seed": self.seed,
        }


FundingOp = Union[Scale, Offset, Clamp]
PriceOp = Union[Scale, Offset, TargetSpreadPct, Noise]


def parse_funding_op(data: dict[str, Any], where: str = "ops.funding") -> FundingOp:
    """Build a funding op from its JSON form.

    Raises:
        ConfigError: For unknown op types or missing parameters.
    """
    data = _mapping(data, where)
    op_type = data.get("type")
    if op_type == "scale":
        return Scale(_dec(data, "value", where))
    if op_type == "offset":
        return Offset(_dec(data, "value", where))
    if op_type == "clamp":
        low, high = _dec(data, "min", where), _dec(data, "max", where)
        if low > high:
            raise ConfigError(f"{where}: clamp min {low} exceeds max {high}")
        return Clamp(low, high)
    raise ConfigError(f"{where}: unknown funding op type {op_type!r}")


def parse_price_op(data: dict[str, Any], where: str = "ops.price") -> PriceOp:
    """Build a price op from its JSON form.

    Raises:
        ConfigError: For unknown op types, noise modes, or missing parameters.
    """
    data = _mapping(data, where)
    op_type = data.get("type")
    if op_type == "target_spread_pct":
        return TargetSpreadPct(_dec(data, "value", where))
    if op_type == "noise":
        mode = data.get("mode", "uniform")
        if mode not in ("uniform", "gaussian"):
            raise ConfigError(f"{where}: unknown noise mode {mode!r}")
        return Noise(
            mode=mode,
            amplitude=_dec(data, "amplitude", where),
            seed=_int(data, "seed", 42, where),
        )
    if op_type == "scale":
        return Scale(_dec(data, "value", where))
    if op_type == "offset":
        return Offset(_dec(data, "value", where))
    raise ConfigError(f"{where}: unknown price op type {op_type!r}")


# ──────────────────────────────────────────────
# Rules
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class RuleTarget:
    exchange: str
    symbol: str
    metrics: frozenset[Metric] = frozenset({Metric.FUNDING, Metric.PRICE})

    def matches(self, exchange: str, symbol: str, metric: Metric) -> bool:
        return self.exchange == exchange and self.symbol == symbol and metric in self.metrics

    def to_dict(self) -> dict[str, Any]:
        ordered = [m.value for m in (Metric.FUNDING, Metric.PRICE) if m in self.metrics]
        return {"exchange": self.exchange, "symbol": self.symbol, "metrics": ordered}

    @classmethod
    def from_dict(cls, data: dict[str, Any], where: str = "target") -> "RuleTarget":
        data = _mapping(data, where)
        try:
            metrics = frozenset(Metric(m) for m in data.get("metrics", ["funding", "price"]))
            return cls(exchange=str(data["exchange"]), symbol=str(data["symbol"]), metrics=metrics)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"{where}: invalid target ({e})") from e


@dataclass(frozen=True)
class ScenarioRule:
    """A time-windowed, prioritized perturbation of one leg's series."""

    id: str
    start_time: int
    end_time: int
    priority: int
    target: RuleTarget
    funding_ops: tuple[FundingOp, ...] = ()
    price_ops: tuple[PriceOp, ...] = ()
    notes: str = ""

    def contains(self, timestamp: int) -> bool:
        return self.start_time <= timestamp < self.end_time

    def applies_to(self, timestamp: int, exchange: str, symbol: str, metric: Metric) -> bool:
        return self.contains(timestamp) and self.target.matches(exchange, symbol, metric)

    def with_window(self, start_time: int, end_time: int) -> "ScenarioRule":
        return replace(self, start_time=start_time, end_time=end_time)

    def to_dict(self, timezone: str = "UTC") -> dict[str, Any]:
        return {
            "id": self.id,
            "start_local": format_local_time(self.start_time, timezone),
            "end_local": format_local_time(self.end_time, timezone),
            "start_ts": self.start_time,
            "end_ts": self.end_time,
            "priority": self.priority,
            "target": self.target.to_dict(),
            "ops": {
                "funding": [op.to_dict() for op in self.funding_ops],
                "price": [op.to_dict() for op in self.price_ops],
            },
            "notes": self.notes,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        timezone: str = "UTC",
        default_target: RuleTarget | None = None,
    ) -> "ScenarioRule":
        """Parse one segment.

        Raises:
            ConfigError: Naming the segment id and the offending key.
        """
        data = _mapping(data, "segments[?]")
        rule_id = str(data.get("id", ""))
        where = f"segments[{rule_id or '?'}]"
        if not rule_id:
            raise ConfigError(f"{where}: missing 'id'")

        start = _window_edge(data, "start", timezone, where)
        end = _window_edge(data, "end", timezone, where)
        if end <= start:
            raise ConfigError(f"{where}: window end must be after start")

        if "target" in data:
            target = RuleTarget.from_dict(data["target"], f"{where}.target")
        elif default_target is not None:
            target = default_target
        else:
            raise ConfigError(f"{where}: missing 'target' and no default_target")

        ops = _mapping(data.get("ops", {}), f"{where}.ops")
        funding_ops = ops.get("funding", [])
        price_ops = ops.get("price", [])
        for key, value in (("funding", funding_ops), ("price", price_ops)):
            if not isinstance(value, list):
                raise ConfigError(f"{where}.ops.{key}: expected a list")
        return cls(
            id=rule_id,
            start_time=start,
            end_time=end,
            priority=_int(data, "priority", 10, where),
            target=target,
            funding_ops=tuple(
                parse_funding_op(op, f"{where}.ops.funding") for op in funding_ops
            ),
            price_ops=tuple(
                parse_price_op(op, f"{where}.ops.price") for op in price_ops
            ),
            notes=str(data.get("notes", "")),
        )


def _window_edge(data: dict[str, Any], edge: str, timezone: str, where: str) -> int:
    if f"{edge}_ts" in data:
        return _int(data, f"{edge}_ts", 0, where)
    if f"{edge}_local" in data:
        return parse_local_time(str(data[f"{edge}_local"]), timezone)
    raise ConfigError(f"{where}: missing '{edge}_local' or '{edge}_ts'")


@dataclass
class RuleSet:
    """A scenario: its timezone, default target and prioritized segments."""

    name: str
    timezone: str = "UTC"
    default_target: RuleTarget | None = None
    segments: list[ScenarioRule] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)

    def sort(self) -> None:
        """Order segments by priority, highest first."""
        self.segments.sort(key=lambda r: r.priority, reverse=True)

    def get(self, rule_id: str) -> ScenarioRule | None:
        return next((r for r in self.segments if r.id == rule_id), None)

    def upsert(self, rule: ScenarioRule) -> None:
        for i, existing in enumerate(self.segments):
            if existing.id == rule.id:
                self.segments[i] = rule
                break
        else:
            self.segments.append(rule)
        self.sort()

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extras)
        data["mix_name"] = self.name
        data["timezone"] = self.timezone
        if self.default_target is not None:
            data["default_target"] = self.default_target.to_dict()
        data["segments"] = [r.to_dict(self.timezone) for r in self.segments]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str = "rule set") -> "RuleSet":
        if not isinstance(data.get("segments"), list):
            raise ConfigError(f"{source}: missing 'segments' array")
        timezone = str(data.get("timezone", "UTC"))
        _zone(timezone)
        default_target = (
            RuleTarget.from_dict(data["default_target"], "default_target")
            if "default_target" in data
            else None
        )
        try:
            segments = [
                ScenarioRule.from_dict(seg, timezone, default_target) for seg in data["segments"]
            ]
        except ConfigError as e:
            raise ConfigError(f"{source}: {e}") from e
        extras = {
            k: v
            for k, v in data.items()
            if k not in ("mix_name", "mixer_name", "timezone", "default_target", "segments")
        }
        rule_set = cls(
            name=str(data.get("mix_name", data.get("mixer_name", "scenario"))),
            timezone=timezone,
            default_target=default_target,
            segments=segments,
            extras=extras,
        )
        rule_set.sort()
        return rule_set
