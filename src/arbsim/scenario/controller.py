"""Rule lifecycle: which scenario rule is current, switching and history.

The controller offers a coarse, single "current rule" view for operations
and logging. Per-point, per-target resolution is the mixer's job.

A switched rule gets the window [now - 1 min, now + duration] and a priority
that dominates every other rule in the set, so the next mix pass applies it.
Each change of current rule id is recorded and can be flushed to
<rule set stem>_history.json next to the rule set.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from arbsim.data.files import read_json, write_json_atomic
from arbsim.exceptions import ConfigError
from arbsim.logging import get_logger
from arbsim.scenario.models import (
    FundingOp,
    PriceOp,
    RuleSet,
    RuleTarget,
    ScenarioRule,
    parse_funding_op,
    parse_price_op,
)

logger = get_logger(__name__)

# Priority given to switched rules; always above hand-written segments.
SWITCH_PRIORITY = 210

_SWITCH_LEAD_MS = 60_000


@dataclass(frozen=True)
class RuleTemplate:
    """A named, reusable op chain that switch_rule can instantiate."""

    description: str
    funding: tuple[dict[str, Any], ...]
    price: tuple[dict[str, Any], ...]


RULE_TEMPLATES: dict[str, RuleTemplate] = {
    "seg_A": RuleTemplate(
        description="Raise funding and lift the relative spread slightly",
        funding=(
            {"type": "scale", "value": "1.3"},
            {"type": "offset", "value": "0"},
            {"type": "clamp", "min": "-0.005", "max": "0.005"},
        ),
        price=(
            {"type": "target_spread_pct", "value": "0.0015"},
            {"type": "noise", "mode": "gaussian", "amplitude": "0.0005", "seed": 42},
        ),
    ),
    "seg_B": RuleTemplate(
        description="Push the relative spread negative",
        funding=(
            {"type": "scale", "value": "1.5"},
            {"type": "clamp", "min": "-0.006", "max": "0.006"},
        ),
        price=({"type": "target_spread_pct", "value": "-0.0010"},),
    ),
    "seg_C": RuleTemplate(
        description="Extreme spread stress",
        funding=(
            {"type": "scale", "value": "2.0"},
            {"type": "clamp", "min": "-0.01", "max": "0.01"},
        ),
        price=({"type": "target_spread_pct", "value": "-0.020"},),
    ),
    "seg_funding_only": RuleTemplate(
        description="Boost funding hard, keep the market spread",
        funding=(
            {"type": "scale", "value": "5.0"},
            {"type": "offset", "value": "0.0005"},
        ),
        price=(),
    ),
    "default": RuleTemplate(
        description="No intervention, replay the real market",
        funding=(),
        price=(),
    ),
}


def validate_ops(ops: Any, where: str = "ops") -> tuple[tuple[FundingOp, ...], tuple[PriceOp, ...]]:
    """Parse an ops block, requiring both "funding" and "price" lists.

    Raises:
        ConfigError: If either list is missing or holds an unknown op.
    """
    if not isinstance(ops, dict):
        raise ConfigError(f"{where}: expected an object with 'funding' and 'price'")
    for key in ("funding", "price"):
        if not isinstance(ops.get(key), list):
            raise ConfigError(f"{where}.{key}: expected a list")
    funding = tuple(parse_funding_op(op, f"{where}.funding") for op in ops["funding"])
    price = tuple(parse_price_op(op, f"{where}.price") for op in ops["price"])
    return funding, price


def validate_rule(
    rule_id: str, start_time: int, end_time: int, ops: Any
) -> tuple[tuple[FundingOp, ...], tuple[PriceOp, ...]]:
    """Check a rule window and its ops before it is written to a rule set.

    Raises:
        ConfigError: If the window is empty or inverted, or ops are invalid.
    """
    if end_time <= start_time:
        raise ConfigError(f"segments[{rule_id}]: window end must be after start")
    return validate_ops(ops, f"segments[{rule_id}].ops")


@dataclass(frozen=True)
class RuleStatus:
    rule_id: str | None
    notes: str
    priority: int | None
    remaining_ms: int


class RuleController:
    """Owns a rule-set file and the history of current-rule changes.

    Args:
        path: Rule-set JSON file.
        now_fn: Wall clock in seconds, injected in tests.
    """

    def __init__(self, path: Path, now_fn: Callable[[], float] = time.time) -> None:
        self.path = Path(path)
        self._now_fn = now_fn
        self._current: ScenarioRule | None = None
        self._history: list[dict[str, Any]] = []

    @property
    def history_path(self) -> Path:
        return self.path.with_name(f"{self.path.stem}_history.json")

    def _now_ms(self) -> int:
        return int(self._now_fn() * 1000)

    # ──────────────────────────────────────────────
    # Persistence
    # ──────────────────────────────────────────────

    def load(self) -> RuleSet:
        """Read the rule set.

        Raises:
            ConfigError: If the file is missing or invalid.
        """
        if not self.path.exists():
            raise ConfigError(f"{self.path}: rule set not found")
        try:
            data = read_json(self.path)
        except ValueError as e:
            raise ConfigError(f"{self.path}: invalid JSON ({e})") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path}: expected a JSON object")
        return RuleSet.from_dict(data, source=str(self.path))

    def save(self, rule_set: RuleSet) -> None:
        rule_set.sort()
        write_json_atomic(self.path, rule_set.to_dict())

    # ──────────────────────────────────────────────
    # Current rule
    # ──────────────────────────────────────────────

    def active_rule_at(self, timestamp: int, rule_set: RuleSet | None = None) -> ScenarioRule | None:
        """Rule whose window contains timestamp; highest priority if several do."""
        rules = (rule_set or self.load()).segments
        containing = [r for r in rules if r.contains(timestamp)]
        if not containing:
            return None
        return max(containing, key=lambda r: r.priority)

    @property
    def current_rule(self) -> ScenarioRule | None:
        return self._current

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._history)

    def refresh(self) -> ScenarioRule | None:
        """Resolve the rule active right now, recording any change of id."""
        now = self._now_ms()
        rule = self.active_rule_at(now)
        previous_id = self._current.id if self._current else None
        new_id = rule.id if rule else None
        if new_id != previous_id:
            self._history.append(
                {
                    "timestamp": now,
                    "segmentId": new_id,
                    "previousSegmentId": previous_id,
                    "notes": rule.notes if rule else "",
                }
            )
            logger.info("rule_changed", rule_id=new_id, previous=previous_id)
        self._current = rule
        return rule

    def record_history(self) -> Path:
        """Append unsaved history entries to the history file."""
        existing: list[dict[str, Any]] = []
        if self.history_path.exists():
            existing = read_json(self.history_path)
        write_json_atomic(self.history_path, existing + self._history)
        logger.info("rule_history_saved", path=str(self.history_path), entries=len(self._history))
        self._history.clear()
        return self.history_path

    def status(self) -> RuleStatus:
        rule = self.refresh()
        if rule is None:
            return RuleStatus(rule_id=None, notes="", priority=None, remaining_ms=0)
        return RuleStatus(
            rule_id=rule.id,
            notes=rule.notes,
            priority=rule.priority,
            remaining_ms=max(0, rule.end_time - self._now_ms()),
        )

    # ──────────────────────────────────────────────
    # Mutation
    # ──────────────────────────────────────────────

    def switch_rule(self, rule_id: str, duration_minutes: int = 60) -> bool:
        """Make rule_id take effect now for duration_minutes.

        The rule comes from the rule set, or from RULE_TEMPLATES when the set
        does not have it. Returns False without touching the file when
        neither knows rule_id.
        """
        rule_set = self.load()
        rule = rule_set.get(rule_id)
        if rule is None:
            template = RULE_TEMPLATES.get(rule_id)
            if template is None:
                logger.error("rule_switch_unknown", rule_id=rule_id, path=str(self.path))
                return False
            target = self._template_target(rule_set)
            if target is None:
                logger.error("rule_switch_no_target", rule_id=rule_id, path=str(self.path))
                return False
            funding, price = validate_ops(
                {"funding": list(template.funding), "price": list(template.price)},
                f"templates.{rule_id}",
            )
            rule = ScenarioRule(
                id=rule_id,
                start_time=0,
                end_time=1,
                priority=SWITCH_PRIORITY,
                target=target,
                funding_ops=funding,
                price_ops=price,
                notes=template.description,
            )

        now = self._now_ms()
        others = [r.priority for r in rule_set.segments if r.id != rule_id]
        priority = max([SWITCH_PRIORITY] + [p + 1 for p in others])
        switched = ScenarioRule(
            id=rule.id,
            start_time=now - _SWITCH_LEAD_MS,
            end_time=now + duration_minutes * 60_000,
            priority=priority,
            target=rule.target,
            funding_ops=rule.funding_ops,
            price_ops=rule.price_ops,
            notes=rule.notes,
        )
        rule_set.upsert(switched)
        self.save(rule_set)
        logger.info(
            "rule_switched",
            rule_id=rule_id,
            priority=priority,
            start=switched.start_time,
            end=switched.end_time,
        )
        self.refresh()
        return True

    def create_rule(
        self,
        rule_id: str,
        start_time: int,
        end_time: int,
        ops: dict[str, Any],
        priority: int = 10,
        notes: str = "",
        target: RuleTarget | None = None,
    ) -> ScenarioRule:
        """Insert or replace a rule and persist the re-sorted set.

        Raises:
            ConfigError: If ops are invalid, the window is empty, or no
                target can be determined.
        """
        funding, price = validate_rule(rule_id, start_time, end_time, ops)
        rule_set = self.load()
        target = target or self._template_target(rule_set)
        if target is None:
            raise ConfigError(f"segments[{rule_id}]: no target and no default_target")
        rule = ScenarioRule(
            id=rule_id,
            start_time=start_time,
            end_time=end_time,
            priority=priority,
            target=target,
            funding_ops=funding,
            price_ops=price,
            notes=notes,
        )
        existed = rule_set.get(rule_id) is not None
        rule_set.upsert(rule)
        self.save(rule_set)
        logger.info("rule_saved", rule_id=rule_id, updated=existed, priority=priority)
        return rule

    @staticmethod
    def _template_target(rule_set: RuleSet) -> RuleTarget | None:
        if rule_set.default_target is not None:
            return rule_set.default_target
        if rule_set.segments:
            return rule_set.segments[0].target
        return None
