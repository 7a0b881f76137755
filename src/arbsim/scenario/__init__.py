"""Scenario injection: rule models, the mixer and the rule controller."""

from arbsim.scenario.controller import RULE_TEMPLATES, RuleController, validate_ops, validate_rule
from arbsim.scenario.mixer import ScenarioMixer, find_rule, mix
from arbsim.scenario.models import RuleSet, RuleTarget, ScenarioRule

__all__ = [
    "RULE_TEMPLATES",
    "RuleController",
    "RuleSet",
    "RuleTarget",
    "ScenarioMixer",
    "ScenarioRule",
    "find_rule",
    "mix",
    "validate_ops",
    "validate_rule",
]
