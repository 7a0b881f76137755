"""Funding-carry settlement: rates, checkpoint and the incremental engine."""

from arbsim.funding.checkpoint import CheckpointStore
from arbsim.funding.engine import FundingRun, FundingSettlementEngine, contract_quantity
from arbsim.funding.models import ActivePosition, Checkpoint, FundingOutcome
from arbsim.funding.rates import FundingRateLookup, annualize, detect_interval_hours

__all__ = [
    "ActivePosition",
    "Checkpoint",
    "CheckpointStore",
    "FundingOutcome",
    "FundingRateLookup",
    "FundingRun",
    "FundingSettlementEngine",
    "annualize",
    "contract_quantity",
    "detect_interval_hours",
]
