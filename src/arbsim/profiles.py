"""Hedge and strategy profiles loaded from JSON config files.

A hedge profile names the two legs (exchange, symbol, contract and funding
calendar), how their price streams are aligned and the spread thresholds.
A strategy profile either embeds a hedge (hedge_config), references one by
name under config/hedge/ (hedge_ref), or is itself a plain hedge file. All
three shapes resolve to a StrategyProfile.

CRITICAL: Thresholds, sizes and prices are Decimal.
"""

from decimal import Decimal
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from arbsim.data.files import read_json
from arbsim.exceptions import ConfigError
from arbsim.logging import get_logger

logger = get_logger(__name__)


class ContractProfile(BaseModel):
    contract_size: Decimal = Field(default=Decimal("1"), gt=0)
    leverage_default: int = 1


class FundingProfile(BaseModel):
    """Settlement calendar: boundaries at start_time + k * interval_hours."""

    interval_hours: int = Field(default=8, gt=0)
    start_time: int = 0


class LegConfig(BaseModel):
    role: Literal["legA", "legB"]
    exchange: str
    symbol: str
    contract_profile: ContractProfile = ContractProfile()
    funding_profile: FundingProfile = FundingProfile()


class AlignmentConfig(BaseModel):
    time_source: Literal["legA", "legB"] = "legA"
    tolerance_ms: int = 2000


class SpreadThresholds(BaseModel):
    open: Decimal = Decimal("0.005")
    close: Decimal = Decimal("0.001")


class SignalConfig(BaseModel):
    spread_pct_thresholds: SpreadThresholds = SpreadThresholds()
    cooldown_ms: int = 60_000


class HedgeProfile(BaseModel):
    """Two-leg hedge definition."""

    hedge_name: str
    enabled: bool = True
    legs: list[LegConfig]
    alignment: AlignmentConfig = AlignmentConfig()
    signal: SignalConfig = SignalConfig()

    @model_validator(mode="after")
    def _require_both_legs(self) -> "HedgeProfile":
        roles = [leg.role for leg in self.legs]
        if "legA" not in roles or "legB" not in roles:
            raise ValueError("legs must include one legA and one legB")
        return self

    @property
    def leg_a(self) -> LegConfig:
        return next(leg for leg in self.legs if leg.role == "legA")

    @property
    def leg_b(self) -> LegConfig:
        return next(leg for leg in self.legs if leg.role == "legB")


class SpreadParams(BaseModel):
    open_threshold_pct: Decimal | None = None
    close_threshold_pct: Decimal | None = None
    cooldown_ms: int = 60_000


class ContractSizeOverride(BaseModel):
    model_config = {"populate_by_name": True}

    leg_a: Decimal | None = Field(default=None, alias="legA", gt=0)
    leg_b: Decimal | None = Field(default=None, alias="legB", gt=0)


class FundingParams(BaseModel):
    """Funding-carry strategy parameters."""

    open_threshold_annualized_pct: Decimal = Decimal("0.10")
    close_threshold_annualized_pct: Decimal = Decimal("0.02")
    position_size_usdt: Decimal = Field(default=Decimal("10000"), gt=0)
    approx_price: Decimal = Field(default=Decimal("0.3"), gt=0)
    contract_size_override: ContractSizeOverride = ContractSizeOverride()

    @model_validator(mode="after")
    def _close_below_open(self) -> "FundingParams":
        if self.close_threshold_annualized_pct >= self.open_threshold_annualized_pct:
            raise ValueError("close_threshold_annualized_pct must be below open_threshold_annualized_pct")
        return self


class StrategyParams(BaseModel):
    spread: SpreadParams | None = None
    funding: FundingParams = FundingParams()


class StrategyProfile(BaseModel):
    """A resolved strategy: its hedge plus strategy parameters."""

    strategy_name: str = ""
    hedge: HedgeProfile
    params: StrategyParams = StrategyParams()

    @property
    def open_threshold(self) -> Decimal:
        spread = self.params.spread
        if spread is not None and spread.open_threshold_pct is not None:
            return spread.open_threshold_pct
        return self.hedge.signal.spread_pct_thresholds.open

    @property
    def close_threshold(self) -> Decimal:
        spread = self.params.spread
        if spread is not None and spread.close_threshold_pct is not None:
            return spread.close_threshold_pct
        return self.hedge.signal.spread_pct_thresholds.close

    @property
    def cooldown_ms(self) -> int:
        if self.params.spread is not None:
            return self.params.spread.cooldown_ms
        return self.hedge.signal.cooldown_ms

    def contract_size(self, role: str) -> Decimal:
        """Contract size for a leg, honoring the funding override."""
        override = self.params.funding.contract_size_override
        leg = self.hedge.leg_a if role == "legA" else self.hedge.leg_b
        value = override.leg_a if role == "legA" else override.leg_b
        return value if value is not None else leg.contract_profile.contract_size


# ──────────────────────────────────────────────
# Loaders
# ──────────────────────────────────────────────


def _read_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"{path}: config file not found")
    try:
        data = read_json(path)
    except ValueError as e:
        raise ConfigError(f"{path}: invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a JSON object")
    return data


def _format_errors(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in e.errors()
    )


def load_hedge_profile(path: Path) -> HedgeProfile:
    """Load and validate a standalone hedge config.

    Raises:
        ConfigError: If the file is missing, not JSON, or fails validation.
    """
    data = _read_config(path)
    try:
        return HedgeProfile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{path}: {_format_errors(e)}") from e


def load_profile(path: Path, hedge_dir: Path | None = None) -> StrategyProfile:
    """Resolve a strategy or hedge config file into a StrategyProfile.

    Args:
        path: Strategy file (hedge_config or hedge_ref) or plain hedge file.
        hedge_dir: Where hedge_ref names are looked up. Defaults to the
            "hedge" directory next to the strategy file's parent.

    Raises:
        ConfigError: If any referenced file is missing or invalid.
    """
    data = _read_config(path)

    if "hedge_config" in data:
        hedge_data = data["hedge_config"]
    elif "hedge_ref" in data:
        ref_dir = hedge_dir if hedge_dir is not None else path.parent.parent / "hedge"
        ref_path = ref_dir / f"{data['hedge_ref']}.json"
        logger.debug("hedge_ref_resolved", strategy=str(path), hedge=str(ref_path))
        hedge_data = _read_config(ref_path)
    else:
        hedge_data = data
        data = {}

    try:
        hedge = HedgeProfile.model_validate(hedge_data)
        profile = StrategyProfile.model_validate(
            {
                "strategy_name": data.get("strategy_name", ""),
                "hedge": hedge,
                "params": data.get("params", {}),
            }
        )
    except ValidationError as e:
        raise ConfigError(f"{path}: {_format_errors(e)}") from e

    if not profile.hedge.enabled:
        raise ConfigError(f"{path}: hedge {profile.hedge.hedge_name!r} is disabled")
    if profile.close_threshold >= profile.open_threshold:
        raise ConfigError(
            f"{path}: signal.spread_pct_thresholds.close must be below open"
        )
    return profile
