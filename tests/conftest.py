"""Shared test fixtures for the arbitrage simulation harness."""

from decimal import Decimal
from pathlib import Path

import pytest

from arbsim.config import AppSettings, DataSettings, MockExchangeSettings, RunnerSettings
from arbsim.data.store import TimeSeriesStore
from arbsim.profiles import StrategyProfile
from arbsim.signals.history import SignalHistory

from helpers import hedge_config


@pytest.fixture
def profile() -> StrategyProfile:
    """Strategy profile with default funding params and a 60s cooldown."""
    return StrategyProfile.model_validate({"strategy_name": "test", "hedge": hedge_config()})


@pytest.fixture
def no_cooldown_profile() -> StrategyProfile:
    return StrategyProfile.model_validate(
        {"strategy_name": "test", "hedge": hedge_config(cooldown_ms=0)}
    )


@pytest.fixture
def store(tmp_path: Path) -> TimeSeriesStore:
    return TimeSeriesStore(tmp_path / "data")


@pytest.fixture
def signals_dir(tmp_path: Path) -> Path:
    return tmp_path / "signals"


@pytest.fixture
def history(signals_dir: Path) -> SignalHistory:
    return SignalHistory(signals_dir, "TRX")


@pytest.fixture
def mock_settings(tmp_path: Path) -> AppSettings:
    """AppSettings rooted in tmp_path with the mock server disabled."""
    return AppSettings(
        log_level="DEBUG",
        data=DataSettings(
            data_dir=tmp_path / "data",
            mixed_dir=tmp_path / "data" / "mixed",
            signals_dir=tmp_path / "signals",
            config_dir=tmp_path / "config",
        ),
        mock_server=MockExchangeSettings(enabled=False, db_path=""),
        runner=RunnerSettings(interval_seconds=0.0, max_retries=2, retry_delay_seconds=0.0),
    )


@pytest.fixture
def funding_rate() -> Decimal:
    return Decimal("0.0001")
