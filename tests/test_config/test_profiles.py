"""Tests for hedge/strategy profile loading and settings defaults."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from arbsim.config import AppSettings, MockExchangeSettings, RunnerSettings
from arbsim.exceptions import ConfigError
from arbsim.profiles import load_hedge_profile, load_profile

from helpers import hedge_config


def _write(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


class TestLoadProfile:
    """All three config shapes resolve to a StrategyProfile."""

    def test_plain_hedge_file(self, tmp_path: Path) -> None:
        profile = load_profile(_write(tmp_path / "hedge.json", hedge_config()))
        assert profile.hedge.leg_a.symbol == "TRXUSDT"
        assert profile.hedge.leg_b.exchange == "okx"
        assert profile.open_threshold == Decimal("0.005")
        assert profile.close_threshold == Decimal("0.001")
        assert profile.cooldown_ms == 60_000

    def test_embedded_hedge_config(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "strategy.json",
            {
                "strategy_name": "carry",
                "hedge_config": hedge_config(),
                "params": {"funding": {"position_size_usdt": 5000}},
            },
        )
        profile = load_profile(path)
        assert profile.strategy_name == "carry"
        assert profile.params.funding.position_size_usdt == Decimal("5000")

    def test_hedge_ref_resolves_sibling_directory(self, tmp_path: Path) -> None:
        _write(tmp_path / "config" / "hedge" / "trx.json", hedge_config())
        path = _write(
            tmp_path / "config" / "strategy" / "s.json",
            {"strategy_name": "ref", "hedge_ref": "trx"},
        )
        profile = load_profile(path)
        assert profile.hedge.hedge_name == "trx_binance_okx"

    def test_spread_params_override_hedge_thresholds(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "s.json",
            {
                "hedge_config": hedge_config(),
                "params": {
                    "spread": {
                        "open_threshold_pct": "0.01",
                        "close_threshold_pct": "0.002",
                        "cooldown_ms": 0,
                    }
                },
            },
        )
        profile = load_profile(path)
        assert profile.open_threshold == Decimal("0.01")
        assert profile.close_threshold == Decimal("0.002")
        assert profile.cooldown_ms == 0

    def test_contract_size_override(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "s.json",
            {
                "hedge_config": hedge_config(),
                "params": {"funding": {"contract_size_override": {"legB": 10}}},
            },
        )
        profile = load_profile(path)
        assert profile.contract_size("legA") == Decimal("1")
        assert profile.contract_size("legB") == Decimal("10")


class TestProfileErrors:
    """Every failure is a ConfigError naming the file."""

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_profile(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="invalid JSON"):
            load_profile(path)

    def test_missing_leg(self, tmp_path: Path) -> None:
        data = hedge_config()
        data["legs"] = data["legs"][:1]
        with pytest.raises(ConfigError, match="legA and one legB"):
            load_hedge_profile(_write(tmp_path / "h.json", data))

    def test_disabled_hedge(self, tmp_path: Path) -> None:
        data = hedge_config()
        data["enabled"] = False
        with pytest.raises(ConfigError, match="disabled"):
            load_profile(_write(tmp_path / "h.json", data))

    def test_close_threshold_must_be_below_open(self, tmp_path: Path) -> None:
        data = hedge_config()
        data["signal"]["spread_pct_thresholds"] = {"open": "0.001", "close": "0.002"}
        with pytest.raises(ConfigError, match="close must be below open"):
            load_profile(_write(tmp_path / "h.json", data))

    @pytest.mark.parametrize(
        "funding",
        [
            {"approx_price": 0},
            {"position_size_usdt": "-100"},
            {"contract_size_override": {"legB": 0}},
            {"open_threshold_annualized_pct": "0.02", "close_threshold_annualized_pct": "0.05"},
        ],
    )
    def test_invalid_funding_params(self, tmp_path: Path, funding: dict) -> None:
        path = _write(
            tmp_path / "s.json", {"hedge_config": hedge_config(), "params": {"funding": funding}}
        )
        with pytest.raises(ConfigError, match=r"s\.json: params\.funding"):
            load_profile(path)

    def test_zero_contract_size(self, tmp_path: Path) -> None:
        data = hedge_config()
        data["legs"][1]["contract_profile"] = {"contract_size": 0}
        with pytest.raises(ConfigError, match="contract_size"):
            load_profile(_write(tmp_path / "h.json", data))

    def test_missing_hedge_ref(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "strategy" / "s.json", {"hedge_ref": "ghost"})
        with pytest.raises(ConfigError, match="ghost.json"):
            load_profile(path)


class TestSettings:
    """Settings defaults and environment overrides."""

    def test_defaults(self) -> None:
        settings = AppSettings()
        assert settings.mock_server.base_url == "http://localhost:3000"
        assert settings.runner.max_retries == 3
        assert settings.data.history_symbol == "TRX"

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RUNNER_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("MOCK_SERVER_PORT", "4000")
        assert RunnerSettings().interval_seconds == 5.0
        assert MockExchangeSettings().port == 4000
