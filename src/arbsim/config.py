"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class DataSettings(BaseSettings):
    """On-disk layout for series, mixed scenarios, signals and configs.

    All fields configurable via DATA_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="DATA_")

    data_dir: Path = Path("data")
    mixed_dir: Path = Path("data/mixed")
    signals_dir: Path = Path("signals")
    config_dir: Path = Path("config")
    history_symbol: str = "TRX"  # suffix of the shared history/active-view files


class MockExchangeSettings(BaseSettings):
    """Mock exchange server connection settings."""

    model_config = SettingsConfigDict(env_prefix="MOCK_SERVER_")

    host: str = "localhost"
    port: int = 3000
    timeout_seconds: float = 3.0
    enabled: bool = True
    bind_host: str = "0.0.0.0"
    db_path: str = "data/mock_exchange.db"  # empty string keeps the ledger in memory only
    commission_rate: Decimal = Decimal("0.0004")
    leverage: Decimal = Decimal("10")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


class RunnerSettings(BaseSettings):
    """Live loop driver configuration."""

    model_config = SettingsConfigDict(env_prefix="RUNNER_")

    interval_seconds: float = 60.0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    lookback_minutes: int = 60
    download_days: int = 1  # history pulled per cycle when downloading is on


class DownloadSettings(BaseSettings):
    """Historical downloader retry and pagination settings."""

    model_config = SettingsConfigDict(env_prefix="DOWNLOAD_")

    timeframe: str = "1m"
    page_limit: int = 500
    max_retries: int = 5
    retry_base_delay: float = 1.0
    fetch_batch_delay: float = 0.1


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    data: DataSettings = DataSettings()
    mock_server: MockExchangeSettings = MockExchangeSettings()
    runner: RunnerSettings = RunnerSettings()
    download: DownloadSettings = DownloadSettings()
