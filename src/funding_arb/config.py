"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from funding_arb.symbols import ALLOWED_ASSETS


class ExchangeSettings(BaseSettings):
    """Exchanges to query and how to talk to them."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    enabled: list[str] = ["hyperliquid", "bybit", "binanceusdm"]
    request_timeout_seconds: float = 5.0
    quote_currency: str = "USDT"
    # Native funding interval per venue; rates are converted to hourly
    funding_interval_hours: dict[str, int] = {
        "hyperliquid": 1,
        "bybit": 8,
        "binanceusdm": 8,
    }
    api_keys: dict[str, SecretStr] = {}
    api_secrets: dict[str, SecretStr] = {}
    # Funding and ticker responses are reused for this long within a cycle
    response_cache_seconds: float = 5.0


class DiscoverySettings(BaseSettings):
    """Opportunity discovery parameters.

    Batching is a backpressure mechanism for exchange rate limits, not a
    correctness requirement, so both knobs are tunable.
    """

    model_config = SettingsConfigDict(env_prefix="DISCOVERY_")

    batch_size: int = 5
    batch_delay_seconds: float = 1.0
    min_spread: Decimal = Decimal("0.0001")  # 0.01%/h
    min_exchanges: int = 2
    allowed_assets: list[str] = sorted(ALLOWED_ASSETS)


class FeeSettings(BaseSettings):
    """Per-exchange fee schedule (base tier)."""

    model_config = SettingsConfigDict(env_prefix="FEES_")

    maker_rates: dict[str, Decimal] = {
        "hyperliquid": Decimal("0.00015"),
        "bybit": Decimal("0.0002"),
        "binanceusdm": Decimal("0.0002"),
    }
    taker_rates: dict[str, Decimal] = {
        "hyperliquid": Decimal("0.00045"),
        "bybit": Decimal("0.00055"),
        "binanceusdm": Decimal("0.0005"),
    }
    default_rate: Decimal = Decimal("0.0005")  # unknown exchange


class StrategySettings(BaseSettings):
    """Sizing and selection parameters for the decision engine."""

    model_config = SettingsConfigDict(env_prefix="STRATEGY_")

    leverage: Decimal = Decimal("1")
    min_position_size_usd: Decimal = Decimal("10")
    max_position_size_usd: Decimal | None = None
    balance_usage_fraction: Decimal = Decimal("0.9")
    max_worst_case_break_even_days: Decimal = Decimal("7")
    target_apy: Decimal = Decimal("0.35")
    filter_expiry_seconds: float = 1800.0  # cool-down after a failed execution


class PredictionSettings(BaseSettings):
    """Prediction-based break-even configuration."""

    model_config = SettingsConfigDict(env_prefix="PREDICTION_")

    min_confidence_threshold: Decimal = Decimal("0.6")
    default_confidence: Decimal = Decimal("0.5")
    reliable_horizon_hours: int = 24
    min_hourly_return_usd: Decimal = Decimal("0.01")
    timeout_seconds: float = 2.0


class StickinessSettings(BaseSettings):
    """Hysteresis parameters for keeping open positions."""

    model_config = SettingsConfigDict(env_prefix="STICKINESS_")

    close_threshold: Decimal = Decimal("-0.0005")  # close below -0.05%/h
    min_hold_hours: Decimal = Decimal("4")
    churn_cost_multiplier: Decimal = Decimal("2.0")


class HistorySettings(BaseSettings):
    """Rolling in-process funding rate history."""

    model_config = SettingsConfigDict(env_prefix="HISTORY_")

    window_size: int = 168  # one week of hourly observations
    min_samples: int = 6


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    discovery: DiscoverySettings = DiscoverySettings()
    fees: FeeSettings = FeeSettings()
    strategy: StrategySettings = StrategySettings()
    prediction: PredictionSettings = PredictionSettings()
    stickiness: StickinessSettings = StickinessSettings()
    history: HistorySettings = HistorySettings()
