"""Shared test fixtures for the funding rate arbitrage decision engine."""

from decimal import Decimal

import pytest

from funding_arb.config import (
    AppSettings,
    DiscoverySettings,
    FeeSettings,
    PredictionSettings,
    StickinessSettings,
    StrategySettings,
)
from funding_arb.exchange.balances import BalanceSnapshot
from funding_arb.exchange.provider import FundingDataProvider
from funding_arb.models import ArbitrageOpportunity, annualize
from funding_arb.pnl.cost_calculator import CostCalculator


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_hours(self, hours: float) -> None:
        self.now += hours * 3600


class StaticProvider(FundingDataProvider):
    """In-memory FundingDataProvider; a missing entry raises like a failed query."""

    def __init__(
        self,
        exchange: str,
        rates: dict[str, Decimal],
        symbols: list[str] | None = None,
        predicted: dict[str, Decimal] | None = None,
        mark_prices: dict[str, Decimal] | None = None,
        open_interest: dict[str, Decimal] | None = None,
    ) -> None:
        self._exchange = exchange
        self.rates = rates
        self.symbols = symbols if symbols is not None else list(rates)
        self.predicted = predicted or {}
        self.mark_prices = mark_prices or {}
        self.open_interest = open_interest or {}

    @property
    def exchange(self) -> str:
        return self._exchange

    async def get_available_symbols(self) -> list[str]:
        return list(self.symbols)

    async def get_current_funding_rate(self, symbol: str) -> Decimal:
        return self.rates[symbol]

    async def get_predicted_funding_rate(self, symbol: str) -> Decimal:
        return self.predicted[symbol]

    async def get_mark_price(self, symbol: str) -> Decimal:
        return self.mark_prices[symbol]

    async def get_open_interest(self, symbol: str) -> Decimal:
        return self.open_interest[symbol]


def make_opportunity(
    symbol: str = "ETH",
    long_exchange: str = "hyperliquid",
    short_exchange: str = "bybit",
    long_rate: Decimal = Decimal("-0.0003"),
    short_rate: Decimal = Decimal("0.0001"),
    long_open_interest: Decimal | None = None,
    short_open_interest: Decimal | None = None,
    expected_return: Decimal | None = None,
) -> ArbitrageOpportunity:
    spread = short_rate - long_rate
    return ArbitrageOpportunity(
        symbol=symbol,
        long_exchange=long_exchange,
        short_exchange=short_exchange,
        long_rate=long_rate,
        short_rate=short_rate,
        spread=spread,
        expected_return=expected_return if expected_return is not None else annualize(spread),
        long_mark_price=Decimal("3000"),
        short_mark_price=Decimal("3000"),
        long_open_interest=long_open_interest,
        short_open_interest=short_open_interest,
        timestamp=0.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (no batch delay)."""
    return AppSettings(
        log_level="DEBUG",
        discovery=DiscoverySettings(batch_delay_seconds=0.0),
        fees=FeeSettings(),
        strategy=StrategySettings(),
        prediction=PredictionSettings(),
        stickiness=StickinessSettings(),
    )


@pytest.fixture
def fee_settings() -> FeeSettings:
    return FeeSettings()


@pytest.fixture
def cost_calculator(fee_settings: FeeSettings) -> CostCalculator:
    return CostCalculator(fee_settings)


@pytest.fixture
def balances() -> BalanceSnapshot:
    return BalanceSnapshot(
        balances={
            "hyperliquid": Decimal("10000"),
            "bybit": Decimal("10000"),
            "binanceusdm": Decimal("10000"),
        }
    )
