"""Shared data models for the funding rate arbitrage decision engine.

CRITICAL: All monetary values and rates use Decimal. Never use float for
prices, notionals, fees or funding rates. Funding rates are HOURLY.

Optional fields use ``None`` for "data unavailable", so a failed query is
never confused with a genuine zero rate, price or open interest.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from funding_arb.exceptions import InvariantViolation

HOURS_PER_YEAR = Decimal("8760")  # 365 * 24
INFINITY = Decimal("Infinity")


class OrderType(str, Enum):
    """Order type used for slippage modelling."""

    MARKET = "market"  # taker
    LIMIT = "limit"  # maker


class MarketRegime(str, Enum):
    """Spread behaviour classification reported by the ensemble predictor."""

    MEAN_REVERTING = "mean_reverting"
    TRENDING = "trending"
    HIGH_VOLATILITY = "high_volatility"
    EXTREME_DISLOCATION = "extreme_dislocation"


class Recommendation(str, Enum):
    """Discrete recommendation for deploying capital into an opportunity."""

    STRONG_BUY = "strong_buy"
    BUY = "buy"
    HOLD = "hold"
    SKIP = "skip"


class StickinessAction(str, Enum):
    """Outcome of the position hysteresis state machine."""

    KEEP = "keep"
    CLOSE = "close"
    REPLACE = "replace"


@dataclass(frozen=True)
class ExchangeFundingRate:
    """Funding snapshot for one symbol on one exchange, fresh each cycle."""

    exchange: str
    symbol: str  # normalized (e.g. "ETH")
    current_rate: Decimal
    predicted_rate: Decimal
    mark_price: Decimal | None = None
    open_interest: Decimal | None = None  # USD
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """A long/short pairing of two exchanges for the same asset.

    Long where the rate is lowest (longs receive on negative rates), short
    where it is highest. ``expected_return`` is the annualized spread.
    """

    symbol: str
    long_exchange: str
    short_exchange: str
    long_rate: Decimal
    short_rate: Decimal
    spread: Decimal
    expected_return: Decimal
    long_mark_price: Decimal | None = None
    short_mark_price: Decimal | None = None
    long_open_interest: Decimal | None = None
    short_open_interest: Decimal | None = None
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.long_exchange == self.short_exchange:
            raise InvariantViolation(
                f"Opportunity for {self.symbol} uses {self.long_exchange} "
                f"for both legs"
            )

    @property
    def pair_key(self) -> str:
        """Key identifying this exact symbol/long/short combination."""
        return position_key(self.symbol, self.long_exchange, self.short_exchange)

    @property
    def average_mark_price(self) -> Decimal | None:
        """Mean of both legs' mark prices, or whichever one is known."""
        if self.long_mark_price and self.short_mark_price:
            return (self.long_mark_price + self.short_mark_price) / 2
        return self.long_mark_price or self.short_mark_price

    @property
    def min_open_interest(self) -> Decimal | None:
        """Smaller of the two legs' open interest; None if either is unknown."""
        if self.long_open_interest is None or self.short_open_interest is None:
            return None
        return min(self.long_open_interest, self.short_open_interest)


@dataclass(frozen=True)
class BookTop:
    """Best bid/ask for one leg."""

    best_bid: Decimal
    best_ask: Decimal


@dataclass(frozen=True)
class TradeCosts:
    """Cost breakdown in USD for one proposed trade size."""

    fees: Decimal
    slippage: Decimal
    basis_risk_cost: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.fees + self.slippage + self.basis_risk_cost

    def __add__(self, other: "TradeCosts") -> "TradeCosts":
        return TradeCosts(
            fees=self.fees + other.fees,
            slippage=self.slippage + other.slippage,
            basis_risk_cost=self.basis_risk_cost + other.basis_risk_cost,
        )


@dataclass(frozen=True)
class RatePrediction:
    """Ensemble predictor output for one symbol on one exchange."""

    rate: Decimal
    lower_bound: Decimal
    upper_bound: Decimal
    confidence: Decimal  # 0-1
    regime: MarketRegime = MarketRegime.MEAN_REVERTING


@dataclass(frozen=True)
class HistoricalMetrics:
    """Summary statistics of a leg's recent funding rates."""

    min_rate: Decimal
    max_rate: Decimal
    average_rate: Decimal
    consistency_score: Decimal  # 0-1
    sample_count: int = 0


@dataclass
class OpenPositionPair:
    """A live long/short pair, read from exchange state each cycle.

    The core never owns positions; it only tracks when they were opened.
    """

    symbol: str
    long_exchange: str
    short_exchange: str
    notional_size: Decimal
    leverage: Decimal = Decimal("1")
    entry_timestamp: float = 0.0
    entry_spread: Decimal = Decimal("0")
    current_value: Decimal = Decimal("0")
    current_collateral: Decimal = Decimal("0")

    @property
    def pair_key(self) -> str:
        return position_key(self.symbol, self.long_exchange, self.short_exchange)


@dataclass(frozen=True)
class StickinessResult:
    """Keep/close/replace verdict for one open pair in one cycle."""

    should_keep: bool
    reason: str
    action: StickinessAction = StickinessAction.KEEP


def position_key(symbol: str, long_exchange: str, short_exchange: str) -> str:
    """Tracking key for a position pair: ``symbol-long-short``."""
    return f"{symbol}-{long_exchange}-{short_exchange}"


def annualize(hourly_rate: Decimal) -> Decimal:
    """Convert an hourly rate to its simple annualized equivalent."""
    return hourly_rate * HOURS_PER_YEAR
