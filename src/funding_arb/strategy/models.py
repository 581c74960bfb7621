"""Value objects produced by the strategy layer within one decision cycle."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from funding_arb.models import ArbitrageOpportunity, HistoricalMetrics, TradeCosts
from funding_arb.prediction.break_even import PredictionScore


class AllocationFill(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class AllocationStatus(str, Enum):
    """Why a ladder run ended with the allocation it did."""

    ALLOCATED = "allocated"
    NO_OPPORTUNITIES = "no_opportunities"  # nothing ranked
    NO_CAPITAL = "no_capital"
    NOTHING_ALLOCATED = "nothing_allocated"  # every rung was skipped


@dataclass(frozen=True)
class ExecutionPlan:
    """Sized, costed plan for opening one opportunity.

    ``position_size_usd`` is the notional of EACH leg.
    """

    opportunity: ArbitrageOpportunity
    position_size_usd: Decimal
    leverage: Decimal
    entry_costs: TradeCosts
    exit_costs: TradeCosts
    expected_hourly_return: Decimal
    expected_net_return: Decimal  # first hour's return minus round-trip costs
    break_even_hours: Decimal

    @property
    def estimated_costs(self) -> TradeCosts:
        """Round-trip (entry + exit) costs."""
        return self.entry_costs + self.exit_costs

    @property
    def collateral_usd(self) -> Decimal:
        return self.position_size_usd / self.leverage


@dataclass(frozen=True)
class HistoricalEvaluation:
    long_metrics: HistoricalMetrics | None
    short_metrics: HistoricalMetrics | None
    consistency_score: Decimal
    worst_case_break_even_hours: Decimal | None  # None without plan or metrics

    @property
    def has_history(self) -> bool:
        return self.long_metrics is not None or self.short_metrics is not None


@dataclass(frozen=True)
class EvaluatedOpportunity:
    """An opportunity with every figure the ranking and ladder steps need."""

    opportunity: ArbitrageOpportunity
    plan: ExecutionPlan | None
    historical: HistoricalEvaluation
    prediction: PredictionScore | None = None
    combined_score: Decimal = Decimal("0")
    break_even_hours: Decimal | None = None
    max_portfolio_usd: Decimal | None = None  # None = no size bound known

    @property
    def expected_return(self) -> Decimal:
        return self.opportunity.expected_return


@dataclass(frozen=True)
class SelectedOpportunity:
    """One rung of an allocation (or the single pick of rank_and_select)."""

    opportunity: ArbitrageOpportunity
    plan: ExecutionPlan | None
    max_portfolio_usd: Decimal | None
    is_existing: bool
    allocated_collateral: Decimal
    fill: AllocationFill
    reason: str
    current_value: Decimal | None = None
    current_collateral: Decimal | None = None


@dataclass(frozen=True)
class LadderAllocationResult:
    selected: list[SelectedOpportunity]
    remaining_capital: Decimal
    capital_deployed: Decimal
    status: AllocationStatus


@dataclass(frozen=True)
class RebalanceDecision:
    """Verdict of the sunk-cost-aware switching comparison."""

    should_rebalance: bool
    reason: str
    current_break_even_hours: Decimal | None  # None = never
    new_break_even_hours: Decimal | None


@dataclass
class PositionFilterResult:
    to_keep: list = field(default_factory=list)
    to_close: list = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)
