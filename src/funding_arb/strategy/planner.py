"""Execution plan sizing and target-APY portfolio bounds.

Economic infeasibility is never an exception here: ``build`` returns None
when the minimum size cannot be met, the spread never pays, or break-even
takes longer than the configured bound.
"""

from decimal import Decimal

from funding_arb.config import StrategySettings
from funding_arb.exchange.balances import BalanceSnapshot
from funding_arb.logging import get_logger
from funding_arb.models import HOURS_PER_YEAR, ArbitrageOpportunity
from funding_arb.pnl.cost_calculator import CostCalculator
from funding_arb.strategy.models import ExecutionPlan

logger = get_logger(__name__)

_ZERO = Decimal("0")
_BPS = Decimal("10000")
_BISECTION_STEPS = 40
_SIZE_RESOLUTION = Decimal("1")  # stop once the bracket is under $1


def basis_divergence_bps(opportunity: ArbitrageOpportunity) -> Decimal:
    """Mark price gap between the legs in bps; zero unless both are known."""
    long_mark = opportunity.long_mark_price
    short_mark = opportunity.short_mark_price
    if not long_mark or not short_mark:
        return _ZERO
    mid = (long_mark + short_mark) / 2
    return abs(long_mark - short_mark) / mid * _BPS


class ExecutionPlanBuilder:
    """Sizes and costs a plan for one opportunity against cycle balances.

    Args:
        cost_calculator: Shared cost model.
        settings: Leverage, size bounds and break-even limit.
    """

    def __init__(self, cost_calculator: CostCalculator, settings: StrategySettings) -> None:
        self._costs = cost_calculator
        self._settings = settings

    def build(
        self, opportunity: ArbitrageOpportunity, balances: BalanceSnapshot
    ) -> ExecutionPlan | None:
        """Build the largest affordable plan, or None if it is uneconomic."""
        s = self._settings
        collateral = min(
            balances.get(opportunity.long_exchange),
            balances.get(opportunity.short_exchange),
        )
        size = collateral * s.balance_usage_fraction * s.leverage
        if s.max_position_size_usd is not None:
            size = min(size, s.max_position_size_usd)

        if size < s.min_position_size_usd:
            logger.debug(
                "plan_rejected_size",
                symbol=opportunity.symbol,
                size=str(size),
                min_size=str(s.min_position_size_usd),
            )
            return None

        entry, exit_ = self._costs.round_trip_costs(
            notional=size,
            long_exchange=opportunity.long_exchange,
            short_exchange=opportunity.short_exchange,
            long_open_interest=opportunity.long_open_interest,
            short_open_interest=opportunity.short_open_interest,
            basis_divergence_bps=basis_divergence_bps(opportunity),
        )
        total_costs = (entry + exit_).total
        hourly_return = opportunity.spread * size
        break_even = self._costs.break_even_hours(total_costs, hourly_return)

        if break_even is None:
            logger.debug("plan_rejected_no_return", symbol=opportunity.symbol)
            return None
        max_hours = s.max_worst_case_break_even_days * 24
        if break_even > max_hours:
            logger.debug(
                "plan_rejected_break_even",
                symbol=opportunity.symbol,
                break_even_hours=str(break_even),
                max_hours=str(max_hours),
            )
            return None

        return ExecutionPlan(
            opportunity=opportunity,
            position_size_usd=size,
            leverage=s.leverage,
            entry_costs=entry,
            exit_costs=exit_,
            expected_hourly_return=hourly_return,
            expected_net_return=hourly_return - total_costs,
            break_even_hours=break_even,
        )

    def net_apy(self, opportunity: ArbitrageOpportunity, notional: Decimal) -> Decimal:
        """Annualized net return at ``notional`` per leg.

        Our own orders push both legs' rates against us; round-trip costs
        are amortized over the max break-even window.
        """
        impact = self._costs.funding_rate_impact(
            notional, opportunity.long_open_interest, opportunity.long_rate
        ) + self._costs.funding_rate_impact(
            notional, opportunity.short_open_interest, opportunity.short_rate
        )
        gross = (opportunity.spread - impact) * HOURS_PER_YEAR

        entry, exit_ = self._costs.round_trip_costs(
            notional=notional,
            long_exchange=opportunity.long_exchange,
            short_exchange=opportunity.short_exchange,
            long_open_interest=opportunity.long_open_interest,
            short_open_interest=opportunity.short_open_interest,
            basis_divergence_bps=basis_divergence_bps(opportunity),
        )
        window_hours = self._settings.max_worst_case_break_even_days * 24
        cost_drag = (entry + exit_).total / notional * (HOURS_PER_YEAR / window_hours)
        return gross - cost_drag

    def max_portfolio_for_target_apy(
        self, opportunity: ArbitrageOpportunity
    ) -> Decimal | None:
        """Largest notional whose net APY stays at or above ``target_apy``.

        Returns:
            None without open interest data (no size bound is known),
            zero when even the minimum size misses the target.
        """
        min_oi = opportunity.min_open_interest
        if min_oi is None or min_oi <= 0:
            return None

        target = self._settings.target_apy
        low = self._settings.min_position_size_usd
        high = min_oi
        if high <= low or self.net_apy(opportunity, low) < target:
            return _ZERO
        if self.net_apy(opportunity, high) >= target:
            return high

        for _ in range(_BISECTION_STEPS):
            if high - low <= _SIZE_RESOLUTION:
                break
            mid = (low + high) / 2
            if self.net_apy(opportunity, mid) >= target:
                low = mid
            else:
                high = mid

        return low
