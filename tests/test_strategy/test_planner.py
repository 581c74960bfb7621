"""Tests for ExecutionPlanBuilder sizing and target-APY bounds.

Default scenario: 10,000 USD free on each venue, 90% usage, 1x leverage, so
each leg is 9,000 USD. Round-trip costs without OI data:
  entry fees 3.15 + entry slippage 1.8 + exit fees 9 + exit slippage 9 = 22.95
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from conftest import make_opportunity
from funding_arb.config import StrategySettings
from funding_arb.exchange.balances import BalanceSnapshot
from funding_arb.pnl.cost_calculator import CostCalculator
from funding_arb.strategy.planner import ExecutionPlanBuilder, basis_divergence_bps


@pytest.fixture
def builder(cost_calculator: CostCalculator) -> ExecutionPlanBuilder:
    return ExecutionPlanBuilder(cost_calculator, StrategySettings())


class TestBasisDivergence:
    def test_equal_marks(self) -> None:
        assert basis_divergence_bps(make_opportunity()) == 0

    def test_divergent_marks(self) -> None:
        opp = replace(
            make_opportunity(),
            long_mark_price=Decimal("2997"),
            short_mark_price=Decimal("3003"),
        )
        assert basis_divergence_bps(opp) == Decimal("20")

    def test_missing_mark(self) -> None:
        opp = replace(make_opportunity(), short_mark_price=None)
        assert basis_divergence_bps(opp) == 0


class TestBuild:
    def test_sized_from_smaller_balance(
        self, builder: ExecutionPlanBuilder, balances: BalanceSnapshot
    ) -> None:
        plan = builder.build(make_opportunity(), balances)
        assert plan is not None
        assert plan.position_size_usd == Decimal("9000")
        assert plan.estimated_costs.total == Decimal("22.95")
        assert plan.expected_hourly_return == Decimal("3.6")
        assert plan.break_even_hours == Decimal("6.375")
        assert plan.expected_net_return == Decimal("-19.35")
        assert plan.collateral_usd == Decimal("9000")

    def test_uses_min_of_both_legs(self, builder: ExecutionPlanBuilder) -> None:
        snapshot = BalanceSnapshot(
            balances={"hyperliquid": Decimal("2000"), "bybit": Decimal("50000")}
        )
        plan = builder.build(make_opportunity(), snapshot)
        assert plan is not None
        assert plan.position_size_usd == Decimal("1800")

    def test_leverage_scales_notional_not_collateral(
        self, cost_calculator: CostCalculator, balances: BalanceSnapshot
    ) -> None:
        builder = ExecutionPlanBuilder(
            cost_calculator, StrategySettings(leverage=Decimal("2"))
        )
        plan = builder.build(make_opportunity(), balances)
        assert plan is not None
        assert plan.position_size_usd == Decimal("18000")
        assert plan.collateral_usd == Decimal("9000")

    def test_max_position_size_caps(
        self, cost_calculator: CostCalculator, balances: BalanceSnapshot
    ) -> None:
        builder = ExecutionPlanBuilder(
            cost_calculator, StrategySettings(max_position_size_usd=Decimal("5000"))
        )
        plan = builder.build(make_opportunity(), balances)
        assert plan is not None
        assert plan.position_size_usd == Decimal("5000")

    def test_missing_balance_rejected(self, builder: ExecutionPlanBuilder) -> None:
        snapshot = BalanceSnapshot(balances={"hyperliquid": Decimal("10000")})
        assert builder.build(make_opportunity(), snapshot) is None

    def test_zero_spread_rejected(
        self, builder: ExecutionPlanBuilder, balances: BalanceSnapshot
    ) -> None:
        opp = make_opportunity(long_rate=Decimal("0.0001"), short_rate=Decimal("0.0001"))
        assert builder.build(opp, balances) is None

    def test_slow_break_even_rejected(
        self, builder: ExecutionPlanBuilder, balances: BalanceSnapshot
    ) -> None:
        # hourly 0.09 USD -> 255h, beyond the 7 day bound
        opp = make_opportunity(long_rate=Decimal("0"), short_rate=Decimal("0.00001"))
        assert builder.build(opp, balances) is None


class TestMaxPortfolioForTargetApy:
    def test_unknown_open_interest(self, builder: ExecutionPlanBuilder) -> None:
        assert builder.max_portfolio_for_target_apy(make_opportunity()) is None

    def test_target_missed_at_minimum_size(self, builder: ExecutionPlanBuilder) -> None:
        opp = make_opportunity(
            long_rate=Decimal("0"),
            short_rate=Decimal("0.00001"),
            long_open_interest=Decimal("100000000"),
            short_open_interest=Decimal("100000000"),
        )
        assert builder.max_portfolio_for_target_apy(opp) == 0

    def test_whole_open_interest_meets_target(self, builder: ExecutionPlanBuilder) -> None:
        opp = make_opportunity(
            long_rate=Decimal("-0.005"),
            short_rate=Decimal("0.005"),
            long_open_interest=Decimal("1000"),
            short_open_interest=Decimal("1000"),
        )
        assert builder.max_portfolio_for_target_apy(opp) == Decimal("1000")

    def test_bisection_finds_boundary(self, builder: ExecutionPlanBuilder) -> None:
        opp = make_opportunity(
            long_open_interest=Decimal("100000000"),
            short_open_interest=Decimal("100000000"),
        )
        target = StrategySettings().target_apy
        bound = builder.max_portfolio_for_target_apy(opp)
        assert bound is not None
        assert Decimal("10") < bound < Decimal("100000000")
        assert builder.net_apy(opp, bound) >= target
        assert builder.net_apy(opp, bound + 1) < target

    def test_net_apy_decreases_with_size(self, builder: ExecutionPlanBuilder) -> None:
        opp = make_opportunity(
            long_open_interest=Decimal("10000000"),
            short_open_interest=Decimal("10000000"),
        )
        sizes = [Decimal(s) for s in ("100", "10000", "1000000", "10000000")]
        apys = [builder.net_apy(opp, s) for s in sizes]
        assert apys == sorted(apys, reverse=True)
