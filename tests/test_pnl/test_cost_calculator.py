"""Tests for CostCalculator.

All test cases use exact Decimal values to verify precision.
Default fee schedule (maker / taker):
  - hyperliquid: 0.015% / 0.045%
  - bybit:       0.02%  / 0.055%
"""

from decimal import Decimal

import pytest

from funding_arb.config import FeeSettings
from funding_arb.models import BookTop, OrderType
from funding_arb.pnl.cost_calculator import CostCalculator


class TestFeeRate:
    def test_configured_rates(self, cost_calculator: CostCalculator) -> None:
        assert cost_calculator.fee_rate("bybit") == Decimal("0.0002")
        assert cost_calculator.fee_rate("bybit", is_maker=False) == Decimal("0.00055")

    def test_unknown_exchange_uses_default(self, cost_calculator: CostCalculator) -> None:
        assert cost_calculator.fee_rate("unknown") == Decimal("0.0005")

    def test_fees_scale_with_notional(self, cost_calculator: CostCalculator) -> None:
        assert cost_calculator.fees(Decimal("10000"), "hyperliquid") == Decimal("1.5")


class TestSlippage:
    def test_taker_fallback_without_open_interest(
        self, cost_calculator: CostCalculator
    ) -> None:
        cost = cost_calculator.slippage_cost(
            Decimal("10000"), Decimal("0"), Decimal("0"), None, OrderType.MARKET
        )
        assert cost == Decimal("5")

    def test_maker_fallback_with_zero_open_interest(
        self, cost_calculator: CostCalculator
    ) -> None:
        cost = cost_calculator.slippage_cost(
            Decimal("10000"), Decimal("0"), Decimal("0"), Decimal("0"), OrderType.LIMIT
        )
        assert cost == Decimal("1")

    def test_square_root_impact(self, cost_calculator: CostCalculator) -> None:
        """Spread 0.2%, 1% of OI: base 0.1% + impact sqrt(0.01)*0.002*2 = 0.04%."""
        cost = cost_calculator.slippage_cost(
            Decimal("10000"),
            Decimal("99.9"),
            Decimal("100.1"),
            Decimal("1000000"),
            OrderType.MARKET,
        )
        assert cost == Decimal("14")

    def test_maker_base_is_one_bp(self, cost_calculator: CostCalculator) -> None:
        cost = cost_calculator.slippage_cost(
            Decimal("10000"),
            Decimal("99.9"),
            Decimal("100.1"),
            Decimal("1000000"),
            OrderType.LIMIT,
        )
        # 10000 * (0.0001 + 0.0004)
        assert cost == Decimal("5")

    def test_impact_capped_at_two_percent(self, cost_calculator: CostCalculator) -> None:
        cost = cost_calculator.slippage_cost(
            Decimal("1000"),
            Decimal("90"),
            Decimal("110"),
            Decimal("10"),
            OrderType.MARKET,
        )
        # base 0.1 + capped impact 0.02
        assert cost == Decimal("120")

    def test_monotone_in_open_interest(self, cost_calculator: CostCalculator) -> None:
        """More liquidity never increases slippage for a fixed notional."""
        notional = Decimal("50000")
        costs = [
            cost_calculator.slippage_cost(
                notional, Decimal("99.95"), Decimal("100.05"), Decimal(oi), order_type
            )
            for order_type in (OrderType.MARKET, OrderType.LIMIT)
            for oi in ("1000", "100000", "1000000", "10000000", "1000000000")
        ]
        market, limit = costs[:5], costs[5:]
        for series in (market, limit):
            assert all(a >= b for a, b in zip(series, series[1:]))


class TestFundingRateImpact:
    def test_linear_in_share_of_open_interest(
        self, cost_calculator: CostCalculator
    ) -> None:
        impact = cost_calculator.funding_rate_impact(
            Decimal("10000"), Decimal("1000000"), Decimal("0.0001")
        )
        assert impact == Decimal("0.00001")

    def test_capped_at_five_bp(self, cost_calculator: CostCalculator) -> None:
        impact = cost_calculator.funding_rate_impact(
            Decimal("1000000"), Decimal("1000000"), Decimal("0.0001")
        )
        assert impact == Decimal("0.0005")

    @pytest.mark.parametrize(
        "oi, rate",
        [
            (Decimal("0"), Decimal("0.0001")),
            (None, Decimal("0.0001")),
            (Decimal("1000000"), Decimal("NaN")),
            (Decimal("1000000"), None),
        ],
    )
    def test_zero_without_meaningful_inputs(
        self, cost_calculator: CostCalculator, oi: Decimal | None, rate: Decimal | None
    ) -> None:
        assert cost_calculator.funding_rate_impact(Decimal("10000"), oi, rate) == 0


class TestTradeCosts:
    def test_entry_uses_maker(self, cost_calculator: CostCalculator) -> None:
        costs = cost_calculator.trade_costs(Decimal("10000"), "hyperliquid", "bybit")
        # fees 1.5 + 2.0, slippage 1bp fallback per leg
        assert costs.fees == Decimal("3.5")
        assert costs.slippage == Decimal("2")
        assert costs.basis_risk_cost == 0
        assert costs.total == Decimal("5.5")

    def test_exit_uses_taker(self, cost_calculator: CostCalculator) -> None:
        costs = cost_calculator.trade_costs(
            Decimal("10000"), "hyperliquid", "bybit", is_entry=False
        )
        assert costs.fees == Decimal("10")
        assert costs.slippage == Decimal("10")

    def test_basis_risk(self, cost_calculator: CostCalculator) -> None:
        costs = cost_calculator.trade_costs(
            Decimal("10000"), "hyperliquid", "bybit", basis_divergence_bps=Decimal("-10")
        )
        assert costs.basis_risk_cost == Decimal("10")

    def test_book_top_feeds_slippage(self, cost_calculator: CostCalculator) -> None:
        book = BookTop(best_bid=Decimal("99.9"), best_ask=Decimal("100.1"))
        costs = cost_calculator.trade_costs(
            Decimal("10000"),
            "hyperliquid",
            "bybit",
            long_open_interest=Decimal("1000000"),
            short_open_interest=Decimal("1000000"),
            long_book=book,
            short_book=book,
            is_entry=False,
        )
        assert costs.slippage == Decimal("28")

    def test_round_trip(self, cost_calculator: CostCalculator) -> None:
        entry, exit_ = cost_calculator.round_trip_costs(
            Decimal("10000"), "hyperliquid", "bybit"
        )
        assert (entry + exit_).total == Decimal("25.5")

    def test_custom_fee_schedule(self) -> None:
        calc = CostCalculator(
            FeeSettings(maker_rates={"a": Decimal("0.001")}, default_rate=Decimal("0"))
        )
        costs = calc.trade_costs(Decimal("1000"), "a", "b")
        assert costs.fees == Decimal("1")


class TestBreakEvenHours:
    def test_never_when_return_not_positive(self) -> None:
        assert CostCalculator.break_even_hours(Decimal("10"), Decimal("0")) is None
        assert CostCalculator.break_even_hours(Decimal("10"), Decimal("-1")) is None
        assert CostCalculator.break_even_hours(Decimal("0"), Decimal("0")) is None

    def test_zero_when_nothing_to_recover(self) -> None:
        assert CostCalculator.break_even_hours(Decimal("0"), Decimal("1")) == 0
        assert CostCalculator.break_even_hours(Decimal("-3"), Decimal("1")) == 0

    def test_ratio(self) -> None:
        assert CostCalculator.break_even_hours(Decimal("25"), Decimal("4")) == Decimal(
            "6.25"
        )
