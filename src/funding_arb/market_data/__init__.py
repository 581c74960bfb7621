"""Market data layer -- cross-exchange funding rate aggregation and discovery."""

from funding_arb.market_data.aggregator import FundingRateAggregator, FundingRateComparison

__all__ = ["FundingRateAggregator", "FundingRateComparison"]
