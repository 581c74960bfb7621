"""Exchange boundary -- funding data and balance providers, ccxt-backed."""

from funding_arb.exchange.balances import BalanceSnapshot
from funding_arb.exchange.ccxt_provider import CcxtBalanceProvider, CcxtFundingDataProvider
from funding_arb.exchange.provider import BalanceProvider, FundingDataProvider

__all__ = [
    "BalanceProvider",
    "BalanceSnapshot",
    "CcxtBalanceProvider",
    "CcxtFundingDataProvider",
    "FundingDataProvider",
]
