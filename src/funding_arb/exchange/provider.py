"""Abstract data-provider interfaces consumed by the decision engine.

Strategy code depends only on these contracts; venue-specific details live
in concrete implementations (see ccxt_provider.py). Every method is
independently fallible: implementations raise DataUnavailableError (or any
exception) and the core degrades by omitting that data point.
"""

from abc import ABC, abstractmethod
from decimal import Decimal


class FundingDataProvider(ABC):
    """Per-exchange source of funding rates, mark prices and open interest."""

    @property
    @abstractmethod
    def exchange(self) -> str:
        """Exchange identifier (e.g. "hyperliquid")."""
        ...

    @abstractmethod
    async def get_available_symbols(self) -> list[str]:
        """Return exchange-specific symbols of all listed perpetuals."""
        ...

    @abstractmethod
    async def get_current_funding_rate(self, symbol: str) -> Decimal:
        """Return the current HOURLY funding rate for an exchange symbol."""
        ...

    @abstractmethod
    async def get_predicted_funding_rate(self, symbol: str) -> Decimal:
        """Return the venue's own estimate of the next HOURLY funding rate."""
        ...

    @abstractmethod
    async def get_mark_price(self, symbol: str) -> Decimal:
        """Return the current mark price."""
        ...

    @abstractmethod
    async def get_open_interest(self, symbol: str) -> Decimal:
        """Return open interest in USD."""
        ...


class BalanceProvider(ABC):
    """Source of free collateral per exchange."""

    @abstractmethod
    async def get_balance(self, exchange: str) -> Decimal:
        """Return free collateral in USD on ``exchange``."""
        ...
