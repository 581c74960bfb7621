"""Per-cycle balance snapshot.

Balances are fetched once per decision cycle and reused for every sizing and
allocation decision in that cycle, so the allocator never re-checks a
shrinking balance halfway through.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal

from funding_arb.exceptions import ProviderTimeout
from funding_arb.exchange.provider import BalanceProvider
from funding_arb.logging import get_logger

logger = get_logger(__name__)

_ZERO = Decimal("0")


@dataclass(frozen=True)
class BalanceSnapshot:
    """Free collateral per exchange, frozen for one cycle."""

    balances: dict[str, Decimal] = field(default_factory=dict)
    unavailable: frozenset[str] = frozenset()

    @classmethod
    async def fetch(
        cls,
        provider: BalanceProvider,
        exchanges: list[str],
        timeout: float = 5.0,
    ) -> "BalanceSnapshot":
        """Query every exchange concurrently with a per-call timeout.

        A failed or timed-out query marks the exchange unavailable; its
        balance then reads as zero.
        """

        async def _one(exchange: str) -> Decimal:
            try:
                return await asyncio.wait_for(provider.get_balance(exchange), timeout)
            except asyncio.TimeoutError as exc:
                raise ProviderTimeout(f"{exchange} balance query timed out") from exc

        results = await asyncio.gather(
            *(_one(exchange) for exchange in exchanges), return_exceptions=True
        )

        balances: dict[str, Decimal] = {}
        unavailable: set[str] = set()
        for exchange, result in zip(exchanges, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning(
                    "balance_unavailable",
                    exchange=exchange,
                    error=repr(result),
                )
                unavailable.add(exchange)
                continue
            balances[exchange] = result

        logger.info(
            "balances_fetched",
            balances={k: str(v) for k, v in balances.items()},
            unavailable=sorted(unavailable),
        )
        return cls(balances=balances, unavailable=frozenset(unavailable))

    def get(self, exchange: str) -> Decimal:
        """Free collateral on ``exchange``; zero when unknown or unavailable."""
        return self.balances.get(exchange, _ZERO)

    @property
    def total(self) -> Decimal:
        return sum(self.balances.values(), _ZERO)

    @property
    def is_empty(self) -> bool:
        """True when no exchange reported a balance."""
        return not self.balances
