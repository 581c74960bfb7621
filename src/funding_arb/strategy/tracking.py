"""Process-wide stores owned by the scheduler and passed into each cycle.

These are the only mutable state that outlives a decision cycle. Both are
plain key -> timestamp maps; cycles never overlap, so no lock is needed.
"""

import time
from collections.abc import Callable
from decimal import Decimal

from funding_arb.logging import get_logger
from funding_arb.models import position_key

logger = get_logger(__name__)

_SECONDS_PER_HOUR = Decimal("3600")


class PositionOpenTimes:
    """Open timestamps per position pair, used for age-based hysteresis.

    Contract: ``record_open`` when a pair is opened, ``remove_open`` exactly
    when it is closed. A stale entry would make a later position on the same
    pair look older than it is.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._opened: dict[str, float] = {}

    def record_open(
        self,
        symbol: str,
        long_exchange: str,
        short_exchange: str,
        opened_at: float | None = None,
    ) -> None:
        key = position_key(symbol, long_exchange, short_exchange)
        self._opened[key] = self._clock() if opened_at is None else opened_at
        logger.debug("position_open_recorded", pair=key)

    def remove_open(self, symbol: str, long_exchange: str, short_exchange: str) -> bool:
        """Forget a closed pair. Returns False if it was not tracked."""
        key = position_key(symbol, long_exchange, short_exchange)
        removed = self._opened.pop(key, None) is not None
        if removed:
            logger.debug("position_open_removed", pair=key)
        return removed

    def opened_at(self, symbol: str, long_exchange: str, short_exchange: str) -> float | None:
        return self._opened.get(position_key(symbol, long_exchange, short_exchange))

    def age_hours(
        self, symbol: str, long_exchange: str, short_exchange: str
    ) -> Decimal | None:
        """Hours since the pair was opened; None if untracked."""
        opened = self.opened_at(symbol, long_exchange, short_exchange)
        if opened is None:
            return None
        return Decimal(str(self._clock() - opened)) / _SECONDS_PER_HOUR

    def __contains__(self, key: str) -> bool:
        return key in self._opened

    def __len__(self) -> int:
        return len(self._opened)


class OpportunityCooldowns:
    """Exchange pairs that recently failed to execute.

    The key ignores leg direction: a failure on (A long, B short) also cools
    down (B long, A short) for the same symbol.

    Args:
        expiry_seconds: How long a failed pair stays filtered.
        clock: Time source returning Unix seconds.
    """

    def __init__(
        self, expiry_seconds: float = 1800.0, clock: Callable[[], float] = time.time
    ) -> None:
        self._expiry = expiry_seconds
        self._clock = clock
        self._failed: dict[str, float] = {}

    @staticmethod
    def key(symbol: str, exchange_a: str, exchange_b: str) -> str:
        first, second = sorted((exchange_a, exchange_b))
        return f"{symbol}-{first}-{second}"

    def mark_failed(self, symbol: str, exchange_a: str, exchange_b: str) -> None:
        key = self.key(symbol, exchange_a, exchange_b)
        self._failed[key] = self._clock()
        logger.info("opportunity_cooldown_started", pair=key, seconds=self._expiry)

    def is_filtered(self, symbol: str, exchange_a: str, exchange_b: str) -> bool:
        """True while the pair is within its cool-down; expired entries are dropped."""
        key = self.key(symbol, exchange_a, exchange_b)
        failed_at = self._failed.get(key)
        if failed_at is None:
            return False
        if self._clock() - failed_at < self._expiry:
            return True
        del self._failed[key]
        return False

    def clear(self) -> None:
        self._failed.clear()

    def __len__(self) -> int:
        return len(self._failed)
