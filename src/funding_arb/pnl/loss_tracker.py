"""Sunk-cost tracking for open position pairs.

Records what each pair cost to open (plus the exit costs it will incur) and
how much funding it has earned since. The difference is the cost still to be
recovered, which the rebalance decision compares against the full cost of
switching to a new opportunity.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal

from funding_arb.logging import get_logger
from funding_arb.models import INFINITY, TradeCosts, position_key

logger = get_logger(__name__)

_SECONDS_PER_HOUR = Decimal("3600")


@dataclass
class PairCostState:
    """Cost and funding ledger for a single open pair."""

    entry_costs: TradeCosts
    expected_exit_costs: TradeCosts
    opened_at: float
    funding_earned: Decimal = Decimal("0")
    funding_payments: list[Decimal] = field(default_factory=list)


@dataclass(frozen=True)
class RemainingBreakEven:
    """How far an open pair is from recovering its costs."""

    remaining_cost: Decimal
    remaining_break_even_hours: Decimal  # INFINITY when it never recovers
    hours_held: Decimal
    funding_earned: Decimal
    is_tracked: bool = True


#: Reported for pairs we hold no ledger for (already closed or never opened here).
CLOSED_PAIR = RemainingBreakEven(
    remaining_cost=INFINITY,
    remaining_break_even_hours=INFINITY,
    hours_held=Decimal("0"),
    funding_earned=Decimal("0"),
    is_tracked=False,
)


class PositionLossTracker:
    """Tracks unrecovered costs per position pair.

    Args:
        clock: Time source returning Unix seconds (injectable for tests).
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._pairs: dict[str, PairCostState] = {}

    def record_open(
        self,
        symbol: str,
        long_exchange: str,
        short_exchange: str,
        entry_costs: TradeCosts,
        expected_exit_costs: TradeCosts,
    ) -> None:
        """Start a cost ledger for a newly opened pair."""
        key = position_key(symbol, long_exchange, short_exchange)
        self._pairs[key] = PairCostState(
            entry_costs=entry_costs,
            expected_exit_costs=expected_exit_costs,
            opened_at=self._clock(),
        )
        logger.info(
            "loss_tracker_record_open",
            pair=key,
            entry_costs=str(entry_costs.total),
            expected_exit_costs=str(expected_exit_costs.total),
        )

    def record_funding(
        self, symbol: str, long_exchange: str, short_exchange: str, amount: Decimal
    ) -> None:
        """Add a (signed) funding payment received by the pair."""
        key = position_key(symbol, long_exchange, short_exchange)
        state = self._pairs.get(key)
        if state is None:
            logger.warning("loss_tracker_unknown_pair", pair=key)
            return
        state.funding_earned += amount
        state.funding_payments.append(amount)

    def record_close(
        self, symbol: str, long_exchange: str, short_exchange: str
    ) -> Decimal | None:
        """Drop the ledger for a closed pair.

        Returns:
            Realized net result (funding minus all costs), or None if the
            pair was not tracked.
        """
        key = position_key(symbol, long_exchange, short_exchange)
        state = self._pairs.pop(key, None)
        if state is None:
            return None
        realized = (
            state.funding_earned
            - state.entry_costs.total
            - state.expected_exit_costs.total
        )
        logger.info("loss_tracker_record_close", pair=key, realized=str(realized))
        return realized

    def remaining_break_even(
        self,
        symbol: str,
        long_exchange: str,
        short_exchange: str,
        current_spread: Decimal,
        position_value_usd: Decimal,
    ) -> RemainingBreakEven:
        """Compute the unrecovered cost and time to recover it.

        Args:
            symbol: Normalized symbol.
            long_exchange: Exchange of the long leg.
            short_exchange: Exchange of the short leg.
            current_spread: Current hourly spread the pair earns
                (short rate minus long rate).
            position_value_usd: Current notional of the pair.

        Returns:
            RemainingBreakEven, or CLOSED_PAIR for an untracked pair.
        """
        key = position_key(symbol, long_exchange, short_exchange)
        state = self._pairs.get(key)
        if state is None:
            return CLOSED_PAIR

        total_costs = state.entry_costs.total + state.expected_exit_costs.total
        remaining_cost = total_costs - state.funding_earned
        hours_held = Decimal(str(self._clock() - state.opened_at)) / _SECONDS_PER_HOUR
        hourly_return = current_spread * position_value_usd

        if remaining_cost <= 0:
            remaining_hours = Decimal("0")
        elif hourly_return <= 0:
            remaining_hours = INFINITY
        else:
            remaining_hours = remaining_cost / hourly_return

        return RemainingBreakEven(
            remaining_cost=remaining_cost,
            remaining_break_even_hours=remaining_hours,
            hours_held=hours_held,
            funding_earned=state.funding_earned,
        )

    def __contains__(self, key: str) -> bool:
        return key in self._pairs
