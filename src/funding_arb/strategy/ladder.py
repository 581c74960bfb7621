"""Waterfall ("ladder") capital allocation across ranked opportunities.

Capital fills the best opportunity up to its max size before the next one
gets anything. Existing positions on the same exchange pair are topped up
instead of duplicated; a symbol held on a DIFFERENT exchange pair is
skipped, so no symbol ever ends up with a third leg.

Identical inputs always produce identical allocations.
"""

from decimal import Decimal

from funding_arb.config import StrategySettings
from funding_arb.exceptions import InvariantViolation
from funding_arb.exchange.balances import BalanceSnapshot
from funding_arb.logging import get_logger
from funding_arb.models import INFINITY, OpenPositionPair
from funding_arb.strategy.models import (
    AllocationFill,
    AllocationStatus,
    EvaluatedOpportunity,
    LadderAllocationResult,
    SelectedOpportunity,
)
from funding_arb.strategy.tracking import OpportunityCooldowns

logger = get_logger(__name__)

_ZERO = Decimal("0")
_MIN_ALLOCATION = Decimal("0.01")  # one cent


def positions_by_symbol(
    positions: list[OpenPositionPair],
) -> dict[str, OpenPositionPair]:
    """Index open pairs by symbol.

    Raises:
        InvariantViolation: If a symbol has more than one open pair.
    """
    indexed: dict[str, OpenPositionPair] = {}
    for position in positions:
        other = indexed.get(position.symbol)
        if other is not None:
            raise InvariantViolation(
                f"{position.symbol} has two open pairs: "
                f"{other.pair_key} and {position.pair_key}"
            )
        indexed[position.symbol] = position
    return indexed


class LadderAllocator:
    """Sequential capital allocator.

    Args:
        settings: Leverage, minimum size and break-even bound.
    """

    def __init__(self, settings: StrategySettings) -> None:
        self._settings = settings

    def filter_for_ladder(
        self,
        evaluated: list[EvaluatedOpportunity],
        balances: BalanceSnapshot,
        cooldowns: OpportunityCooldowns | None = None,
        leverage: Decimal | None = None,
    ) -> list[EvaluatedOpportunity]:
        """Drop ineligible items and sort the rest into ladder order.

        An item is eligible when its exchange pair is not cooling down, it
        has a plan (or a finite break-even within the bound), its target-APY
        bound leaves room for a position, and both exchanges hold at least
        ``min_position_size / leverage`` collateral.
        Order: expected return desc, then max portfolio desc (None first).
        """
        lev = self._settings.leverage if leverage is None else leverage
        min_collateral = self._settings.min_position_size_usd / lev
        max_hours = self._settings.max_worst_case_break_even_days * 24

        eligible = []
        for item in evaluated:
            opp = item.opportunity
            if cooldowns is not None and cooldowns.is_filtered(
                opp.symbol, opp.long_exchange, opp.short_exchange
            ):
                logger.debug("ladder_skip_cooldown", symbol=opp.symbol)
                continue

            acceptable_break_even = (
                item.break_even_hours is not None
                and item.break_even_hours.is_finite()
                and item.break_even_hours <= max_hours
            )
            if item.plan is None and not acceptable_break_even:
                continue

            if (
                item.max_portfolio_usd is not None
                and item.max_portfolio_usd / lev <= _MIN_ALLOCATION
            ):
                logger.debug("ladder_skip_no_capacity", symbol=opp.symbol)
                continue

            if (
                balances.get(opp.long_exchange) < min_collateral
                or balances.get(opp.short_exchange) < min_collateral
            ):
                logger.debug(
                    "ladder_skip_collateral",
                    symbol=opp.symbol,
                    long_balance=str(balances.get(opp.long_exchange)),
                    short_balance=str(balances.get(opp.short_exchange)),
                )
                continue
            eligible.append(item)

        return sorted(
            eligible,
            key=lambda item: (
                -item.expected_return,
                -(item.max_portfolio_usd if item.max_portfolio_usd is not None else INFINITY),
            ),
        )

    def allocate(
        self,
        ranked: list[EvaluatedOpportunity],
        existing_positions: list[OpenPositionPair],
        total_capital: Decimal,
        leverage: Decimal | None = None,
    ) -> LadderAllocationResult:
        """Allocate ``total_capital`` (collateral) down the ranked list.

        Raises:
            InvariantViolation: If ``existing_positions`` holds two pairs for
                one symbol.
        """
        lev = self._settings.leverage if leverage is None else leverage
        existing = positions_by_symbol(existing_positions)

        if not ranked:
            return LadderAllocationResult(
                [], total_capital, _ZERO, AllocationStatus.NO_OPPORTUNITIES
            )
        if total_capital <= _MIN_ALLOCATION:
            return LadderAllocationResult(
                [], total_capital, _ZERO, AllocationStatus.NO_CAPITAL
            )

        logger.info(
            "ladder_allocation_started",
            capital=str(total_capital),
            opportunities=len(ranked),
            existing_positions=len(existing),
        )

        selected: list[SelectedOpportunity] = []
        allocated_symbols: set[str] = set()
        remaining = total_capital

        for item in ranked:
            opp = item.opportunity
            if opp.symbol in allocated_symbols:
                logger.debug("ladder_skip_duplicate_symbol", symbol=opp.symbol)
                continue

            max_portfolio = (
                item.max_portfolio_usd
                if item.max_portfolio_usd is not None
                else remaining * lev
            )
            max_collateral = max_portfolio / lev
            pair = existing.get(opp.symbol)
            holds_pair = pair is not None and pair.current_collateral > 0

            if holds_pair and (
                pair.long_exchange == opp.long_exchange
                and pair.short_exchange == opp.short_exchange
            ):
                needed = max_collateral - pair.current_collateral
                if needed <= _MIN_ALLOCATION:
                    logger.debug("ladder_existing_full", symbol=opp.symbol)
                    continue
                top_up = min(needed, remaining)
                if top_up < _MIN_ALLOCATION:
                    break
                fill = (
                    AllocationFill.FULL
                    if top_up >= needed - _MIN_ALLOCATION
                    else AllocationFill.PARTIAL
                )
                remaining -= top_up
                allocated_symbols.add(opp.symbol)
                selected.append(
                    SelectedOpportunity(
                        opportunity=opp,
                        plan=item.plan,
                        max_portfolio_usd=(pair.current_collateral + top_up) * lev,
                        is_existing=True,
                        allocated_collateral=top_up,
                        fill=fill,
                        reason=f"Top up existing pair by {top_up:.2f}",
                        current_value=pair.current_value,
                        current_collateral=pair.current_collateral,
                    )
                )
                self._log_rung(opp.symbol, "top_up", top_up, fill, remaining)
                if fill == AllocationFill.PARTIAL:
                    break
                continue

            if holds_pair:
                logger.warning(
                    "ladder_skip_mismatched_pair",
                    symbol=opp.symbol,
                    existing=pair.pair_key,
                    proposed=opp.pair_key,
                )
                continue

            if remaining <= _MIN_ALLOCATION:
                break
            if max_collateral <= _MIN_ALLOCATION:
                logger.debug("ladder_skip_no_capacity", symbol=opp.symbol)
                continue
            collateral = min(remaining, max_collateral)
            fill = (
                AllocationFill.FULL
                if collateral >= max_collateral - _MIN_ALLOCATION
                else AllocationFill.PARTIAL
            )
            remaining -= collateral
            allocated_symbols.add(opp.symbol)
            selected.append(
                SelectedOpportunity(
                    opportunity=opp,
                    plan=item.plan,
                    max_portfolio_usd=collateral * lev,
                    is_existing=False,
                    allocated_collateral=collateral,
                    fill=fill,
                    reason=f"New position with {collateral:.2f} collateral",
                )
            )
            self._log_rung(opp.symbol, "new", collateral, fill, remaining)
            if fill == AllocationFill.PARTIAL:
                break

        deployed = sum((s.allocated_collateral for s in selected), _ZERO)
        status = AllocationStatus.ALLOCATED if selected else AllocationStatus.NOTHING_ALLOCATED
        logger.info(
            "ladder_allocation_finished",
            status=status.value,
            rungs=len(selected),
            deployed=str(deployed),
            remaining=str(remaining),
        )
        return LadderAllocationResult(
            selected=selected,
            remaining_capital=remaining,
            capital_deployed=deployed,
            status=status,
        )

    @staticmethod
    def _log_rung(
        symbol: str, kind: str, amount: Decimal, fill: AllocationFill, remaining: Decimal
    ) -> None:
        logger.info(
            "ladder_rung_allocated",
            symbol=symbol,
            kind=kind,
            amount=str(amount),
            fill=fill.value,
            remaining=str(remaining),
        )
