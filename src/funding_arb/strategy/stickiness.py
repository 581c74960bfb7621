"""Hysteresis for open position pairs (keep / close / replace).

Closing and reopening a pair costs four sets of fees, so a position is only
abandoned when its spread has clearly turned against us or a better spread
beats it by more than the churn cost.

Cases, first match wins:
  1. Spread unobtainable           -> KEEP (conservative default)
  2. Spread < 2 x close_threshold   -> CLOSE, regardless of age
  3. Younger than min_hold_hours and spread above close_threshold -> KEEP
  4. Spread above close_threshold   -> KEEP, or REPLACE when the best
     alternative improves on it by >= multiplier x churn cost
  5. Otherwise                      -> CLOSE
"""

from decimal import Decimal

from funding_arb.config import StickinessSettings
from funding_arb.logging import get_logger
from funding_arb.market_data.aggregator import FundingRateAggregator
from funding_arb.models import (
    ExchangeFundingRate,
    OpenPositionPair,
    StickinessAction,
    StickinessResult,
)
from funding_arb.pnl.cost_calculator import CostCalculator
from funding_arb.strategy.models import PositionFilterResult
from funding_arb.strategy.tracking import PositionOpenTimes
from funding_arb.symbols import normalize_symbol

logger = get_logger(__name__)


class PositionStickinessManager:
    """Decides whether each open pair should be held.

    Args:
        aggregator: Source of the pair's live spread.
        open_times: Scheduler-owned open timestamp store.
        cost_calculator: Supplies maker fee rates for the churn cost.
        settings: Close threshold, minimum hold and churn multiplier.
    """

    def __init__(
        self,
        aggregator: FundingRateAggregator,
        open_times: PositionOpenTimes,
        cost_calculator: CostCalculator,
        settings: StickinessSettings,
    ) -> None:
        self._aggregator = aggregator
        self._open_times = open_times
        self._costs = cost_calculator
        self._settings = settings

    def churn_cost(self, long_exchange: str, short_exchange: str) -> Decimal:
        """Rate cost of closing and reopening both legs: ``(long + short fee) x 2``."""
        return (
            self._costs.fee_rate(long_exchange) + self._costs.fee_rate(short_exchange)
        ) * 2

    def decide(
        self,
        current_spread: Decimal | None,
        age_hours: Decimal | None,
        long_exchange: str,
        short_exchange: str,
        best_alternative_spread: Decimal | None = None,
    ) -> StickinessResult:
        """Pure hysteresis decision.

        An untracked pair (``age_hours`` None) was opened before this
        process started and is treated as past its minimum hold.
        """
        s = self._settings
        if current_spread is None:
            return StickinessResult(
                True, "Current spread unavailable, keeping position", StickinessAction.KEEP
            )

        if current_spread < s.close_threshold * 2:
            return StickinessResult(
                False,
                f"Spread {current_spread:.6f} far below close threshold "
                f"{s.close_threshold:.6f}",
                StickinessAction.CLOSE,
            )

        above_threshold = current_spread > s.close_threshold
        if (
            age_hours is not None
            and age_hours < s.min_hold_hours
            and (current_spread > 0 or above_threshold)
        ):
            return StickinessResult(
                True,
                f"Position too young to churn ({age_hours:.1f}h < {s.min_hold_hours}h)",
                StickinessAction.KEEP,
            )

        if above_threshold:
            if best_alternative_spread is not None:
                required = s.churn_cost_multiplier * self.churn_cost(
                    long_exchange, short_exchange
                )
                improvement = best_alternative_spread - current_spread
                if improvement >= required:
                    return StickinessResult(
                        False,
                        f"Alternative improves spread by {improvement:.6f} "
                        f">= churn threshold {required:.6f}",
                        StickinessAction.REPLACE,
                    )
            return StickinessResult(
                True,
                f"Spread {current_spread:.6f} above close threshold",
                StickinessAction.KEEP,
            )

        return StickinessResult(
            False,
            f"Spread {current_spread:.6f} at or below close threshold "
            f"{s.close_threshold:.6f}",
            StickinessAction.CLOSE,
        )

    async def should_keep_position(
        self,
        symbol: str,
        long_exchange: str,
        short_exchange: str,
        best_alternative_spread: Decimal | None = None,
        rates: list[ExchangeFundingRate] | None = None,
    ) -> StickinessResult:
        """Decide on one pair; a failed fetch keeps the position.

        The spread comes from ``rates`` when given (already fetched this
        cycle), otherwise from a live query.
        """
        if rates is not None:
            spread = FundingRateAggregator.spread_between(
                rates, long_exchange, short_exchange
            )
        else:
            try:
                spread = await self._aggregator.get_pair_spread(
                    symbol, long_exchange, short_exchange
                )
            except Exception as exc:
                logger.warning(
                    "stickiness_spread_unavailable", symbol=symbol, error=repr(exc)
                )
                spread = None

        age = self._open_times.age_hours(symbol, long_exchange, short_exchange)
        result = self.decide(
            spread, age, long_exchange, short_exchange, best_alternative_spread
        )
        logger.info(
            "stickiness_decision",
            symbol=symbol,
            long_exchange=long_exchange,
            short_exchange=short_exchange,
            action=result.action.value,
            reason=result.reason,
            spread=str(spread) if spread is not None else None,
        )
        return result

    async def filter_positions(
        self,
        positions: list[OpenPositionPair],
        best_alternative_spread: Decimal | None = None,
        rates_by_symbol: dict[str, list[ExchangeFundingRate]] | None = None,
    ) -> PositionFilterResult:
        """Split open pairs into those to keep and those to close (or replace).

        With ``rates_by_symbol`` no exchange is queried; a symbol missing
        from it counts as an unavailable spread.
        """
        result = PositionFilterResult()
        for position in positions:
            verdict = await self.should_keep_position(
                position.symbol,
                position.long_exchange,
                position.short_exchange,
                best_alternative_spread,
                rates=(
                    rates_by_symbol.get(normalize_symbol(position.symbol), [])
                    if rates_by_symbol is not None
                    else None
                ),
            )
            result.reasons[position.pair_key] = verdict.reason
            if verdict.should_keep:
                result.to_keep.append(position)
            else:
                result.to_close.append(position)
        return result

    def record_open(self, symbol: str, long_exchange: str, short_exchange: str) -> None:
        self._open_times.record_open(symbol, long_exchange, short_exchange)

    def remove_open(self, symbol: str, long_exchange: str, short_exchange: str) -> None:
        self._open_times.remove_open(symbol, long_exchange, short_exchange)
