"""Prediction-aware break-even estimation and opportunity recommendation.

Break-even is computed three ways from the same cost figure: on the
predicted spread, on a pessimistic (worst-case) spread and on an optimistic
(best-case) one. The predicted figure is then penalized for low confidence
(divided by ``max(0.5, confidence)``, i.e. up to 2x longer).

Spread convention here is ``long_rate - short_rate``: a profitable pair has
a negative spread, and a sign change between the current and the predicted
spread means the market is forecast to flip direction.

The recommendation deliberately does NOT skip merely because a reversal is
predicted. It only skips when break-even cannot be reached before the
reversal arrives, so capital stays deployed whenever it can pay for itself.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from funding_arb.config import PredictionSettings, StrategySettings
from funding_arb.logging import get_logger
from funding_arb.models import (
    INFINITY,
    ArbitrageOpportunity,
    RatePrediction,
    Recommendation,
)
from funding_arb.prediction.sources import PredictionSource

logger = get_logger(__name__)

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HALF = Decimal("0.5")
_WORST_CASE_FACTOR = Decimal("0.7")
_BEST_CASE_FACTOR = Decimal("1.3")
_SPREAD_SATURATION = Decimal("0.0005")  # 5bp/h scores 1.0
_MEANINGFUL_SPREAD = Decimal("0.0001")  # 1bp/h
_BREAK_EVEN_SCORE_HOURS = Decimal("168")
_LIQUIDITY_UNIT = Decimal("100000")
_NO_OI_LIQUIDITY = Decimal("0.1")
_STRONG_BUY_HOURS = Decimal("12")
_HIGH_SCORE = Decimal("0.7")
_HIGH_SCORE_MAX_HOURS = Decimal("48")
_HIGH_CONFIDENCE = Decimal("0.7")

_WEIGHT_SPREAD = Decimal("0.3")
_WEIGHT_CONFIDENCE = Decimal("0.25")
_WEIGHT_BREAK_EVEN = Decimal("0.3")
_WEIGHT_LIQUIDITY = Decimal("0.15")


@dataclass(frozen=True)
class PredictedBreakEven:
    """Break-even estimates for one opportunity at one position size.

    Hour fields are ``INFINITY`` when the spread never pays the costs back.
    """

    predicted_break_even_hours: Decimal
    confidence: Decimal
    predicted_spread: Decimal  # long - short
    worst_case_break_even_hours: Decimal
    best_case_break_even_hours: Decimal
    reliable_horizon_hours: int
    confidence_adjusted_break_even_hours: Decimal
    is_prediction_reliable: bool
    long_prediction: RatePrediction | None = None
    short_prediction: RatePrediction | None = None


@dataclass(frozen=True)
class PredictionScore:
    """Weighted opportunity score with its recommendation."""

    score: Decimal
    spread_score: Decimal
    confidence_score: Decimal
    break_even_score: Decimal
    liquidity_score: Decimal
    recommendation: Recommendation
    reason: str
    break_even: PredictedBreakEven


class PredictedBreakEvenCalculator:
    """Combines cost figures with rate predictions.

    Args:
        source: Prediction shim (handles the no-predictor fallback).
        prediction_settings: Confidence threshold, horizon and return floor.
        strategy_settings: Supplies the max break-even days bound.
    """

    def __init__(
        self,
        source: PredictionSource,
        prediction_settings: PredictionSettings,
        strategy_settings: StrategySettings,
    ) -> None:
        self._source = source
        self._settings = prediction_settings
        self._max_days = strategy_settings.max_worst_case_break_even_days

    async def calculate_predicted_break_even(
        self,
        opportunity: ArbitrageOpportunity,
        position_size_usd: Decimal,
        total_costs: Decimal,
    ) -> PredictedBreakEven:
        """Estimate predicted, worst-case and best-case break-even hours."""
        long_pred, long_is_model = await self._source.predict(
            opportunity.symbol, opportunity.long_exchange, opportunity.long_rate
        )
        short_pred, short_is_model = await self._source.predict(
            opportunity.symbol, opportunity.short_exchange, opportunity.short_rate
        )
        have_predictions = long_is_model and short_is_model
        confidence = min(long_pred.confidence, short_pred.confidence)

        current_spread = opportunity.long_rate - opportunity.short_rate
        if have_predictions:
            predicted_spread = long_pred.rate - short_pred.rate
            worst_spread = long_pred.lower_bound - short_pred.upper_bound
            best_spread = long_pred.upper_bound - short_pred.lower_bound
        else:
            predicted_spread = current_spread
            worst_spread = current_spread * _WORST_CASE_FACTOR
            best_spread = current_spread * _BEST_CASE_FACTOR

        confidence_factor = max(_HALF, confidence)
        horizon = self._settings.reliable_horizon_hours * confidence_factor
        reliable_horizon = int(horizon.to_integral_value(rounding=ROUND_HALF_UP))

        size = position_size_usd
        predicted_hours = self._break_even(total_costs, predicted_spread, size)
        worst_hours = self._break_even(total_costs, worst_spread, size)
        best_hours = self._break_even(total_costs, best_spread, size)
        if predicted_hours.is_infinite():
            adjusted_hours = INFINITY
        else:
            adjusted_hours = predicted_hours / confidence_factor

        return PredictedBreakEven(
            predicted_break_even_hours=predicted_hours,
            confidence=confidence,
            predicted_spread=predicted_spread,
            worst_case_break_even_hours=worst_hours,
            best_case_break_even_hours=best_hours,
            reliable_horizon_hours=reliable_horizon,
            confidence_adjusted_break_even_hours=adjusted_hours,
            is_prediction_reliable=confidence >= self._settings.min_confidence_threshold,
            long_prediction=long_pred if have_predictions else None,
            short_prediction=short_pred if have_predictions else None,
        )

    async def score_opportunity(
        self,
        opportunity: ArbitrageOpportunity,
        position_size_usd: Decimal,
        total_costs: Decimal,
    ) -> PredictionScore:
        """Score an opportunity and derive its recommendation.

        Score = 0.3 spread + 0.25 confidence + 0.3 break-even + 0.15 liquidity.
        """
        break_even = await self.calculate_predicted_break_even(
            opportunity, position_size_usd, total_costs
        )

        spread_score = min(_ONE, abs(break_even.predicted_spread) / _SPREAD_SATURATION)
        confidence_score = break_even.confidence
        break_even_score = self.break_even_score(
            break_even.confidence_adjusted_break_even_hours
        )
        liquidity_score = self.liquidity_score(opportunity)

        score = (
            spread_score * _WEIGHT_SPREAD
            + confidence_score * _WEIGHT_CONFIDENCE
            + break_even_score * _WEIGHT_BREAK_EVEN
            + liquidity_score * _WEIGHT_LIQUIDITY
        )
        recommendation, reason = self.recommend(score, break_even, opportunity)

        logger.debug(
            "opportunity_scored",
            symbol=opportunity.symbol,
            long_exchange=opportunity.long_exchange,
            short_exchange=opportunity.short_exchange,
            score=str(score),
            recommendation=recommendation.value,
            reason=reason,
        )
        return PredictionScore(
            score=score,
            spread_score=spread_score,
            confidence_score=confidence_score,
            break_even_score=break_even_score,
            liquidity_score=liquidity_score,
            recommendation=recommendation,
            reason=reason,
            break_even=break_even,
        )

    def recommend(
        self,
        score: Decimal,
        break_even: PredictedBreakEven,
        opportunity: ArbitrageOpportunity,
    ) -> tuple[Recommendation, str]:
        """Ordered recommendation decision tree; first matching branch wins."""
        hours = break_even.confidence_adjusted_break_even_hours
        horizon = Decimal(break_even.reliable_horizon_hours)
        current_spread = opportunity.long_rate - opportunity.short_rate
        max_hours = self._max_days * 24

        if not hours.is_finite():
            if abs(current_spread) > _MEANINGFUL_SPREAD:
                return (
                    Recommendation.BUY,
                    f"Prediction unavailable but current spread "
                    f"{current_spread * 100:.4f}% is favorable",
                )
            return (
                Recommendation.HOLD,
                "Cannot calculate break-even and current spread is minimal",
            )

        current_sign = _sign(current_spread)
        predicted_sign = _sign(break_even.predicted_spread)
        if current_sign != 0 and predicted_sign != 0 and current_sign != predicted_sign:
            if hours > horizon:
                return (
                    Recommendation.SKIP,
                    f"Spread will reverse: break-even {hours:.1f}h > reversal "
                    f"{horizon:.1f}h, wait for flip",
                )
            return (
                Recommendation.BUY,
                f"Break-even {hours:.1f}h before reversal {horizon:.1f}h, "
                f"profit before the flip",
            )

        if not break_even.is_prediction_reliable:
            if abs(current_spread) > _MEANINGFUL_SPREAD:
                if hours < max_hours:
                    return (
                        Recommendation.BUY,
                        f"Low prediction confidence but current spread "
                        f"{current_spread * 100:.4f}% with break-even {hours:.1f}h",
                    )
                return (
                    Recommendation.HOLD,
                    f"Current spread favorable but break-even {hours:.1f}h is long",
                )
            return (
                Recommendation.HOLD,
                f"Prediction unreliable ({break_even.confidence * 100:.0f}%) "
                f"and current spread minimal",
            )

        worst_days = break_even.worst_case_break_even_hours / 24
        if worst_days > self._max_days * 2:
            return (
                Recommendation.HOLD,
                f"Worst-case break-even {worst_days:.1f} days is too long",
            )

        if hours < _STRONG_BUY_HOURS:
            return (
                Recommendation.STRONG_BUY,
                f"Fast break-even {hours:.1f}h, spread stable",
            )
        if (
            score >= _HIGH_SCORE
            and hours < _HIGH_SCORE_MAX_HOURS
            and break_even.confidence >= _HIGH_CONFIDENCE
        ):
            return (
                Recommendation.STRONG_BUY,
                f"High score {score:.2f}, break-even {hours:.1f}h, "
                f"{break_even.confidence * 100:.0f}% confidence",
            )
        if hours < horizon:
            return (
                Recommendation.BUY,
                f"Break-even {hours:.1f}h within horizon {horizon:.1f}h, spread stable",
            )
        if hours < max_hours:
            return (
                Recommendation.BUY,
                f"Break-even {hours:.1f}h, spread predicted stable",
            )
        return (
            Recommendation.HOLD,
            f"Break-even {hours:.1f}h exceeds {self._max_days} day limit",
        )

    @staticmethod
    def break_even_score(hours: Decimal) -> Decimal:
        """``max(0, 1 - hours/168)``; 0 for never, 1 for instant."""
        if hours.is_infinite():
            return _ZERO
        if hours <= 0:
            return _ONE
        return max(_ZERO, _ONE - hours / _BREAK_EVEN_SCORE_HOURS)

    @staticmethod
    def liquidity_score(opportunity: ArbitrageOpportunity) -> Decimal:
        """Log-scaled open interest: $100k scores 0, $100M scores 1."""
        min_oi = opportunity.min_open_interest
        if min_oi is None or min_oi <= 0:
            return _NO_OI_LIQUIDITY
        return min(_ONE, max(min_oi / _LIQUIDITY_UNIT, _ONE).log10() / 3)

    def _break_even(
        self, total_costs: Decimal, spread: Decimal, position_size_usd: Decimal
    ) -> Decimal:
        hourly_return = abs(spread) * position_size_usd
        if hourly_return <= self._settings.min_hourly_return_usd:
            return INFINITY
        if total_costs <= 0:
            return _ZERO
        return total_costs / hourly_return


def _sign(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0
