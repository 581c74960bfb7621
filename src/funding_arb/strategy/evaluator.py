"""Opportunity evaluation, ranking, worst-case selection and rebalancing.

Two views of every opportunity are combined:
  - Historical: how consistently each leg's rate has paid, and a
    deliberately pessimistic break-even computed from each leg's historical
    MINIMUM rate instead of its current rate.
  - Predicted: the ensemble forecast via PredictedBreakEvenCalculator,
    used only when a predictor is configured.

The rebalance decision is sunk-cost aware: holding the current pair only
has to recover what it has not yet earned back, while switching must
recover that PLUS the new pair's full entry/exit costs.
"""

from decimal import Decimal

from funding_arb.config import PredictionSettings, StrategySettings
from funding_arb.logging import get_logger
from funding_arb.market_data.aggregator import FundingRateAggregator
from funding_arb.models import (
    INFINITY,
    ArbitrageOpportunity,
    ExchangeFundingRate,
    MarketRegime,
    OpenPositionPair,
    Recommendation,
)
from funding_arb.pnl.loss_tracker import PositionLossTracker
from funding_arb.prediction.break_even import PredictedBreakEvenCalculator, PredictionScore
from funding_arb.prediction.sources import PredictionSource
from funding_arb.strategy.models import (
    AllocationFill,
    EvaluatedOpportunity,
    ExecutionPlan,
    HistoricalEvaluation,
    RebalanceDecision,
    SelectedOpportunity,
)

logger = get_logger(__name__)

_ZERO = Decimal("0")
_ONE = Decimal("1")
_WEEK_HOURS = Decimal("168")
_BREAK_EVEN_FLOOR = Decimal("0.7")
_BREAK_EVEN_WEIGHT = Decimal("0.3")
_PREDICTION_MIN_CONFIDENCE = Decimal("0.5")
_PREDICTION_WEIGHT = Decimal("0.4")
_PREDICTED_SPREAD_SCALE = Decimal("10000")  # 1bp/h scores 1.0
_REGIME_FACTORS = {
    MarketRegime.MEAN_REVERTING: Decimal("1.1"),
    MarketRegime.EXTREME_DISLOCATION: Decimal("0.8"),
}
_WORST_CASE_OI_UNIT = Decimal("1000")
_NO_OI_LIQUIDITY = Decimal("0.1")


def _break_even_factor(hours: Decimal) -> Decimal:
    return _BREAK_EVEN_FLOOR + _BREAK_EVEN_WEIGHT * max(_ZERO, _ONE - hours / _WEEK_HOURS)


def _clamp(value: Decimal) -> Decimal:
    return max(_ZERO, min(_ONE, value))


def worst_case_liquidity_score(opportunity: ArbitrageOpportunity) -> Decimal:
    """``clamp(log10(max(minOI/1000, 1)) / 10)``; 0.1 without OI data."""
    min_oi = opportunity.min_open_interest
    if min_oi is None or min_oi <= 0:
        return _NO_OI_LIQUIDITY
    return _clamp(max(min_oi / _WORST_CASE_OI_UNIT, _ONE).log10() / 10)


class OpportunityEvaluator:
    """Scores, filters and ranks opportunities; decides rebalances.

    Args:
        source: Prediction/history shim.
        loss_tracker: Sunk-cost ledger for open pairs.
        aggregator: Used to read the live spread of an open pair.
        strategy_settings: Break-even bound.
        prediction_settings: Minimum prediction confidence.
        break_even_calculator: Optional prediction-aware calculator.
    """

    def __init__(
        self,
        source: PredictionSource,
        loss_tracker: PositionLossTracker,
        aggregator: FundingRateAggregator,
        strategy_settings: StrategySettings,
        prediction_settings: PredictionSettings,
        break_even_calculator: PredictedBreakEvenCalculator | None = None,
    ) -> None:
        self._source = source
        self._loss_tracker = loss_tracker
        self._aggregator = aggregator
        self._strategy = strategy_settings
        self._prediction = prediction_settings
        self._break_even = break_even_calculator

    @property
    def max_break_even_hours(self) -> Decimal:
        return self._strategy.max_worst_case_break_even_days * 24

    async def evaluate_with_history(
        self, opportunity: ArbitrageOpportunity, plan: ExecutionPlan | None
    ) -> HistoricalEvaluation:
        """Attach leg metrics and compute the worst-case break-even."""
        long_metrics = await self._source.historical_metrics(
            opportunity.symbol, opportunity.long_exchange
        )
        short_metrics = await self._source.historical_metrics(
            opportunity.symbol, opportunity.short_exchange
        )

        if long_metrics is not None and short_metrics is not None:
            consistency = (
                long_metrics.consistency_score + short_metrics.consistency_score
            ) / 2
        elif long_metrics is not None:
            consistency = long_metrics.consistency_score
        elif short_metrics is not None:
            consistency = short_metrics.consistency_score
        else:
            consistency = _ZERO

        worst_case: Decimal | None = None
        if plan is not None and long_metrics is not None and short_metrics is not None:
            worst_spread = abs(short_metrics.min_rate - long_metrics.min_rate)
            hourly_return = worst_spread * plan.position_size_usd
            if hourly_return > 0:
                worst_case = plan.estimated_costs.total / hourly_return

        return HistoricalEvaluation(
            long_metrics=long_metrics,
            short_metrics=short_metrics,
            consistency_score=consistency,
            worst_case_break_even_hours=worst_case,
        )

    async def evaluate(
        self,
        opportunity: ArbitrageOpportunity,
        plan: ExecutionPlan | None = None,
        max_portfolio_usd: Decimal | None = None,
    ) -> EvaluatedOpportunity:
        """Full evaluation: history, prediction (with a plan) and combined score."""
        historical = await self.evaluate_with_history(opportunity, plan)

        prediction: PredictionScore | None = None
        if plan is not None and self._break_even is not None and self._source.has_predictor:
            prediction = await self._break_even.score_opportunity(
                opportunity, plan.position_size_usd, plan.estimated_costs.total
            )

        combined = self.combined_score(historical, prediction)
        return EvaluatedOpportunity(
            opportunity=opportunity,
            plan=plan,
            historical=historical,
            prediction=prediction,
            combined_score=combined,
            break_even_hours=plan.break_even_hours if plan is not None else None,
            max_portfolio_usd=max_portfolio_usd,
        )

    @staticmethod
    def combined_score(
        historical: HistoricalEvaluation, prediction: PredictionScore | None
    ) -> Decimal:
        """Regime-aware blend of historical and predicted quality, in [0, 1]."""
        score = historical.consistency_score
        worst_case = historical.worst_case_break_even_hours
        if worst_case is not None and worst_case.is_finite():
            score *= _break_even_factor(worst_case)

        if prediction is not None:
            confidence = prediction.break_even.confidence
            if confidence > _PREDICTION_MIN_CONFIDENCE:
                weight = confidence * _PREDICTION_WEIGHT
                predicted = min(
                    _ONE,
                    abs(prediction.break_even.predicted_spread) * _PREDICTED_SPREAD_SCALE,
                )
                predicted_hours = prediction.break_even.predicted_break_even_hours
                if predicted_hours.is_finite() and predicted_hours > 0:
                    predicted *= _break_even_factor(predicted_hours)
                long_prediction = prediction.break_even.long_prediction
                if long_prediction is not None:
                    predicted *= _REGIME_FACTORS.get(long_prediction.regime, _ONE)
                score = (_ONE - weight) * score + weight * predicted

        return _clamp(score)

    def filter_by_prediction_quality(
        self,
        evaluated: list[EvaluatedOpportunity],
        min_confidence: Decimal | None = None,
        max_break_even_hours: Decimal | None = None,
    ) -> list[EvaluatedOpportunity]:
        """Drop low-confidence, slow or "skip" predictions.

        Items without a prediction pass unchanged.
        """
        min_conf = (
            self._prediction.min_confidence_threshold
            if min_confidence is None
            else min_confidence
        )
        max_hours = (
            self.max_break_even_hours
            if max_break_even_hours is None
            else max_break_even_hours
        )

        kept = []
        for item in evaluated:
            prediction = item.prediction
            if prediction is None:
                kept.append(item)
                continue
            symbol = item.opportunity.symbol
            break_even = prediction.break_even
            if break_even.confidence < min_conf:
                logger.debug(
                    "prediction_filtered_confidence",
                    symbol=symbol,
                    confidence=str(break_even.confidence),
                )
                continue
            if break_even.confidence_adjusted_break_even_hours > max_hours:
                logger.debug(
                    "prediction_filtered_break_even",
                    symbol=symbol,
                    hours=str(break_even.confidence_adjusted_break_even_hours),
                )
                continue
            if prediction.recommendation == Recommendation.SKIP:
                logger.debug(
                    "prediction_filtered_skip", symbol=symbol, reason=prediction.reason
                )
                continue
            kept.append(item)
        return kept

    @staticmethod
    def rank(evaluated: list[EvaluatedOpportunity]) -> list[EvaluatedOpportunity]:
        """Order best-first and keep only the best opportunity per symbol.

        Predicted items rank ahead of unpredicted ones by prediction score;
        ties fall through to combined score, then spread.
        """

        def sort_key(item: EvaluatedOpportunity) -> tuple:
            has_prediction = item.prediction is not None
            prediction_score = item.prediction.score if item.prediction else _ZERO
            return (
                not has_prediction,
                -prediction_score,
                -item.combined_score,
                -item.opportunity.spread,
            )

        ranked: list[EvaluatedOpportunity] = []
        seen: set[str] = set()
        for item in sorted(evaluated, key=sort_key):
            if item.opportunity.symbol in seen:
                continue
            seen.add(item.opportunity.symbol)
            ranked.append(item)
        return ranked

    def select_worst_case_opportunity(
        self, candidates: list[EvaluatedOpportunity]
    ) -> SelectedOpportunity | None:
        """Pick the candidate most robust under historical worst-case rates.

        score = consistency * |avg historical rate| * liquidity / worst-case hours
        """
        scored: list[tuple[Decimal, EvaluatedOpportunity]] = []
        for item in candidates:
            if item.plan is None:
                continue
            hist = item.historical
            if hist.long_metrics is not None and hist.short_metrics is not None:
                avg_rate = (
                    hist.long_metrics.average_rate + hist.short_metrics.average_rate
                ) / 2
            else:
                avg_rate = _ZERO
            worst_case = hist.worst_case_break_even_hours
            if worst_case is None or not worst_case.is_finite() or worst_case <= 0:
                score = _ZERO
            else:
                score = (
                    hist.consistency_score
                    * abs(avg_rate)
                    * worst_case_liquidity_score(item.opportunity)
                    / worst_case
                )
            scored.append((score, item))

        if not scored:
            return None

        # max() keeps the first of equal scores, so input order breaks ties
        best_score, best = max(scored, key=lambda pair: pair[0])
        worst_case = best.historical.worst_case_break_even_hours
        worst_days = worst_case / 24 if worst_case is not None else INFINITY
        if worst_days > self._strategy.max_worst_case_break_even_days:
            logger.warning(
                "worst_case_selection_rejected",
                symbol=best.opportunity.symbol,
                worst_case_days=str(worst_days),
                max_days=str(self._strategy.max_worst_case_break_even_days),
            )
            return None

        reason = (
            f"Worst-case selection: consistency "
            f"{best.historical.consistency_score * 100:.1f}%, "
            f"worst-case break-even {worst_days:.1f} days, score {best_score:.6f}"
        )
        logger.info(
            "worst_case_opportunity_selected",
            symbol=best.opportunity.symbol,
            long_exchange=best.opportunity.long_exchange,
            short_exchange=best.opportunity.short_exchange,
            score=str(best_score),
        )
        return _as_selection(best, reason)

    def rank_and_select(
        self, evaluated: list[EvaluatedOpportunity]
    ) -> SelectedOpportunity | None:
        """Filter, rank and pick one opportunity to deploy into.

        Worst-case selection applies when any candidate has history;
        otherwise the top-ranked candidate with a plan wins.
        """
        ranked = self.rank(self.filter_by_prediction_quality(evaluated))
        candidates = [item for item in ranked if item.plan is not None]
        if not candidates:
            logger.info("no_candidate_selected", evaluated=len(evaluated))
            return None

        if any(item.historical.has_history for item in candidates):
            return self.select_worst_case_opportunity(candidates)

        best = candidates[0]
        logger.info(
            "top_ranked_opportunity_selected",
            symbol=best.opportunity.symbol,
            combined_score=str(best.combined_score),
        )
        return _as_selection(best, "Top-ranked opportunity (no historical data)")

    async def should_rebalance(
        self,
        current_position: OpenPositionPair,
        new_opportunity: ArbitrageOpportunity,
        new_plan: ExecutionPlan,
        cumulative_loss: Decimal = _ZERO,
        current_rates: list[ExchangeFundingRate] | None = None,
    ) -> RebalanceDecision:
        """Decide whether to abandon ``current_position`` for ``new_opportunity``.

        Rules, first match wins:
          1. The new plan is instantly net-profitable: rebalance.
          2. The current pair has already recovered its costs: hold.
          3. The current pair never breaks even: rebalance iff the new one does.
          4. The new pair never breaks even: hold.
          5. Rebalance iff the new pair breaks even sooner than the current
             pair's remaining break-even.

        ``current_rates`` (rates already fetched this cycle) avoids a second
        query for the current pair's spread.
        """
        pos = current_position
        if current_rates is not None:
            spread = FundingRateAggregator.spread_between(
                current_rates, pos.long_exchange, pos.short_exchange
            )
        else:
            try:
                spread = await self._aggregator.get_pair_spread(
                    pos.symbol, pos.long_exchange, pos.short_exchange
                )
            except Exception as exc:
                logger.warning(
                    "rebalance_spread_unavailable", symbol=pos.symbol, error=repr(exc)
                )
                spread = None
        current_spread = spread if spread is not None else _ZERO
        position_value = pos.current_value or pos.notional_size

        remaining = self._loss_tracker.remaining_break_even(
            pos.symbol, pos.long_exchange, pos.short_exchange, current_spread, position_value
        )
        if remaining.is_tracked:
            p1_outstanding = remaining.remaining_cost + max(cumulative_loss, _ZERO)
            hourly = current_spread * position_value
            if p1_outstanding <= 0:
                p1_hours = _ZERO
            elif hourly <= 0:
                p1_hours = INFINITY
            else:
                p1_hours = p1_outstanding / hourly
        else:
            p1_outstanding = _ZERO
            p1_hours = INFINITY

        p2_costs = (
            p1_outstanding
            + new_plan.estimated_costs.fees
            + new_plan.estimated_costs.slippage
        )
        new_hourly = new_plan.expected_hourly_return
        p2_hours = p2_costs / new_hourly if new_hourly > 0 else INFINITY

        current_reported = p1_hours if p1_hours.is_finite() else None
        new_reported = p2_hours if p2_hours.is_finite() else None

        if new_plan.expected_net_return > 0:
            decision = RebalanceDecision(
                True, "New opportunity is instantly profitable", current_reported, None
            )
        elif remaining.is_tracked and p1_outstanding <= 0:
            decision = RebalanceDecision(
                False,
                "Current position already profitable, new position not instantly profitable",
                _ZERO,
                new_reported,
            )
        elif not p1_hours.is_finite():
            if p2_hours.is_finite():
                decision = RebalanceDecision(
                    True,
                    "Current position never breaks even, new position has finite break-even",
                    None,
                    p2_hours,
                )
            else:
                decision = RebalanceDecision(
                    False, "Both positions never break even", None, None
                )
        elif not p2_hours.is_finite():
            decision = RebalanceDecision(
                False, "New position never breaks even", p1_hours, None
            )
        elif p2_hours < p1_hours:
            decision = RebalanceDecision(
                True,
                f"New break-even {p2_hours:.2f}h < current remaining {p1_hours:.2f}h",
                p1_hours,
                p2_hours,
            )
        else:
            decision = RebalanceDecision(
                False,
                f"Current remaining {p1_hours:.2f}h <= new break-even {p2_hours:.2f}h",
                p1_hours,
                p2_hours,
            )

        logger.info(
            "rebalance_decision",
            symbol=pos.symbol,
            new_symbol=new_opportunity.symbol,
            should_rebalance=decision.should_rebalance,
            reason=decision.reason,
            p1_outstanding=str(p1_outstanding),
            p2_costs=str(p2_costs),
        )
        return decision


def _as_selection(item: EvaluatedOpportunity, reason: str) -> SelectedOpportunity:
    plan = item.plan
    return SelectedOpportunity(
        opportunity=item.opportunity,
        plan=plan,
        max_portfolio_usd=item.max_portfolio_usd,
        is_existing=False,
        allocated_collateral=plan.collateral_usd if plan is not None else _ZERO,
        fill=AllocationFill.FULL,
        reason=reason,
    )
