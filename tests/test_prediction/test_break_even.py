"""Tests for PredictedBreakEvenCalculator.

Spread convention in this module is long - short, so the default test
opportunity (long -0.03%/h, short +0.01%/h) has a current spread of -0.0004.
"""

from decimal import Decimal

import pytest

from conftest import make_opportunity
from funding_arb.config import PredictionSettings, StrategySettings
from funding_arb.models import INFINITY, RatePrediction, Recommendation
from funding_arb.prediction.break_even import (
    PredictedBreakEven,
    PredictedBreakEvenCalculator,
)
from funding_arb.prediction.sources import EnsembleRatePredictor, PredictionSource

SIZE = Decimal("10000")


class _FixedPredictor(EnsembleRatePredictor):
    """Returns a point prediction per exchange."""

    def __init__(self, rates: dict[str, str], confidence: str) -> None:
        self.rates = {k: Decimal(v) for k, v in rates.items()}
        self.confidence = Decimal(confidence)

    async def predict(self, symbol: str, exchange: str) -> RatePrediction:
        rate = self.rates[exchange]
        return RatePrediction(
            rate=rate,
            lower_bound=rate,
            upper_bound=rate,
            confidence=self.confidence,
        )


def _calculator(source: PredictionSource | None = None) -> PredictedBreakEvenCalculator:
    return PredictedBreakEvenCalculator(
        source or PredictionSource(),
        PredictionSettings(),
        StrategySettings(),
    )


def _break_even(
    hours: str,
    predicted_spread: str = "-0.0004",
    confidence: str = "0.8",
    horizon: int = 19,
    worst_hours: str | None = None,
    reliable: bool = True,
) -> PredictedBreakEven:
    value = Decimal(hours)
    return PredictedBreakEven(
        predicted_break_even_hours=value,
        confidence=Decimal(confidence),
        predicted_spread=Decimal(predicted_spread),
        worst_case_break_even_hours=Decimal(worst_hours) if worst_hours else value,
        best_case_break_even_hours=value,
        reliable_horizon_hours=horizon,
        confidence_adjusted_break_even_hours=value,
        is_prediction_reliable=reliable,
    )


class TestCalculatePredictedBreakEven:
    @pytest.mark.asyncio
    async def test_fallback_without_predictor(self) -> None:
        result = await _calculator().calculate_predicted_break_even(
            make_opportunity(), SIZE, Decimal("8")
        )
        # 8 / (0.0004 * 10000)
        assert result.predicted_break_even_hours == Decimal("2")
        assert result.confidence == Decimal("0.5")
        assert result.confidence_adjusted_break_even_hours == Decimal("4")
        assert result.reliable_horizon_hours == 12
        assert result.is_prediction_reliable is False
        assert result.predicted_spread == Decimal("-0.0004")
        assert result.long_prediction is None

    @pytest.mark.asyncio
    async def test_fallback_brackets_current_spread(self) -> None:
        result = await _calculator().calculate_predicted_break_even(
            make_opportunity(), SIZE, Decimal("8")
        )
        # worst 0.7x spread, best 1.3x spread
        assert result.worst_case_break_even_hours == Decimal("8") / Decimal("2.8")
        assert result.best_case_break_even_hours == Decimal("8") / Decimal("5.2")
        assert (
            result.best_case_break_even_hours
            <= result.predicted_break_even_hours
            <= result.worst_case_break_even_hours
        )

    @pytest.mark.asyncio
    async def test_model_predictions_used(self) -> None:
        predictor = _FixedPredictor(
            {"hyperliquid": "-0.0002", "bybit": "0.0003"}, confidence="0.9375"
        )
        result = await _calculator(
            PredictionSource(predictor=predictor)
        ).calculate_predicted_break_even(make_opportunity(), SIZE, Decimal("10"))
        assert result.predicted_spread == Decimal("-0.0005")
        assert result.predicted_break_even_hours == Decimal("2")
        assert result.is_prediction_reliable is True
        # 24 * 0.9375 = 22.5 rounds half up
        assert result.reliable_horizon_hours == 23
        assert result.long_prediction is not None

    @pytest.mark.asyncio
    async def test_tiny_hourly_return_never_breaks_even(self) -> None:
        result = await _calculator().calculate_predicted_break_even(
            make_opportunity(), Decimal("10"), Decimal("1")
        )
        assert result.predicted_break_even_hours == INFINITY
        assert result.confidence_adjusted_break_even_hours == INFINITY

    @pytest.mark.asyncio
    async def test_zero_costs_break_even_immediately(self) -> None:
        result = await _calculator().calculate_predicted_break_even(
            make_opportunity(), SIZE, Decimal("0")
        )
        assert result.predicted_break_even_hours == 0


class TestReversal:
    """A predicted sign flip only skips when break-even misses the flip."""

    @pytest.mark.asyncio
    async def test_profit_before_flip_is_buy(self) -> None:
        predictor = _FixedPredictor(
            {"hyperliquid": "0.0003", "bybit": "-0.0001"}, confidence="0.8"
        )
        score = await _calculator(
            PredictionSource(predictor=predictor)
        ).score_opportunity(make_opportunity(), SIZE, Decimal("8"))
        # 8 / 4 / 0.8 = 2.5h against a 19h horizon
        assert score.break_even.confidence_adjusted_break_even_hours == Decimal("2.5")
        assert score.break_even.reliable_horizon_hours == 19
        assert score.recommendation == Recommendation.BUY

    @pytest.mark.asyncio
    async def test_break_even_after_flip_is_skip(self) -> None:
        predictor = _FixedPredictor(
            {"hyperliquid": "0.0003", "bybit": "-0.0001"}, confidence="0.8"
        )
        score = await _calculator(
            PredictionSource(predictor=predictor)
        ).score_opportunity(make_opportunity(), SIZE, Decimal("100"))
        assert score.break_even.confidence_adjusted_break_even_hours == Decimal("31.25")
        assert score.recommendation == Recommendation.SKIP


class TestRecommend:
    @pytest.fixture
    def calculator(self) -> PredictedBreakEvenCalculator:
        return _calculator()

    def test_never_breaks_even_with_meaningful_spread(
        self, calculator: PredictedBreakEvenCalculator
    ) -> None:
        recommendation, _ = calculator.recommend(
            Decimal("0.5"), _break_even("Infinity"), make_opportunity()
        )
        assert recommendation == Recommendation.BUY

    def test_never_breaks_even_with_minimal_spread(
        self, calculator: PredictedBreakEvenCalculator
    ) -> None:
        opp = make_opportunity(long_rate=Decimal("0.00005"), short_rate=Decimal("0.0001"))
        recommendation, _ = calculator.recommend(
            Decimal("0.5"), _break_even("Infinity"), opp
        )
        assert recommendation == Recommendation.HOLD

    @pytest.mark.parametrize(
        "hours, expected",
        [("25", Recommendation.SKIP), ("10", Recommendation.BUY)],
    )
    def test_reversal_against_horizon(
        self,
        calculator: PredictedBreakEvenCalculator,
        hours: str,
        expected: Recommendation,
    ) -> None:
        recommendation, _ = calculator.recommend(
            Decimal("0.5"),
            _break_even(hours, predicted_spread="0.0003"),
            make_opportunity(),
        )
        assert recommendation == expected

    @pytest.mark.parametrize(
        "hours, expected",
        [("100", Recommendation.BUY), ("200", Recommendation.HOLD)],
    )
    def test_unreliable_prediction_uses_current_spread(
        self,
        calculator: PredictedBreakEvenCalculator,
        hours: str,
        expected: Recommendation,
    ) -> None:
        recommendation, _ = calculator.recommend(
            Decimal("0.5"), _break_even(hours, reliable=False), make_opportunity()
        )
        assert recommendation == expected

    def test_unreliable_prediction_minimal_spread(
        self, calculator: PredictedBreakEvenCalculator
    ) -> None:
        opp = make_opportunity(long_rate=Decimal("0.00005"), short_rate=Decimal("0.0001"))
        recommendation, reason = calculator.recommend(
            Decimal("0.5"),
            _break_even("5", predicted_spread="-0.00005", reliable=False),
            opp,
        )
        assert recommendation == Recommendation.HOLD
        assert "unreliable" in reason

    def test_worst_case_too_long(self, calculator: PredictedBreakEvenCalculator) -> None:
        recommendation, _ = calculator.recommend(
            Decimal("0.9"), _break_even("6", worst_hours="400"), make_opportunity()
        )
        assert recommendation == Recommendation.HOLD

    def test_fast_break_even_is_strong_buy(
        self, calculator: PredictedBreakEvenCalculator
    ) -> None:
        recommendation, _ = calculator.recommend(
            Decimal("0.1"), _break_even("6"), make_opportunity()
        )
        assert recommendation == Recommendation.STRONG_BUY

    def test_high_score_and_confidence_is_strong_buy(
        self, calculator: PredictedBreakEvenCalculator
    ) -> None:
        recommendation, _ = calculator.recommend(
            Decimal("0.75"), _break_even("30"), make_opportunity()
        )
        assert recommendation == Recommendation.STRONG_BUY

    @pytest.mark.parametrize("hours", ["15", "30"])
    def test_moderate_break_even_is_buy(
        self, calculator: PredictedBreakEvenCalculator, hours: str
    ) -> None:
        recommendation, _ = calculator.recommend(
            Decimal("0.5"), _break_even(hours), make_opportunity()
        )
        assert recommendation == Recommendation.BUY

    def test_beyond_max_days_is_hold(
        self, calculator: PredictedBreakEvenCalculator
    ) -> None:
        recommendation, _ = calculator.recommend(
            Decimal("0.5"), _break_even("170"), make_opportunity()
        )
        assert recommendation == Recommendation.HOLD


class TestScoring:
    @pytest.mark.asyncio
    async def test_component_scores(self) -> None:
        score = await _calculator().score_opportunity(
            make_opportunity(), SIZE, Decimal("8")
        )
        assert score.spread_score == Decimal("0.8")
        assert score.confidence_score == Decimal("0.5")
        assert score.liquidity_score == Decimal("0.1")
        assert score.break_even_score == 1 - Decimal("4") / Decimal("168")
        assert Decimal("0") <= score.score <= Decimal("1")
        assert score.recommendation == Recommendation.BUY

    @pytest.mark.parametrize(
        "hours, expected",
        [("0", "1"), ("84", "0.5"), ("200", "0"), ("Infinity", "0")],
    )
    def test_break_even_score(self, hours: str, expected: str) -> None:
        assert PredictedBreakEvenCalculator.break_even_score(Decimal(hours)) == Decimal(
            expected
        )

    @pytest.mark.parametrize(
        "oi, expected",
        [(None, "0.1"), ("50000", "0"), ("100000000", "1"), ("1000000000", "1")],
    )
    def test_liquidity_score(self, oi: str | None, expected: str) -> None:
        value = Decimal(oi) if oi is not None else None
        opp = make_opportunity(long_open_interest=value, short_open_interest=value)
        assert PredictedBreakEvenCalculator.liquidity_score(opp) == Decimal(expected)
