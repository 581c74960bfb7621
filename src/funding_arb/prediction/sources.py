"""Optional prediction and history capabilities, behind one fallback shim.

The ensemble predictor and the historical metrics provider are both
optional. Consumers never null-check them directly: PredictionSource
answers every question, substituting the current rate (at the default
confidence) whenever the predictor is absent, fails, times out or returns
a non-finite value.
"""

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal

from funding_arb.logging import get_logger
from funding_arb.models import HistoricalMetrics, MarketRegime, RatePrediction

logger = get_logger(__name__)


class EnsembleRatePredictor(ABC):
    """Forecasts the next hourly funding rate for a symbol on an exchange."""

    @abstractmethod
    async def predict(self, symbol: str, exchange: str) -> RatePrediction:
        ...


class HistoricalMetricsProvider(ABC):
    """Summary statistics of recent funding rates."""

    @abstractmethod
    async def get_historical_metrics(
        self, symbol: str, exchange: str
    ) -> HistoricalMetrics | None:
        """Return metrics, or None when there is not enough history."""
        ...


def _is_usable(prediction: RatePrediction) -> bool:
    values = (
        prediction.rate,
        prediction.lower_bound,
        prediction.upper_bound,
        prediction.confidence,
    )
    return all(v.is_finite() for v in values)


class PredictionSource:
    """Single access point for rate predictions and historical metrics.

    Args:
        predictor: Optional ensemble predictor.
        history: Optional historical metrics provider.
        default_confidence: Confidence assigned to current-rate fallbacks.
        timeout: Per-call timeout in seconds.
    """

    def __init__(
        self,
        predictor: EnsembleRatePredictor | None = None,
        history: HistoricalMetricsProvider | None = None,
        default_confidence: Decimal = Decimal("0.5"),
        timeout: float = 2.0,
    ) -> None:
        self._predictor = predictor
        self._history = history
        self._default_confidence = default_confidence
        self._timeout = timeout

    @property
    def has_predictor(self) -> bool:
        return self._predictor is not None

    @property
    def has_history(self) -> bool:
        return self._history is not None

    async def predict(
        self, symbol: str, exchange: str, current_rate: Decimal
    ) -> tuple[RatePrediction, bool]:
        """Predict the next rate, falling back to ``current_rate``.

        Returns:
            ``(prediction, is_model_output)``. The flag is False when the
            fallback was used; the fallback has zero-width bounds so callers
            can detect it and apply their own pessimism factors.
        """
        if self._predictor is not None:
            try:
                prediction = await asyncio.wait_for(
                    self._predictor.predict(symbol, exchange), self._timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "prediction_unavailable",
                    symbol=symbol,
                    exchange=exchange,
                    error=repr(exc),
                )
            else:
                if _is_usable(prediction):
                    return prediction, True
                logger.warning(
                    "prediction_not_finite", symbol=symbol, exchange=exchange
                )

        return (
            RatePrediction(
                rate=current_rate,
                lower_bound=current_rate,
                upper_bound=current_rate,
                confidence=self._default_confidence,
                regime=MarketRegime.MEAN_REVERTING,
            ),
            False,
        )

    async def historical_metrics(
        self, symbol: str, exchange: str
    ) -> HistoricalMetrics | None:
        """Historical metrics for one leg, None when unknown or failed."""
        if self._history is None:
            return None
        try:
            return await asyncio.wait_for(
                self._history.get_historical_metrics(symbol, exchange), self._timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "historical_metrics_unavailable",
                symbol=symbol,
                exchange=exchange,
                error=repr(exc),
            )
            return None
