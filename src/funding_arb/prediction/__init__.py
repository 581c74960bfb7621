"""Rate prediction layer -- predictor contracts, history and break-even forecasting."""

from funding_arb.prediction.break_even import (
    PredictedBreakEven,
    PredictedBreakEvenCalculator,
    PredictionScore,
)
from funding_arb.prediction.historical import (
    RollingHistoricalMetrics,
    compute_historical_metrics,
)
from funding_arb.prediction.sources import (
    EnsembleRatePredictor,
    HistoricalMetricsProvider,
    PredictionSource,
)

__all__ = [
    "EnsembleRatePredictor",
    "HistoricalMetricsProvider",
    "PredictedBreakEven",
    "PredictedBreakEvenCalculator",
    "PredictionScore",
    "PredictionSource",
    "RollingHistoricalMetrics",
    "compute_historical_metrics",
]
