"""In-process historical funding rate metrics.

Keeps a bounded window of observed hourly rates per (symbol, exchange) and
summarizes it into HistoricalMetrics for worst-case evaluation.
"""

from collections import deque
from decimal import Decimal

from funding_arb.models import HistoricalMetrics
from funding_arb.prediction.sources import HistoricalMetricsProvider


def compute_historical_metrics(rates: list[Decimal]) -> HistoricalMetrics | None:
    """Summarize a series of hourly funding rates.

    Consistency is the fraction of observations sharing the sign of the
    mean rate: a spread that always pays the same direction scores 1.

    Returns:
        HistoricalMetrics, or None for an empty series.
    """
    if not rates:
        return None

    average = sum(rates, Decimal("0")) / len(rates)
    if average > 0:
        same_sign = sum(1 for r in rates if r > 0)
    elif average < 0:
        same_sign = sum(1 for r in rates if r < 0)
    else:
        same_sign = sum(1 for r in rates if r == 0)

    return HistoricalMetrics(
        min_rate=min(rates),
        max_rate=max(rates),
        average_rate=average,
        consistency_score=Decimal(same_sign) / len(rates),
        sample_count=len(rates),
    )


class RollingHistoricalMetrics(HistoricalMetricsProvider):
    """HistoricalMetricsProvider over rolling per-pair rate windows.

    Args:
        window_size: Maximum observations kept per (symbol, exchange).
        min_samples: Observations required before metrics are reported.
    """

    def __init__(self, window_size: int = 168, min_samples: int = 6) -> None:
        self._window_size = window_size
        self._min_samples = min_samples
        self._rates: dict[tuple[str, str], deque[Decimal]] = {}

    def record(self, symbol: str, exchange: str, rate: Decimal) -> None:
        """Append one observed hourly rate."""
        key = (symbol, exchange)
        window = self._rates.get(key)
        if window is None:
            window = deque(maxlen=self._window_size)
            self._rates[key] = window
        window.append(rate)

    def sample_count(self, symbol: str, exchange: str) -> int:
        window = self._rates.get((symbol, exchange))
        return len(window) if window else 0

    async def get_historical_metrics(
        self, symbol: str, exchange: str
    ) -> HistoricalMetrics | None:
        window = self._rates.get((symbol, exchange))
        if window is None or len(window) < self._min_samples:
            return None
        return compute_historical_metrics(list(window))
