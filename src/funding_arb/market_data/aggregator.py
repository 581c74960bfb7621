"""Cross-exchange funding rate aggregation and opportunity discovery.

FUNDING CONVENTION: positive rate = longs pay shorts. We go LONG where the
rate is lowest (ideally negative, so longs are paid) and SHORT where it is
highest, earning ``short_rate - long_rate`` per hour on the notional.

Every exchange query is independent: a failure, timeout or missing symbol
mapping on one venue omits that venue's data point instead of failing the
whole symbol.
"""

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from decimal import Decimal
from typing import TypeVar

from funding_arb.config import DiscoverySettings
from funding_arb.exceptions import ProviderTimeout
from funding_arb.exchange.provider import FundingDataProvider
from funding_arb.logging import get_logger
from funding_arb.models import ArbitrageOpportunity, ExchangeFundingRate, annualize
from funding_arb.prediction.historical import RollingHistoricalMetrics
from funding_arb.symbols import normalize_symbol

logger = get_logger(__name__)

T = TypeVar("T")

_FALLBACK_ASSETS = ["BTC", "ETH"]


@dataclass(frozen=True)
class FundingRateComparison:
    """Highest vs lowest rate for one symbol across all exchanges."""

    symbol: str
    rates: list[ExchangeFundingRate]
    highest: ExchangeFundingRate
    lowest: ExchangeFundingRate
    spread: Decimal  # highest - lowest, never negative


class FundingRateAggregator:
    """Fans out funding queries across exchanges and pairs the results.

    Args:
        providers: One FundingDataProvider per exchange.
        settings: Batching, spread threshold and allow-list.
        request_timeout: Timeout in seconds for every provider call.
        history: Optional rolling store fed with every observed rate.

    The rates of the most recent scan are kept in ``last_scan_rates`` so
    later decisions in the same cycle reuse them instead of re-querying.
    """

    def __init__(
        self,
        providers: list[FundingDataProvider],
        settings: DiscoverySettings,
        request_timeout: float = 5.0,
        history: RollingHistoricalMetrics | None = None,
    ) -> None:
        self._providers = {p.exchange: p for p in providers}
        self._settings = settings
        self._timeout = request_timeout
        self._history = history
        self._allowed = {a.upper() for a in settings.allowed_assets}
        # normalized symbol -> {exchange: exchange-specific symbol}
        self._symbol_map: dict[str, dict[str, str]] = {}
        # normalized symbol -> rates observed by the latest scan
        self._last_scan: dict[str, list[ExchangeFundingRate]] = {}

    @property
    def exchanges(self) -> list[str]:
        return list(self._providers)

    @property
    def last_scan_rates(self) -> dict[str, list[ExchangeFundingRate]]:
        return {symbol: list(rates) for symbol, rates in self._last_scan.items()}

    async def discover_common_assets(self) -> list[str]:
        """Build the symbol mapping and return tradeable assets.

        An asset qualifies when it is listed on at least ``min_exchanges``
        venues and is on the liquidity allow-list. Falls back to BTC and
        ETH when no exchange could be queried at all.
        """
        exchanges = list(self._providers)
        results = await asyncio.gather(
            *(
                self._call(self._providers[ex].get_available_symbols())
                for ex in exchanges
            ),
            return_exceptions=True,
        )

        symbol_map: dict[str, dict[str, str]] = {}
        succeeded = 0
        for exchange, result in zip(exchanges, results):
            if isinstance(result, BaseException):
                _reraise_cancel(result)
                logger.warning(
                    "asset_discovery_failed", exchange=exchange, error=repr(result)
                )
                continue
            succeeded += 1
            for exchange_symbol in result:
                normalized = normalize_symbol(exchange_symbol)
                # First listing wins when a venue has several spellings
                symbol_map.setdefault(normalized, {}).setdefault(
                    exchange, exchange_symbol
                )

        if succeeded == 0:
            logger.warning("asset_discovery_fallback", assets=_FALLBACK_ASSETS)
            return list(_FALLBACK_ASSETS)

        self._symbol_map = symbol_map
        assets = sorted(
            symbol
            for symbol, venues in symbol_map.items()
            if len(venues) >= self._settings.min_exchanges and symbol in self._allowed
        )
        logger.info(
            "common_assets_discovered",
            count=len(assets),
            mapped_symbols=len(symbol_map),
            exchanges_ok=succeeded,
        )
        return assets

    def get_exchange_symbol(self, symbol: str, exchange: str) -> str | None:
        """Exchange-specific spelling of a normalized symbol, if known."""
        return self._symbol_map.get(normalize_symbol(symbol), {}).get(exchange)

    def get_symbol_mapping(self, symbol: str) -> dict[str, str]:
        return dict(self._symbol_map.get(normalize_symbol(symbol), {}))

    async def get_funding_rates(self, symbol: str) -> list[ExchangeFundingRate]:
        """Query every exchange for ``symbol`` concurrently.

        Exchanges without a mapping or whose current rate fails are omitted.
        A failed predicted rate falls back to the current rate; a failed
        mark price or open interest becomes None.
        """
        normalized = normalize_symbol(symbol)
        tasks = []
        exchanges = []
        for exchange, provider in self._providers.items():
            exchange_symbol = self.get_exchange_symbol(normalized, exchange)
            if exchange_symbol is None:
                continue
            exchanges.append(exchange)
            tasks.append(self._fetch_one(provider, normalized, exchange_symbol))

        results = await asyncio.gather(*tasks)
        rates = [r for r in results if r is not None]

        if self._history is not None:
            for rate in rates:
                self._history.record(rate.symbol, rate.exchange, rate.current_rate)

        logger.debug(
            "funding_rates_fetched",
            symbol=normalized,
            queried=exchanges,
            received=[r.exchange for r in rates],
        )
        return rates

    async def compare_funding_rates(self, symbol: str) -> FundingRateComparison | None:
        rates = await self.get_funding_rates(symbol)
        if not rates:
            return None
        highest = max(rates, key=lambda r: r.current_rate)
        lowest = min(rates, key=lambda r: r.current_rate)
        return FundingRateComparison(
            symbol=normalize_symbol(symbol),
            rates=rates,
            highest=highest,
            lowest=lowest,
            spread=highest.current_rate - lowest.current_rate,
        )

    async def get_pair_spread(
        self, symbol: str, long_exchange: str, short_exchange: str
    ) -> Decimal | None:
        """Current ``short_rate - long_rate`` for a pair; None if either leg is missing."""
        return self.spread_between(
            await self.get_funding_rates(symbol), long_exchange, short_exchange
        )

    @staticmethod
    def spread_between(
        rates: list[ExchangeFundingRate], long_exchange: str, short_exchange: str
    ) -> Decimal | None:
        by_exchange = {r.exchange: r for r in rates}
        long_rate = by_exchange.get(long_exchange)
        short_rate = by_exchange.get(short_exchange)
        if long_rate is None or short_rate is None:
            return None
        return short_rate.current_rate - long_rate.current_rate

    async def fetch_rates(
        self, symbols: list[str]
    ) -> dict[str, list[ExchangeFundingRate]]:
        """Fetch several symbols at once; a failed symbol maps to no rates."""
        normalized = [normalize_symbol(s) for s in symbols]
        results = await asyncio.gather(
            *(self.get_funding_rates(s) for s in normalized), return_exceptions=True
        )
        fetched: dict[str, list[ExchangeFundingRate]] = {}
        for symbol, result in zip(normalized, results):
            if isinstance(result, BaseException):
                _reraise_cancel(result)
                logger.warning("symbol_fetch_failed", symbol=symbol, error=repr(result))
                result = []
            fetched[symbol] = result
        return fetched

    async def find_arbitrage_opportunities(
        self, symbols: list[str], min_spread: Decimal | None = None
    ) -> list[ArbitrageOpportunity]:
        """Discover opportunities for ``symbols``, best annualized return first.

        Symbols are processed in batches of ``batch_size`` with
        ``batch_delay_seconds`` between batches to respect rate limits.
        """
        threshold = self._settings.min_spread if min_spread is None else min_spread
        batch_size = max(1, self._settings.batch_size)
        found: dict[str, ArbitrageOpportunity] = {}
        self._last_scan = {}

        for start in range(0, len(symbols), batch_size):
            if start > 0 and self._settings.batch_delay_seconds > 0:
                await asyncio.sleep(self._settings.batch_delay_seconds)
            batch = symbols[start : start + batch_size]
            results = await asyncio.gather(
                *(self.get_funding_rates(s) for s in batch), return_exceptions=True
            )
            for symbol, result in zip(batch, results):
                if isinstance(result, BaseException):
                    _reraise_cancel(result)
                    logger.warning(
                        "symbol_scan_failed", symbol=symbol, error=repr(result)
                    )
                    self._last_scan[normalize_symbol(symbol)] = []
                    continue
                self._last_scan[normalize_symbol(symbol)] = result
                for opportunity in self.build_opportunities(result, threshold):
                    existing = found.get(opportunity.pair_key)
                    if (
                        existing is None
                        or opportunity.expected_return > existing.expected_return
                    ):
                        found[opportunity.pair_key] = opportunity

        opportunities = sorted(
            found.values(), key=lambda o: o.expected_return, reverse=True
        )
        logger.info(
            "arbitrage_opportunities_found",
            symbols=len(symbols),
            opportunities=len(opportunities),
            min_spread=str(threshold),
        )
        return opportunities

    @staticmethod
    def build_opportunities(
        rates: list[ExchangeFundingRate], min_spread: Decimal
    ) -> list[ArbitrageOpportunity]:
        """Pair one symbol's rates into at most two opportunities.

        Directional pairing: most negative rate (long) against most positive
        rate (short), emitted when ``|spread| >= min_spread``. Extremes
        pairing: lowest against highest rate, emitted when
        ``spread >= min_spread``. Same-exchange pairs are never emitted.
        """
        if len(rates) < 2:
            return []

        opportunities: list[ArbitrageOpportunity] = []

        negatives = [r for r in rates if r.current_rate < 0]
        positives = [r for r in rates if r.current_rate > 0]
        if negatives and positives:
            long_leg = min(negatives, key=lambda r: r.current_rate)
            short_leg = max(positives, key=lambda r: r.current_rate)
            spread = abs(short_leg.current_rate - long_leg.current_rate)
            if long_leg.exchange != short_leg.exchange and spread >= min_spread:
                opportunities.append(_make_opportunity(long_leg, short_leg, spread))

        lowest = min(rates, key=lambda r: r.current_rate)
        highest = max(rates, key=lambda r: r.current_rate)
        spread = highest.current_rate - lowest.current_rate
        if lowest.exchange != highest.exchange and spread >= min_spread:
            opportunities.append(_make_opportunity(lowest, highest, spread))

        return opportunities

    async def _fetch_one(
        self, provider: FundingDataProvider, symbol: str, exchange_symbol: str
    ) -> ExchangeFundingRate | None:
        exchange = provider.exchange
        current, predicted, mark, oi = await asyncio.gather(
            self._call(provider.get_current_funding_rate(exchange_symbol)),
            self._call(provider.get_predicted_funding_rate(exchange_symbol)),
            self._call(provider.get_mark_price(exchange_symbol)),
            self._call(provider.get_open_interest(exchange_symbol)),
            return_exceptions=True,
        )
        if isinstance(current, BaseException):
            _reraise_cancel(current)
            logger.warning(
                "funding_rate_unavailable",
                exchange=exchange,
                symbol=symbol,
                error=repr(current),
            )
            return None

        return ExchangeFundingRate(
            exchange=exchange,
            symbol=symbol,
            current_rate=current,
            predicted_rate=current if isinstance(predicted, BaseException) else predicted,
            mark_price=self._optional(mark, "mark_price", exchange, symbol),
            open_interest=self._optional(oi, "open_interest", exchange, symbol),
        )

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self._timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(f"Provider call exceeded {self._timeout}s") from exc

    @staticmethod
    def _optional(
        result: Decimal | BaseException, field: str, exchange: str, symbol: str
    ) -> Decimal | None:
        if isinstance(result, BaseException):
            _reraise_cancel(result)
            logger.debug(
                "market_field_unavailable",
                field=field,
                exchange=exchange,
                symbol=symbol,
                error=repr(result),
            )
            return None
        return result


def _make_opportunity(
    long_leg: ExchangeFundingRate, short_leg: ExchangeFundingRate, spread: Decimal
) -> ArbitrageOpportunity:
    return ArbitrageOpportunity(
        symbol=long_leg.symbol,
        long_exchange=long_leg.exchange,
        short_exchange=short_leg.exchange,
        long_rate=long_leg.current_rate,
        short_rate=short_leg.current_rate,
        spread=spread,
        expected_return=annualize(spread),
        long_mark_price=long_leg.mark_price,
        short_mark_price=short_leg.mark_price,
        long_open_interest=long_leg.open_interest,
        short_open_interest=short_leg.open_interest,
    )


def _reraise_cancel(exc: BaseException) -> None:
    if isinstance(exc, asyncio.CancelledError):
        raise exc
