"""Funding data and balance providers backed by ccxt async.

One CcxtFundingDataProvider wraps one ccxt.async_support exchange. Venues
settle funding on different schedules (Hyperliquid hourly, Bybit and Binance
every 8h), so every rate is converted to HOURLY before it leaves this module.

The aggregator asks for the current rate, predicted rate, mark price and open
interest of a symbol at the same moment. Each ccxt response is fetched once
and shared by those calls for ``cache_seconds``.
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal, InvalidOperation

import ccxt.async_support as ccxt_async

from funding_arb.config import ExchangeSettings
from funding_arb.exceptions import DataUnavailableError
from funding_arb.exchange.provider import BalanceProvider, FundingDataProvider
from funding_arb.logging import get_logger

logger = get_logger(__name__)

_DEFAULT_INTERVAL_HOURS = 8


def _to_decimal(value: object) -> Decimal | None:
    """Convert a ccxt numeric field to Decimal, None if missing or invalid."""
    if value is None:
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _parse_interval_hours(raw: object) -> int | None:
    """Parse ccxt's ``interval`` field (e.g. ``"8h"``) into hours."""
    if not isinstance(raw, str) or not raw.endswith("h"):
        return None
    try:
        hours = int(raw[:-1])
    except ValueError:
        return None
    return hours if hours > 0 else None


def build_exchange(exchange_id: str, settings: ExchangeSettings) -> ccxt_async.Exchange:
    """Instantiate a ccxt async exchange configured for linear perpetuals."""
    exchange_class = getattr(ccxt_async, exchange_id, None)
    if exchange_class is None:
        raise ValueError(f"Unknown ccxt exchange id: {exchange_id}")

    config: dict = {
        "enableRateLimit": True,
        "timeout": int(settings.request_timeout_seconds * 1000),
        "options": {
            "defaultType": "swap",
        },
    }
    api_key = settings.api_keys.get(exchange_id)
    api_secret = settings.api_secrets.get(exchange_id)
    if api_key is not None and api_secret is not None:
        config["apiKey"] = api_key.get_secret_value()
        config["secret"] = api_secret.get_secret_value()

    return exchange_class(config)


class CcxtFundingDataProvider(FundingDataProvider):
    """FundingDataProvider over a single ccxt async exchange."""

    def __init__(
        self,
        exchange_id: str,
        client: ccxt_async.Exchange,
        funding_interval_hours: int = _DEFAULT_INTERVAL_HOURS,
        quote_currency: str = "USDT",
        cache_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._exchange_id = exchange_id
        self._client = client
        self._interval_hours = funding_interval_hours
        self._quote = quote_currency
        self._markets: dict = {}
        self._cache_seconds = cache_seconds
        self._clock = clock
        # (ccxt method, symbol) -> (fetched at, shared request)
        self._responses: dict[tuple[str, str], tuple[float, asyncio.Future]] = {}

    @classmethod
    def from_settings(
        cls, exchange_id: str, settings: ExchangeSettings
    ) -> "CcxtFundingDataProvider":
        """Build a provider using the configured interval and credentials."""
        return cls(
            exchange_id=exchange_id,
            client=build_exchange(exchange_id, settings),
            funding_interval_hours=settings.funding_interval_hours.get(
                exchange_id, _DEFAULT_INTERVAL_HOURS
            ),
            quote_currency=settings.quote_currency,
            cache_seconds=settings.response_cache_seconds,
        )

    @property
    def exchange(self) -> str:
        return self._exchange_id

    @property
    def client(self) -> ccxt_async.Exchange:
        """Access the underlying ccxt exchange instance."""
        return self._client

    async def connect(self) -> None:
        """Initialize connection by loading markets."""
        logger.info("connecting_to_exchange", exchange=self._exchange_id)
        self._markets = await self._client.load_markets()
        logger.info(
            "exchange_connected",
            exchange=self._exchange_id,
            market_count=len(self._markets),
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._client.close()
        logger.info("exchange_connection_closed", exchange=self._exchange_id)

    async def get_available_symbols(self) -> list[str]:
        """Return all linear perpetual symbols.

        Venues quoting perps in USDC (Hyperliquid) are accepted alongside the
        configured quote currency.
        """
        if not self._markets:
            self._markets = await self._client.load_markets()

        return [
            symbol
            for symbol, market in self._markets.items()
            if market.get("swap")
            and market.get("linear")
            and market.get("active", True) is not False
            and market.get("quote") in (self._quote, "USDC")
        ]

    async def get_current_funding_rate(self, symbol: str) -> Decimal:
        info = await self._fetch("fetch_funding_rate", symbol)
        rate = _to_decimal(info.get("fundingRate"))
        if rate is None:
            raise DataUnavailableError(
                f"{self._exchange_id} returned no funding rate for {symbol}"
            )
        return self._to_hourly(rate, info)

    async def get_predicted_funding_rate(self, symbol: str) -> Decimal:
        info = await self._fetch("fetch_funding_rate", symbol)
        rate = _to_decimal(info.get("nextFundingRate"))
        if rate is None:
            raise DataUnavailableError(
                f"{self._exchange_id} publishes no predicted rate for {symbol}"
            )
        return self._to_hourly(rate, info)

    async def get_mark_price(self, symbol: str) -> Decimal:
        ticker = await self._fetch("fetch_ticker", symbol)
        price = _to_decimal(ticker.get("markPrice")) or _to_decimal(ticker.get("last"))
        if price is None or price <= 0:
            raise DataUnavailableError(
                f"{self._exchange_id} returned no mark price for {symbol}"
            )
        return price

    async def get_open_interest(self, symbol: str) -> Decimal:
        """Return open interest in USD.

        Uses ``openInterestValue`` when the venue reports it, otherwise
        converts the contract amount at the current mark price.
        """
        oi = await self._fetch("fetch_open_interest", symbol)
        value = _to_decimal(oi.get("openInterestValue"))
        if value is not None:
            return value

        amount = _to_decimal(oi.get("openInterestAmount"))
        if amount is None:
            raise DataUnavailableError(
                f"{self._exchange_id} returned no open interest for {symbol}"
            )
        return amount * await self.get_mark_price(symbol)

    async def _fetch(self, method: str, symbol: str) -> dict:
        """One ccxt request per (method, symbol), shared while fresh.

        Callers await a shielded copy, so a caller timing out never cancels
        the request for the others. Failed requests are not reused.
        """
        key = (method, symbol)
        now = self._clock()
        entry = self._responses.get(key)
        if entry is None or now - entry[0] > self._cache_seconds:
            request = asyncio.ensure_future(getattr(self._client, method)(symbol))
            request.add_done_callback(lambda done: self._evict_failed(key, done))
            entry = (now, request)
            self._responses[key] = entry
        return await asyncio.shield(entry[1])

    def _evict_failed(self, key: tuple[str, str], request: asyncio.Future) -> None:
        if request.cancelled() or request.exception() is not None:
            cached = self._responses.get(key)
            if cached is not None and cached[1] is request:
                del self._responses[key]

    def _to_hourly(self, rate: Decimal, info: dict) -> Decimal:
        interval = _parse_interval_hours(info.get("interval")) or self._interval_hours
        return rate / Decimal(interval)


class CcxtBalanceProvider(BalanceProvider):
    """BalanceProvider reading free quote collateral from ccxt exchanges."""

    def __init__(
        self, clients: dict[str, ccxt_async.Exchange], quote_currency: str = "USDT"
    ) -> None:
        self._clients = clients
        self._quote = quote_currency

    async def get_balance(self, exchange: str) -> Decimal:
        client = self._clients.get(exchange)
        if client is None:
            raise DataUnavailableError(f"No client configured for {exchange}")

        balance = await client.fetch_balance()
        free = balance.get("free", {}) or {}
        amount = _to_decimal(free.get(self._quote))
        if amount is None:
            # Hyperliquid margin is USDC
            amount = _to_decimal(free.get("USDC"))
        if amount is None:
            raise DataUnavailableError(
                f"{exchange} reported no free {self._quote} balance"
            )
        return amount
