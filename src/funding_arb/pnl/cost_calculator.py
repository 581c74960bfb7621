"""Trading cost model for cross-exchange funding rate arbitrage.

All calculations use Decimal arithmetic exclusively -- no float conversions anywhere.
Every method is pure: identical inputs always produce identical outputs.

Cost components for a two-leg position of notional N:
  - Fees: N * fee_rate per leg (maker on entry, taker on exit)
  - Slippage: square-root market impact model using open interest as the
    liquidity proxy
  - Basis risk: |mark price divergence in bps| / 10000 * N

Funding convention: positive rate = longs pay shorts. We go LONG where the
rate is lowest and SHORT where it is highest, so the pair earns
(short_rate - long_rate) * N per hour.
"""

from decimal import Decimal

from funding_arb.config import FeeSettings
from funding_arb.models import BookTop, OrderType, TradeCosts

_ZERO = Decimal("0")
_ONE = Decimal("1")
_DEFAULT_SPREAD_PCT = Decimal("0.001")  # 0.1% when no price is known
_MAKER_BASE_SLIPPAGE = Decimal("0.0001")  # 1bp floor for resting orders
_MAX_IMPACT = Decimal("0.02")  # 2% cap on market impact
_FALLBACK_TAKER_SLIPPAGE = Decimal("0.0005")  # no OI data
_FALLBACK_MAKER_SLIPPAGE = Decimal("0.0001")
_RATE_SHIFT_PER_OI = Decimal("0.001")  # 10bps shift for 100% of OI
_MAX_RATE_IMPACT = Decimal("0.0005")  # 5bp cap
_BPS = Decimal("10000")


class CostCalculator:
    """Calculates fees, slippage, funding impact and break-even time.

    Args:
        fee_settings: Per-exchange maker/taker fee rates.
    """

    def __init__(self, fee_settings: FeeSettings) -> None:
        self._fees = fee_settings

    def fee_rate(self, exchange: str, is_maker: bool = True) -> Decimal:
        """Return the configured fee rate for an exchange.

        Unknown exchanges fall back to ``default_rate``.
        """
        rates = self._fees.maker_rates if is_maker else self._fees.taker_rates
        return rates.get(exchange, self._fees.default_rate)

    def fees(self, notional: Decimal, exchange: str, is_maker: bool = True) -> Decimal:
        """Fee in USD for one leg of ``notional`` on ``exchange``."""
        return notional * self.fee_rate(exchange, is_maker)

    def slippage_cost(
        self,
        notional: Decimal,
        best_bid: Decimal,
        best_ask: Decimal,
        open_interest: Decimal | None,
        order_type: OrderType,
    ) -> Decimal:
        """Estimate slippage in USD for one leg using a square-root impact model.

        Base slippage is half the bid/ask spread for market (taker) orders
        and a fixed 1bp for limit (maker) orders. Market impact is
        ``min(sqrt(min(notional / oi, 1)) * spread_pct * 2, 2%)``.

        With zero or unknown open interest a conservative flat estimate is
        used instead: 5bp for market orders, 1bp for limit orders.

        Args:
            notional: Order size in USD.
            best_bid: Best bid price (0 if unknown).
            best_ask: Best ask price (0 if unknown).
            open_interest: Open interest in USD, the liquidity proxy.
            order_type: MARKET (taker) or LIMIT (maker).

        Returns:
            Slippage cost in USD.
        """
        mid = (best_bid + best_ask) / 2
        spread_pct = (best_ask - best_bid) / mid if mid > 0 else _DEFAULT_SPREAD_PCT

        if open_interest is None or open_interest <= 0:
            fallback = (
                _FALLBACK_TAKER_SLIPPAGE
                if order_type == OrderType.MARKET
                else _FALLBACK_MAKER_SLIPPAGE
            )
            return notional * fallback

        base = spread_pct / 2 if order_type == OrderType.MARKET else _MAKER_BASE_SLIPPAGE
        liquidity_ratio = min(notional / open_interest, _ONE)
        impact = min(liquidity_ratio.sqrt() * spread_pct * 2, _MAX_IMPACT)
        return notional * (base + impact)

    def funding_rate_impact(
        self,
        notional: Decimal,
        open_interest: Decimal | None,
        current_rate: Decimal | None,
    ) -> Decimal:
        """Predict how much our own order shifts the venue's funding rate.

        Linear in our share of open interest (0.1bp per 1% of OI), capped
        at 5bp. Returns zero when OI is unknown/non-positive or the current
        rate is missing or NaN, since no meaningful prediction exists.
        """
        if open_interest is None or open_interest <= 0:
            return _ZERO
        if current_rate is None or current_rate.is_nan():
            return _ZERO

        impact = (notional / open_interest) * _RATE_SHIFT_PER_OI
        return min(impact, _MAX_RATE_IMPACT)

    def trade_costs(
        self,
        notional: Decimal,
        long_exchange: str,
        short_exchange: str,
        long_open_interest: Decimal | None = None,
        short_open_interest: Decimal | None = None,
        long_book: BookTop | None = None,
        short_book: BookTop | None = None,
        basis_divergence_bps: Decimal = _ZERO,
        is_entry: bool = True,
    ) -> TradeCosts:
        """Cost of opening (or closing) both legs at ``notional`` each.

        Entry uses resting limit orders (maker fee, maker slippage); exit
        uses market orders (taker fee, taker slippage).
        """
        is_maker = is_entry
        order_type = OrderType.LIMIT if is_entry else OrderType.MARKET

        fees = self.fees(notional, long_exchange, is_maker) + self.fees(
            notional, short_exchange, is_maker
        )
        slippage = self._leg_slippage(
            notional, long_book, long_open_interest, order_type
        ) + self._leg_slippage(notional, short_book, short_open_interest, order_type)
        basis_risk = abs(basis_divergence_bps) / _BPS * notional

        return TradeCosts(fees=fees, slippage=slippage, basis_risk_cost=basis_risk)

    def round_trip_costs(
        self,
        notional: Decimal,
        long_exchange: str,
        short_exchange: str,
        long_open_interest: Decimal | None = None,
        short_open_interest: Decimal | None = None,
        long_book: BookTop | None = None,
        short_book: BookTop | None = None,
        basis_divergence_bps: Decimal = _ZERO,
    ) -> tuple[TradeCosts, TradeCosts]:
        """Return ``(entry_costs, exit_costs)`` for a full open + close cycle."""
        kwargs = dict(
            notional=notional,
            long_exchange=long_exchange,
            short_exchange=short_exchange,
            long_open_interest=long_open_interest,
            short_open_interest=short_open_interest,
            long_book=long_book,
            short_book=short_book,
            basis_divergence_bps=basis_divergence_bps,
        )
        return (
            self.trade_costs(is_entry=True, **kwargs),
            self.trade_costs(is_entry=False, **kwargs),
        )

    @staticmethod
    def break_even_hours(
        total_costs: Decimal, hourly_return: Decimal
    ) -> Decimal | None:
        """Hours of funding income needed to cover ``total_costs``.

        Returns:
            None if the position never breaks even (``hourly_return <= 0``),
            Decimal("0") if there is nothing to recover, else the ratio.
        """
        if hourly_return <= 0:
            return None
        if total_costs <= 0:
            return _ZERO
        return total_costs / hourly_return

    def _leg_slippage(
        self,
        notional: Decimal,
        book: BookTop | None,
        open_interest: Decimal | None,
        order_type: OrderType,
    ) -> Decimal:
        bid = book.best_bid if book is not None else _ZERO
        ask = book.best_ask if book is not None else _ZERO
        return self.slippage_cost(notional, bid, ask, open_interest, order_type)
