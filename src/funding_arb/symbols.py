"""Symbol normalization across exchanges and the liquidity allow-list.

Venues spell the same perpetual differently: ``ETHUSDT`` (Binance-style ids),
``ETH/USDT:USDT`` (ccxt unified), ``ETH-PERP``, or plain ``ETH``
(Hyperliquid). Everything is reduced to the base asset before comparison.
"""

import re

_PERP_SUFFIX = re.compile(r"[-_]?PERP$")
_QUOTE_SUFFIX = re.compile(r"[-_]?(USDT|USDC|USD)$")

#: Assets liquid enough to arbitrage. Orchestration only processes these,
#: and only when listed on at least two venues.
ALLOWED_ASSETS: frozenset[str] = frozenset(
    {
        "0G", "2Z", "AAVE", "ADA", "AERO", "AI16Z", "APEX", "APT", "ARB",
        "ASTER", "AVAX", "AVNT", "BCH", "BERA", "BNB", "BTC", "CC", "CRV",
        "DOGE", "DOT", "DYDX", "EIGEN", "ENA", "ETH", "ETHFI", "FARTCOIN",
        "FIL", "GMX", "GRASS", "HBAR", "HYPE", "ICP", "IP", "JUP", "KAITO",
        "LAUNCHCOIN", "LDO", "LINEA", "LINK", "LTC", "MEGA", "MET", "MKR",
        "MNT", "MON", "MORPHO", "NEAR", "ONDO", "OP", "PAXG", "PENDLE",
        "PENGU", "POL", "POPCAT", "PROVE", "PUMP", "PYTH", "RESOLV", "S",
        "SEI", "SKY", "SOL", "SPX", "STBL", "STRK", "SUI", "SYRUP", "TAO",
        "TIA", "TON", "TRUMP", "TRX", "UNI", "VIRTUAL", "VVV", "WIF", "WLD",
        "WLFI", "XPL", "XRP", "YZY", "ZEC", "ZK", "ZORA", "ZRO",
    }
)


def normalize_symbol(symbol: str) -> str:
    """Reduce an exchange-specific symbol to its base asset.

    Examples:
        >>> normalize_symbol("ETHUSDT")
        'ETH'
        >>> normalize_symbol("BTC/USDT:USDT")
        'BTC'
        >>> normalize_symbol("SOL-PERP")
        'SOL'

    Args:
        symbol: Symbol as reported by an exchange.

    Returns:
        Upper-case base asset. A symbol that would normalize to an empty
        string (e.g. ``"USDC"``) is returned upper-cased unchanged.
    """
    upper = symbol.strip().upper()
    base = upper.split("/", 1)[0] if "/" in upper else upper
    base = _PERP_SUFFIX.sub("", base)
    base = _QUOTE_SUFFIX.sub("", base)
    return base or upper
