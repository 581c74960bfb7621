"""Tests for symbol normalization and the allow-list."""

import pytest

from funding_arb.symbols import ALLOWED_ASSETS, normalize_symbol


class TestNormalizeSymbol:
    """Exchange spellings collapse to the base asset."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("ETHUSDT", "ETH"),
            ("ETH/USDT:USDT", "ETH"),
            ("BTC/USDC:USDC", "BTC"),
            ("SOL-PERP", "SOL"),
            ("SOLPERP", "SOL"),
            ("DOGE-USD", "DOGE"),
            ("ARBUSDC", "ARB"),
            ("eth", "ETH"),
            ("  HYPE  ", "HYPE"),
        ],
    )
    def test_known_spellings(self, raw: str, expected: str) -> None:
        assert normalize_symbol(raw) == expected

    def test_quote_only_symbol_is_not_emptied(self) -> None:
        assert normalize_symbol("USDC") == "USDC"

    def test_idempotent(self) -> None:
        assert normalize_symbol(normalize_symbol("ETH/USDT:USDT")) == "ETH"


class TestAllowedAssets:
    def test_majors_allowed(self) -> None:
        assert {"BTC", "ETH", "SOL"} <= ALLOWED_ASSETS

    def test_assets_are_normalized(self) -> None:
        assert all(normalize_symbol(a) == a for a in ALLOWED_ASSETS)
