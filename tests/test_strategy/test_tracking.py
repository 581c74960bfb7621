"""Tests for position open-time tracking and failed-pair cool-downs."""

from decimal import Decimal

from conftest import FakeClock
from funding_arb.strategy.tracking import OpportunityCooldowns, PositionOpenTimes


class TestPositionOpenTimes:
    def test_age_in_hours(self, clock: FakeClock) -> None:
        times = PositionOpenTimes(clock=clock)
        times.record_open("ETH", "hyperliquid", "bybit")
        clock.advance_hours(5)
        assert times.age_hours("ETH", "hyperliquid", "bybit") == Decimal("5")
        assert "ETH-hyperliquid-bybit" in times

    def test_explicit_open_timestamp(self, clock: FakeClock) -> None:
        times = PositionOpenTimes(clock=clock)
        times.record_open("ETH", "hyperliquid", "bybit", opened_at=clock.now - 1800)
        assert times.age_hours("ETH", "hyperliquid", "bybit") == Decimal("0.5")

    def test_untracked_pair_has_no_age(self, clock: FakeClock) -> None:
        times = PositionOpenTimes(clock=clock)
        assert times.age_hours("ETH", "hyperliquid", "bybit") is None
        assert times.opened_at("ETH", "hyperliquid", "bybit") is None

    def test_direction_matters(self, clock: FakeClock) -> None:
        times = PositionOpenTimes(clock=clock)
        times.record_open("ETH", "hyperliquid", "bybit")
        assert times.age_hours("ETH", "bybit", "hyperliquid") is None

    def test_remove_on_close(self, clock: FakeClock) -> None:
        times = PositionOpenTimes(clock=clock)
        times.record_open("ETH", "hyperliquid", "bybit")
        assert times.remove_open("ETH", "hyperliquid", "bybit") is True
        assert times.remove_open("ETH", "hyperliquid", "bybit") is False
        assert len(times) == 0


class TestOpportunityCooldowns:
    def test_key_ignores_direction(self) -> None:
        assert OpportunityCooldowns.key("ETH", "bybit", "hyperliquid") == (
            OpportunityCooldowns.key("ETH", "hyperliquid", "bybit")
        )

    def test_filtered_until_expiry(self, clock: FakeClock) -> None:
        cooldowns = OpportunityCooldowns(expiry_seconds=1800, clock=clock)
        cooldowns.mark_failed("ETH", "hyperliquid", "bybit")
        assert cooldowns.is_filtered("ETH", "bybit", "hyperliquid")
        assert not cooldowns.is_filtered("BTC", "hyperliquid", "bybit")

        clock.advance_hours(0.5)
        assert not cooldowns.is_filtered("ETH", "hyperliquid", "bybit")
        assert len(cooldowns) == 0

    def test_clear(self, clock: FakeClock) -> None:
        cooldowns = OpportunityCooldowns(clock=clock)
        cooldowns.mark_failed("ETH", "hyperliquid", "bybit")
        cooldowns.clear()
        assert not cooldowns.is_filtered("ETH", "hyperliquid", "bybit")
