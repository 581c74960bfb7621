"""Tests for structlog configuration."""

import json
import logging
from collections.abc import Iterator
from decimal import Decimal

import pytest
import structlog

from funding_arb.logging import cycle_context, get_logger, render_decimals, setup_logging


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    ccxt = logging.getLogger("ccxt")
    handlers, level, ccxt_level = root.handlers[:], root.level, ccxt.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)
    ccxt.setLevel(ccxt_level)


def _last_json_line(capsys: pytest.CaptureFixture[str]) -> dict:
    return json.loads(capsys.readouterr().err.strip().splitlines()[-1])


class TestSetupLogging:
    def test_sets_root_level(self) -> None:
        setup_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_defaults_to_info(self) -> None:
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO

    def test_ccxt_held_at_warning(self) -> None:
        setup_logging("DEBUG")
        assert logging.getLogger("ccxt").level == logging.WARNING
        setup_logging("ERROR")
        assert logging.getLogger("ccxt").level == logging.ERROR

    def test_explicit_format_overrides_env(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("LOG_FORMAT", "console")
        setup_logging("INFO", log_format="json")
        get_logger("funding_arb.test").info("decision_cycle_started", positions=0)
        assert _last_json_line(capsys)["event"] == "decision_cycle_started"


class TestJsonOutput:
    def test_cycle_id_and_decimals(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("LOG_FORMAT", "json")
        setup_logging("INFO")

        with cycle_context("abc123"):
            get_logger("funding_arb.test").info(
                "ladder_rung_allocated", amount=Decimal("100.50"), fill="full"
            )

        record = _last_json_line(capsys)
        assert record["event"] == "ladder_rung_allocated"
        assert record["cycle_id"] == "abc123"
        assert record["amount"] == "100.50"
        assert record["level"] == "info"

    def test_cycle_id_cleared_after_block(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("LOG_FORMAT", "json")
        setup_logging("INFO")

        with cycle_context("abc123"):
            pass
        get_logger("funding_arb.test").info("decision_cycle_finished")
        assert "cycle_id" not in _last_json_line(capsys)


class TestRenderDecimals:
    def test_only_decimals_converted(self) -> None:
        event = {"event": "x", "spread": Decimal("0.0004"), "count": 3, "symbol": "ETH"}
        rendered = render_decimals(None, "info", event)
        assert rendered == {"event": "x", "spread": "0.0004", "count": 3, "symbol": "ETH"}
