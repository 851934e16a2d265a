"""
Tests for settings, structured logging and the exception types.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from optimus.core.exceptions import (
    InvalidTargetError,
    InvalidWalletError,
    OptimusError,
    SourceUnavailableError,
)
from optimus.core.logging import StructuredFormatter
from optimus.core.settings import Settings


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("OPTIMUS_PORT", raising=False)
        settings = Settings(_env_file=None)

        assert settings.port == 3000
        assert settings.per_trade_fee_sol == Decimal("0.0005")
        assert settings.market_source_urls == {}
        assert settings.bullish_confidence_threshold == 0.6

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("OPTIMUS_PORT", "8080")
        monkeypatch.setenv("OPTIMUS_MARKET_SOURCE_URLS", '{"raydium": "https://r.example"}')
        monkeypatch.setenv("OPTIMUS_REBALANCE_THRESHOLD", "0.02")

        settings = Settings(_env_file=None)

        assert settings.port == 8080
        assert settings.market_source_urls == {"raydium": "https://r.example"}
        assert settings.rebalance_threshold == Decimal("0.02")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"environment": "qa"},
            {"request_deadline_seconds": 0},
            {"per_trade_fee_sol": Decimal("-0.1")},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)


class TestStructuredFormatter:
    """JSON log formatting."""

    def make_record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("optimus.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_context_and_extra_data(self):
        record = self.make_record(
            wallet="abc",
            source="pyth",
            extra_data={"latency_ms": 12.5, "api_key": "s3cret"},
        )

        line = json.loads(StructuredFormatter().format(record))

        assert line["message"] == "hello world"
        assert line["level"] == "INFO"
        assert line["wallet"] == "abc"
        assert line["source"] == "pyth"
        assert line["latency_ms"] == 12.5
        assert line["api_key"] == "[REDACTED]"


class TestExceptions:
    """Error codes and HTTP status hints."""

    @pytest.mark.parametrize(
        "exc_class, code, status",
        [
            (InvalidWalletError, "INVALID_WALLET", 400),
            (InvalidTargetError, "INVALID_TARGET", 400),
            (SourceUnavailableError, "SOURCE_UNAVAILABLE", 500),
        ],
    )
    def test_codes(self, exc_class, code, status):
        exc = exc_class("boom", details={"k": "v"})

        assert isinstance(exc, OptimusError)
        assert exc.error_code == code
        assert exc.status_code == status
        assert exc.details == {"k": "v"}
        assert exc.trace_id
        assert str(exc) == "boom"
