"""
Signal, Error and Logging Tests.

Covers:
- TradeSignal validation and spot folding
- Sanitized error messages
- Secret redaction in log records
"""

import asyncio
import logging
import sys

import pytest

from trade_bridge.core.signals import Direction, TradeSignal
from trade_bridge.errors import (
    BridgeNotInitializedError,
    ErrorCategory,
    ExchangeAPIError,
    ValidationError,
    safe_error_message,
)
from trade_bridge.utils.logger import REDACTED, SecretRedactionFilter, mask_value

from conftest import make_signal


class TestSignals:

    def test_normalizes_fields(self):
        signal = make_signal(symbol=" btcusdt ", direction="Short")

        assert signal.symbol == "BTCUSDT"
        assert signal.direction == Direction.SHORT
        assert signal.signal_id.startswith("BTCUSDT-15m-")

    def test_explicit_signal_id_kept(self):
        assert make_signal(signal_id="abc").signal_id == "abc"

    @pytest.mark.parametrize("kwargs", [
        {"price": 0.0},
        {"leverage": 0},
        {"size": -1.0},
        {"direction": "sideways"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            make_signal(**kwargs)

    def test_for_spot(self):
        signal = make_signal(leverage=5, size=20.0)

        spot = signal.for_spot()

        assert spot.suggested_leverage == 1
        assert spot.suggested_position_size == pytest.approx(100.0)
        assert spot.notional_size == pytest.approx(signal.notional_size)
        assert spot.signal_id == signal.signal_id

    def test_direction_helpers(self):
        assert Direction.LONG.sign == 1
        assert Direction.SHORT.opposite == Direction.LONG
        assert Direction.SHORT.label == "SHORT"

    def test_trade_signal_is_frozen(self):
        signal = TradeSignal("ETHUSDT", Direction.LONG, "1h", 3000.0)

        with pytest.raises(AttributeError):
            signal.price = 1.0


class TestErrors:

    def test_bridge_errors_keep_their_message(self):
        error = ExchangeAPIError("Exchange API error: Insufficient margin", status=200, code=2005)

        assert safe_error_message(error) == "Exchange API error: Insufficient margin"
        assert error.category == ErrorCategory.NETWORK

    def test_foreign_exceptions_reduced_to_type(self):
        error = ValueError("https://api.example.com/?signature=deadbeef")

        assert safe_error_message(error) == "Unexpected error: ValueError"

    def test_timeouts(self):
        assert safe_error_message(asyncio.TimeoutError()) == "Request timed out"

    def test_misuse_is_a_runtime_error(self):
        error = BridgeNotInitializedError()

        assert isinstance(error, RuntimeError)
        assert error.category == ErrorCategory.MISUSE


class TestRedaction:

    def _record(self, msg, args=None, exc_info=None):
        return logging.LogRecord("test", logging.ERROR, __file__, 1, msg, args, exc_info)

    def test_registered_secret_masked(self):
        SecretRedactionFilter.register_secret("s3cr3t-value")
        record = self._record("signing with %s", ("s3cr3t-value",))

        SecretRedactionFilter().filter(record)

        assert record.getMessage() == f"signing with {REDACTED}"

    def test_short_values_not_registered(self):
        SecretRedactionFilter.register_secret("abc")
        SecretRedactionFilter.register_secret(None)

        assert SecretRedactionFilter.redact("abc") == "abc"

    def test_traceback_masked(self):
        SecretRedactionFilter.register_secret("s3cr3t-value")
        try:
            raise RuntimeError("bad key s3cr3t-value")
        except RuntimeError:
            record = self._record("request failed", exc_info=sys.exc_info())

        SecretRedactionFilter().filter(record)

        assert "s3cr3t-value" not in record.getMessage()
        assert REDACTED in record.getMessage()
        assert record.exc_info is None

    def test_untouched_without_secrets(self):
        record = self._record("nothing %s", ("here",))

        assert SecretRedactionFilter().filter(record)
        assert record.args == ("here",)

    def test_mask_value(self):
        assert mask_value("mx0vglAbCdEfGh1234") == "**************1234"
        assert mask_value("short") == "*****"
        assert mask_value("") == ""
