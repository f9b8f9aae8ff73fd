"""Tests for error classification."""

import asyncio

import pytest

from rtc_session.classifier import classify_error, describe_reason, is_fatal
from rtc_session.errors import TransportError
from rtc_session.types import ErrorKind


class CodedError(Exception):
    def __init__(self, code, message=""):
        super().__init__(message)
        self.code = code


class TestClassifyError:
    @pytest.mark.parametrize(
        "code,kind",
        [
            ("NETWORK_ERROR", ErrorKind.NETWORK),
            ("CAN_NOT_GET_GATEWAY_SERVER", ErrorKind.NETWORK),
            ("JOIN_TIMEOUT", ErrorKind.NETWORK),
            (1006, ErrorKind.NETWORK),
            (503, ErrorKind.NETWORK),
            ("INVALID_TOKEN", ErrorKind.AUTH_REJECTED),
            ("DYNAMIC_USE_STATIC_KEY", ErrorKind.AUTH_REJECTED),
            (401, ErrorKind.AUTH_REJECTED),
            ("4401", ErrorKind.AUTH_REJECTED),
            ("invalid_channel", ErrorKind.INVALID_CHANNEL),
            (4404, ErrorKind.INVALID_CHANNEL),
        ],
    )
    def test_structured_codes(self, code, kind):
        assert classify_error(TransportError(code, "")) == kind

    def test_code_attribute_on_foreign_exception(self):
        assert classify_error(CodedError("TOKEN_EXPIRED")) == ErrorKind.AUTH_REJECTED

    def test_http_not_found_is_retryable(self):
        err = TransportError(404, "Handshake rejected with HTTP 404")
        assert classify_error(err) == ErrorKind.UNKNOWN

    def test_code_beats_message(self):
        err = TransportError("INVALID_TOKEN", "network timeout")
        assert classify_error(err) == ErrorKind.AUTH_REJECTED

    def test_message_fallback(self):
        assert classify_error(RuntimeError("Invalid channel name")) == ErrorKind.INVALID_CHANNEL
        assert classify_error(RuntimeError("request timed out")) == ErrorKind.NETWORK
        assert classify_error(TransportError("X", "401 Unauthorized")) == ErrorKind.AUTH_REJECTED

    def test_exception_type_fallback(self):
        assert classify_error(asyncio.TimeoutError()) == ErrorKind.NETWORK
        assert classify_error(ConnectionResetError()) == ErrorKind.NETWORK

    def test_unknown(self):
        assert classify_error(ValueError("weird")) == ErrorKind.UNKNOWN
        assert classify_error(TransportError("E_WHAT", "")) == ErrorKind.UNKNOWN


class TestHelpers:
    def test_only_invalid_channel_is_fatal(self):
        assert is_fatal(ErrorKind.INVALID_CHANNEL)
        assert not is_fatal(ErrorKind.NETWORK)
        assert not is_fatal(ErrorKind.AUTH_REJECTED)
        assert not is_fatal(ErrorKind.UNKNOWN)

    def test_describe_reason(self):
        assert "internet" in describe_reason(ErrorKind.NETWORK)
        assert "sign in" in describe_reason("auth_rejected")
        assert describe_reason("cancelled") == "Joining was cancelled."
        assert describe_reason("???") == describe_reason(ErrorKind.UNKNOWN)
        assert describe_reason(None) == describe_reason(ErrorKind.UNKNOWN)
