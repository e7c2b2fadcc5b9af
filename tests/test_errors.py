"""
External service error classification.
"""
import asyncio

import aiohttp
import pytest

from conversation.errors import (
    ServiceErrorCategory,
    ServiceResponseError,
    classify_error,
    classify_status,
    redact_detail,
)


class TestStatusClassification:
    @pytest.mark.parametrize("status,expected", [
        (401, ServiceErrorCategory.AUTH_FAILED),
        (403, ServiceErrorCategory.AUTH_FAILED),
        (429, ServiceErrorCategory.RATE_LIMITED),
        (408, ServiceErrorCategory.TIMEOUT),
        (504, ServiceErrorCategory.TIMEOUT),
        (500, ServiceErrorCategory.SERVER_ERROR),
        (503, ServiceErrorCategory.SERVER_ERROR),
        (400, ServiceErrorCategory.BAD_RESPONSE),
        (404, ServiceErrorCategory.BAD_RESPONSE),
    ])
    def test_status_codes(self, status, expected):
        assert classify_status(status) == expected

    def test_service_response_error(self):
        error = ServiceResponseError("deepgram", 401, "Invalid credentials")

        assert classify_error(error) == ServiceErrorCategory.AUTH_FAILED
        assert "deepgram HTTP 401" in str(error)


class TestExceptionClassification:
    def test_timeout(self):
        assert classify_error(asyncio.TimeoutError()) == ServiceErrorCategory.TIMEOUT

    def test_connection_errors(self):
        assert classify_error(ConnectionRefusedError("refused")) == ServiceErrorCategory.NETWORK_ERROR
        assert classify_error(aiohttp.ClientConnectionError("reset")) == ServiceErrorCategory.NETWORK_ERROR

    def test_malformed_json(self):
        assert classify_error(ValueError("Expecting value")) == ServiceErrorCategory.BAD_RESPONSE

    def test_message_heuristics(self):
        assert classify_error(Exception("Unauthorized: 401")) == ServiceErrorCategory.AUTH_FAILED
        assert classify_error(Exception("Rate limit exceeded")) == ServiceErrorCategory.RATE_LIMITED
        assert classify_error(Exception("request timed out")) == ServiceErrorCategory.TIMEOUT
        assert classify_error(Exception("Network unreachable")) == ServiceErrorCategory.NETWORK_ERROR

    def test_unknown(self):
        assert classify_error(Exception("something odd")) == ServiceErrorCategory.UNKNOWN_ERROR


class TestRedaction:
    def test_secret_like_detail_is_redacted(self):
        assert redact_detail("bad apiKey=abc") == "[redacted: potential secret]"
        assert redact_detail("invalid Token xyz") == "[redacted: potential secret]"

    def test_plain_detail_is_kept(self):
        assert redact_detail("HTTP 503") == "HTTP 503"
        assert redact_detail(None) == ""
