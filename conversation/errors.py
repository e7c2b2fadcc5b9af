"""
External service error handling.

Transcription, synthesis and text-service failures are mapped to stable categories
so logs and dashboard responses stay comparable across providers. Nothing here
raises: every failure becomes a category string.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp


class ServiceErrorCategory:
    """Stable error categories."""

    AUTH_FAILED = "service.auth_failed"
    RATE_LIMITED = "service.rate_limited"
    NETWORK_ERROR = "service.network_error"
    TIMEOUT = "service.timeout"
    SERVER_ERROR = "service.server_error"
    BAD_RESPONSE = "service.bad_response"
    UNKNOWN_ERROR = "service.unknown_error"


class ServiceResponseError(Exception):
    """Non-2xx response from an external service."""

    def __init__(self, service: str, status: int, body: str = ""):
        self.service = service
        self.status = status
        self.body = body
        super().__init__(f"{service} HTTP {status}: {body[:200]}")


def classify_status(status: int) -> str:
    if status in (401, 403):
        return ServiceErrorCategory.AUTH_FAILED
    if status == 429:
        return ServiceErrorCategory.RATE_LIMITED
    if status in (408, 504):
        return ServiceErrorCategory.TIMEOUT
    if status >= 500:
        return ServiceErrorCategory.SERVER_ERROR
    return ServiceErrorCategory.BAD_RESPONSE


def classify_error(error: BaseException) -> str:
    """
    Classify an exception raised by a service call.
    Returns an error category string.
    """
    if isinstance(error, ServiceResponseError):
        return classify_status(error.status)
    if isinstance(error, aiohttp.ClientResponseError):
        return classify_status(error.status)
    if isinstance(error, asyncio.TimeoutError):
        return ServiceErrorCategory.TIMEOUT
    if isinstance(error, ValueError):
        return ServiceErrorCategory.BAD_RESPONSE
    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError)):
        return ServiceErrorCategory.NETWORK_ERROR

    error_str = str(error).lower()
    if "unauthorized" in error_str or "401" in error_str or "auth" in error_str:
        return ServiceErrorCategory.AUTH_FAILED
    if "rate limit" in error_str or "429" in error_str or "throttle" in error_str:
        return ServiceErrorCategory.RATE_LIMITED
    if "timeout" in error_str or "timed out" in error_str:
        return ServiceErrorCategory.TIMEOUT
    if "network" in error_str or "connection" in error_str:
        return ServiceErrorCategory.NETWORK_ERROR
    return ServiceErrorCategory.UNKNOWN_ERROR


def redact_detail(detail: Optional[str]) -> str:
    """Error detail safe for logs and dashboard responses."""
    if not detail:
        return ""
    lowered = detail.lower()
    if "secret" in lowered or "password" in lowered or "api_key" in lowered or "apikey" in lowered or "token " in lowered:
        return "[redacted: potential secret]"
    return detail
