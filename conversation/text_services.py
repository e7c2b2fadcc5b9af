"""
Client for the director text services (suggestion, fact-check, claim extraction).

Every call posts the recent transcript as
`{"apiKey": ..., "body": [{"speaker", "text", "timestamp"}, ...]}` and returns a
ServiceResult. Failures never raise: they are classified, logged and returned as
`ServiceResult(error=..., category=...)`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from logging_setup import get_logger, Component

from .errors import ServiceResponseError, classify_error, redact_detail
from .transcript import TranscriptEntry


@dataclass
class ServiceResult:
    text: Optional[str] = None
    claims: List[str] = field(default_factory=list)
    topic: Optional[str] = None
    error: Optional[str] = None
    category: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "claims": list(self.claims),
            "topic": self.topic,
            "error": self.error,
            "category": self.category,
        }


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _parse_claims(raw: Any) -> List[str]:
    claims: List[str] = []
    if not isinstance(raw, list):
        return claims
    for item in raw:
        if isinstance(item, dict):
            item = item.get("claim") or item.get("text")
        text = _clean(item)
        if text:
            claims.append(text)
    return claims


class TextServiceClient:
    """Director, fact-check and claim-extraction endpoints of one service session."""

    def __init__(
        self,
        base_url: str,
        service_session_id: str,
        api_key: str = "",
        *,
        timeout_seconds: float = 30.0,
        session_id: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_session_id = service_session_id
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger(Component.TEXT_SERVICES, session_id=session_id)

    @property
    def director_url(self) -> str:
        return f"{self.base_url}/{self.service_session_id}"

    async def get_director_suggestion(self, entries: Sequence[TranscriptEntry]) -> ServiceResult:
        data, failure = await self._call("director", self.director_url, entries)
        if failure is not None:
            return failure
        return ServiceResult(text=_clean(data.get("response")), topic=_clean(data.get("topic")))

    async def get_fact_check(self, entries: Sequence[TranscriptEntry]) -> ServiceResult:
        data, failure = await self._call("factcheck", f"{self.director_url}/factcheck", entries)
        if failure is not None:
            return failure
        return ServiceResult(text=_clean(data.get("response") or data.get("result")))

    async def extract_claims(self, entries: Sequence[TranscriptEntry]) -> ServiceResult:
        data, failure = await self._call("claims", f"{self.director_url}/claims", entries)
        if failure is not None:
            return failure
        return ServiceResult(claims=_parse_claims(data.get("claims")))

    async def _call(
        self,
        name: str,
        url: str,
        entries: Sequence[TranscriptEntry],
    ) -> Tuple[Dict[str, Any], Optional[ServiceResult]]:
        """POST the transcript; returns (response body, None) or ({}, failure result)."""
        payload = {"apiKey": self.api_key, "body": [e.to_message() for e in entries]}
        start_ts = time.time()
        try:
            data = await self._post_json(url, payload)
        except Exception as e:
            category = classify_error(e)
            detail = redact_detail(str(e)) or type(e).__name__
            self.logger.warning(
                "Text service call failed",
                service=name,
                endpoint=url,
                category=category,
                error=detail,
                error_type=type(e).__name__,
                latency_ms=int((time.time() - start_ts) * 1000),
            )
            return {}, ServiceResult(error=detail, category=category)

        self.logger.info(
            "Text service response",
            service=name,
            endpoint=url,
            messages=len(entries),
            latency_ms=int((time.time() - start_ts) * 1000),
        )
        return (data if isinstance(data, dict) else {}), None

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as s:
            async with s.post(url, json=payload) as resp:
                if not 200 <= resp.status < 300:
                    raise ServiceResponseError("text_service", resp.status, await resp.text())
                return await resp.json(content_type=None)
