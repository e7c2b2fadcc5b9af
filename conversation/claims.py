"""
Claim extraction over the claim window.

extract() sends the claim window to the claim-extraction service and, on success,
resets the window and publishes one feed card per claim. It also runs automatically
when an appended entry is longer than `trigger_chars` (0 disables). At most one
extraction is in flight; a failed call keeps the window.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter

from .feed import LiveFeed
from .stats import SessionStats
from .text_services import ServiceResult, TextServiceClient
from .transcript import TranscriptBuffer, TranscriptEntry

NO_CONVERSATION = "No conversation yet."
ALREADY_RUNNING = "Claim extraction already in progress."


class ClaimExtractor:
    def __init__(
        self,
        transcript: TranscriptBuffer,
        client: TextServiceClient,
        *,
        feed: Optional[LiveFeed] = None,
        stats: Optional[SessionStats] = None,
        trigger_chars: int = 0,
        session_id: str = "local",
        emitter: Optional[EventEmitter] = None,
    ):
        self._transcript = transcript
        self._client = client
        self._feed = feed
        self._stats = stats
        self.trigger_chars = trigger_chars
        self._lock = asyncio.Lock()
        self.session_id = session_id
        self.emitter = emitter or EventEmitter(ObsComponent.CLAIMS)
        self.logger = get_logger(LogComponent.CLAIMS, session_id=session_id)

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def should_trigger(self, entry: TranscriptEntry) -> bool:
        return self.trigger_chars > 0 and len(entry.text) > self.trigger_chars

    def on_entry(self, entry: TranscriptEntry) -> Any:
        """Transcript listener; returns the extraction coroutine when the threshold is crossed."""
        if not self.should_trigger(entry) or self.in_flight:
            return None
        self.logger.debug("Long entry appended; extracting claims", length=len(entry.text))
        return self.extract()

    async def extract(self) -> ServiceResult:
        if self._lock.locked():
            return ServiceResult(error=ALREADY_RUNNING, category="claims.busy")
        async with self._lock:
            entries = self._transcript.get_recent_for_claim_extraction()
            if not entries:
                return ServiceResult(error=NO_CONVERSATION)
            result = await self._client.extract_claims(entries)
            if not result.ok:
                self.logger.warning("Claim extraction failed; window kept", category=result.category)
                return result

            self._transcript.reset_claim_buffer()
            if self._stats is not None:
                self._stats.increment("claimExtraction")
            if self._feed is not None:
                for claim in result.claims:
                    self._feed.publish("claim", claim)
            self.emitter.emit(
                "claims.extracted",
                session_id=self.session_id,
                messages=len(entries),
                claims=len(result.claims),
            )
            return result
