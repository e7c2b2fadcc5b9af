"""
Director suggestions and fact-checks.

request_suggestion() sends the director window to the director service. Only a
successful response resets the window, so a failed call keeps its entries for the
next attempt. Requests triggered by the host's trigger phrase are rate limited by
`min_interval_sec` counted from the last successful one, so an empty window or a
failed call never blocks the next trigger. Explicit requests (dashboard) are not
limited. One request is in flight at a time.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity

from .feed import LiveFeed
from .stats import SessionStats
from .text_services import ServiceResult, TextServiceClient
from .topics import TopicTracker
from .transcript import TranscriptBuffer

NO_CONVERSATION = "No conversation yet."
NO_CONVERSATION_FACT_CHECK = "No conversation yet to fact-check."
ALREADY_RUNNING = "A director request is already in progress."
TOO_SOON = "Suggestion requested too recently."

TRIGGER_MANUAL = "manual"
TRIGGER_HOST = "host_phrase"


class DirectorLoop:
    def __init__(
        self,
        transcript: TranscriptBuffer,
        client: TextServiceClient,
        *,
        feed: Optional[LiveFeed] = None,
        topics: Optional[TopicTracker] = None,
        stats: Optional[SessionStats] = None,
        speak: Optional[Callable[[str, Optional[str]], bool]] = None,
        speak_suggestions: bool = False,
        min_interval_sec: float = 30.0,
        monotonic: Callable[[], float] = time.monotonic,
        session_id: str = "local",
        emitter: Optional[EventEmitter] = None,
    ):
        self._transcript = transcript
        self._client = client
        self._feed = feed
        self._topics = topics
        self._stats = stats
        self._speak = speak
        self.speak_suggestions = speak_suggestions
        self.min_interval_sec = min_interval_sec
        self._monotonic = monotonic
        self._lock = asyncio.Lock()
        self._last_host_suggestion: Optional[float] = None
        self.session_id = session_id
        self.emitter = emitter or EventEmitter(ObsComponent.DIRECTOR)
        self.logger = get_logger(LogComponent.DIRECTOR, session_id=session_id)

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def on_host_trigger(self) -> ServiceResult:
        """Entry point for the host trigger phrase."""
        return await self.request_suggestion(trigger=TRIGGER_HOST)

    async def request_suggestion(self, *, trigger: str = TRIGGER_MANUAL) -> ServiceResult:
        if trigger == TRIGGER_HOST:
            now = self._monotonic()
            if self._last_host_suggestion is not None and now - self._last_host_suggestion < self.min_interval_sec:
                self.logger.info(
                    "Host-triggered suggestion skipped; interval not elapsed",
                    min_interval_sec=self.min_interval_sec,
                )
                return ServiceResult(error=TOO_SOON, category="director.throttled")

        if self._lock.locked():
            return ServiceResult(error=ALREADY_RUNNING, category="director.busy")

        async with self._lock:
            entries = self._transcript.get_recent_for_director()
            if not entries:
                return ServiceResult(error=NO_CONVERSATION)

            result = await self._client.get_director_suggestion(entries)
            if not result.ok:
                self.logger.warning(
                    "Director suggestion failed; window kept",
                    category=result.category,
                    window=len(entries),
                )
                return result

            if trigger == TRIGGER_HOST:
                self._last_host_suggestion = self._monotonic()
            self._transcript.reset_director_window()
            if self._stats is not None:
                self._stats.increment("directorSuggestion")
            self.emitter.emit(
                "director.suggestion",
                session_id=self.session_id,
                trigger=trigger,
                messages=len(entries),
                has_suggestion=result.text is not None,
                topic_changed=result.topic is not None,
            )
            if result.topic and self._topics is not None:
                self._topics.set_topic(result.topic)
            if result.text:
                self.logger.info_pii("Director suggestion", suggestion=result.text)
                if self._feed is not None:
                    self._feed.publish("suggestion", result.text)
                if self.speak_suggestions:
                    self._speak_text(result.text)
            return result

    async def fact_check(self) -> ServiceResult:
        """Fact-check the director window without consuming it."""
        entries = self._transcript.get_recent_for_director()
        if not entries:
            return ServiceResult(error=NO_CONVERSATION_FACT_CHECK)
        result = await self._client.get_fact_check(entries)
        if not result.ok:
            return result
        if self._stats is not None:
            self._stats.increment("factCheck")
        if result.text and self._feed is not None:
            self._feed.publish("factcheck", result.text)
        return result

    def speak_as_moderator(self, text: str, voice_id: Optional[str] = None) -> bool:
        """Queue text for playback in the call (dashboard "speak")."""
        return self._speak_text(text, voice_id)

    def _speak_text(self, text: str, voice_id: Optional[str] = None) -> bool:
        if self._speak is None:
            self.logger.warning("Speak requested but no playback is configured")
            return False
        queued = self._speak(text, voice_id)
        if queued and self._stats is not None:
            self._stats.increment("moderatorSpeak")
        if not queued:
            self.emitter.emit(
                "playback.skipped",
                session_id=self.session_id,
                severity=Severity.WARN,
                kind="speak",
                reason="not_queued",
            )
        return queued
