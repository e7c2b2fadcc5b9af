"""
Serialized playback of synthesized speech and local audio clips.

Requests are queued FIFO and rendered one at a time by a single drain task. The head
item's audio is opened first (synthesis can take seconds); then, with the item still
at the head, the scheduler waits for the channel to be silent right before playing:

1. poll the speaking registry every `poll_ms` until nobody is speaking
2. wait `grace_ms`
3. re-check; if someone started speaking during the grace period, go back to 1

A speak item whose synthesis yields no audio is dropped and the next item is tried
immediately. detach() (connection lost) clears the queue and abandons the item in
flight.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Deque, List, Optional, Protocol, Union

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity

from .speaking import SpeakingActivityRegistry


@dataclass(frozen=True)
class PlaybackConfig:
    """Silence-wait timing in milliseconds."""

    poll_ms: int = 400
    grace_ms: int = 500


@dataclass(frozen=True)
class SpeakRequest:
    text: str
    voice_id: Optional[str] = None

    @property
    def kind(self) -> str:
        return "speak"


@dataclass(frozen=True)
class ClipRequest:
    path: str

    @property
    def kind(self) -> str:
        return "clip"


PlaybackItem = Union[SpeakRequest, ClipRequest]
PcmStream = AsyncIterator[bytes]


class Synthesizer(Protocol):
    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> Optional[PcmStream]:
        ...


class AudioSink(Protocol):
    async def play(self, stream: PcmStream) -> None:
        ...


ClipOpener = Callable[[str], Optional[PcmStream]]


class TTSPlaybackQueue:
    """FIFO playback that never talks over a live speaker."""

    def __init__(
        self,
        speaking: SpeakingActivityRegistry,
        synthesizer: Synthesizer,
        *,
        config: Optional[PlaybackConfig] = None,
        clip_opener: Optional[ClipOpener] = None,
        session_id: str = "local",
        emitter: Optional[EventEmitter] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self._speaking = speaking
        self._synthesizer = synthesizer
        self._config = config or PlaybackConfig()
        self._clip_opener = clip_opener
        self._sleep = sleep
        self.session_id = session_id
        self.emitter = emitter or EventEmitter(ObsComponent.PLAYBACK)
        self.logger = get_logger(LogComponent.PLAYBACK, session_id=session_id)

        self._queue: Deque[PlaybackItem] = deque()
        self._sink: Optional[AudioSink] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._current: Optional[PlaybackItem] = None

    # --- Connection lifecycle ---

    def attach(self, sink: AudioSink) -> None:
        self._sink = sink
        self.logger.info("Output sink attached")
        self._schedule()

    def detach(self) -> None:
        """Drop the sink, every queued item and the item in flight."""
        dropped = len(self._queue)
        self._queue.clear()
        self._sink = None
        self._current = None
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None
        self.logger.info("Output sink detached; queue cleared", dropped=dropped)
        self.emitter.emit("playback.cleared", session_id=self.session_id, dropped=dropped)

    @property
    def attached(self) -> bool:
        return self._sink is not None

    # --- Producers ---

    def speak(self, text: str, voice_id: Optional[str] = None) -> bool:
        text = (text or "").strip()
        if not text:
            return False
        return self._enqueue(SpeakRequest(text=text, voice_id=voice_id))

    def play_clip(self, path: str) -> bool:
        return self._enqueue(ClipRequest(path=path))

    def _enqueue(self, item: PlaybackItem) -> bool:
        if self._sink is None:
            self.logger.warning("No output connection; playback request dropped", kind=item.kind)
            self.emitter.emit(
                "playback.skipped",
                session_id=self.session_id,
                severity=Severity.WARN,
                kind=item.kind,
                reason="not_attached",
            )
            return False
        self._queue.append(item)
        self.emitter.emit(
            "playback.queued",
            session_id=self.session_id,
            severity=Severity.DEBUG,
            kind=item.kind,
            queue_length=len(self._queue),
        )
        self._schedule()
        return True

    # --- Introspection ---

    def pending(self) -> List[PlaybackItem]:
        return list(self._queue)

    @property
    def current(self) -> Optional[PlaybackItem]:
        return self._current

    @property
    def busy(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    async def wait_idle(self) -> None:
        """Wait until the queue has been drained (tests, shutdown)."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait({self._drain_task})

    # --- Scheduler ---

    def _schedule(self) -> None:
        if self._sink is None or not self._queue or self.busy:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("No running event loop; playback deferred", queue_length=len(self._queue))
            return
        self._drain_task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while self._queue and self._sink is not None:
            item = self._queue[0]
            self._current = item
            try:
                stream = await self._open_source(item)
                if stream is None:
                    self._skip_head(item)
                    continue
                handed_off = False
                try:
                    await self._await_silence()
                    if self._sink is None or not self._queue or self._queue[0] is not item:
                        break
                    self._queue.popleft()
                    handed_off = True
                    await self._play(item, stream)
                finally:
                    if not handed_off:
                        await _close_stream(stream)
            finally:
                self._current = None

    async def _await_silence(self) -> None:
        poll = self._config.poll_ms / 1000.0
        grace = self._config.grace_ms / 1000.0
        while True:
            while self._speaking.is_anyone_speaking():
                await self._sleep(poll)
            await self._sleep(grace)
            if not self._speaking.is_anyone_speaking():
                return
            self.logger.debug("Speech resumed during grace period; waiting again")

    async def _open_source(self, item: PlaybackItem) -> Optional[PcmStream]:
        try:
            return await self._open(item)
        except Exception as e:
            self.logger.warning(
                "Playback source failed; item skipped",
                kind=item.kind,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def _skip_head(self, item: PlaybackItem) -> None:
        if self._queue and self._queue[0] is item:
            self._queue.popleft()
        self.emitter.emit(
            "playback.skipped",
            session_id=self.session_id,
            severity=Severity.WARN,
            kind=item.kind,
            reason="no_audio",
        )

    async def _play(self, item: PlaybackItem, stream: PcmStream) -> None:
        sink = self._sink
        if sink is None:
            await _close_stream(stream)
            return
        self.emitter.emit("playback.started", session_id=self.session_id, kind=item.kind)
        try:
            await sink.play(stream)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(
                "Playback failed; item skipped",
                kind=item.kind,
                error=str(e),
                error_type=type(e).__name__,
            )
            self.emitter.emit(
                "playback.skipped",
                session_id=self.session_id,
                severity=Severity.WARN,
                kind=item.kind,
                reason="render_error",
            )
            return
        self.emitter.emit("playback.finished", session_id=self.session_id, kind=item.kind)

    async def _open(self, item: PlaybackItem) -> Optional[PcmStream]:
        if isinstance(item, SpeakRequest):
            return await self._synthesizer.synthesize(item.text, item.voice_id)
        if self._clip_opener is None:
            self.logger.warning("No clip opener configured", path=item.path)
            return None
        return self._clip_opener(item.path)


async def _close_stream(stream: PcmStream) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
