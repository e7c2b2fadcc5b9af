"""
Per-participant speaking-turn capture.

One SpeakerCapturePipeline runs per open turn and produces zero or one transcript
entry:

    CAPTURING -> DRAINING -> TRANSCRIBING -> CLOSED

- CAPTURING: decoded PCM chunks are collected in order.
- DRAINING: the platform flushed the turn after sustained silence; remaining
  chunks are read until the decode stream ends.
- TRANSCRIBING: the PCM buffer is sent to the transcriber.
- CLOSED: the entry (if any) has been appended.

A max-turn timer armed at turn start force-closes the pipeline from any state, so
a decode stream that never ends cannot block the participant forever. The
participant leaves the speaking registry exactly once per turn: when the turn
leaves DRAINING, or when it is closed early.

VoiceReceiver keeps at most one pipeline per participant and ignores a start
event for a participant whose pipeline is still open.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from conversation.background import call_detached
from conversation.transcript import TranscriptBuffer, TranscriptEntry
from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity, transcript_pii

from .decoder import AudioTurnDecoder, DecodeError
from .speaking import SpeakingActivityRegistry


class TurnState(str, Enum):
    CAPTURING = "capturing"
    DRAINING = "draining"
    TRANSCRIBING = "transcribing"
    CLOSED = "closed"


@dataclass(frozen=True)
class TurnConfig:
    """Capture settings. Durations in milliseconds."""

    sample_rate: int = 48000
    channels: int = 1
    frame_size: int = 960
    max_turn_ms: int = 45000
    host_identity: Optional[str] = None
    host_label: str = "Host"
    trigger_phrases: Tuple[str, ...] = ()


@dataclass
class CaptureTurn:
    """One speaking turn while it is open or being transcribed."""

    participant_id: str
    started_at: float
    frames: List[bytes] = field(default_factory=list)
    state: TurnState = TurnState.CAPTURING

    def pcm(self) -> bytes:
        return b"".join(self.frames)


class Transcriber(Protocol):
    async def transcribe(self, pcm: bytes) -> Optional[str]:
        ...


_EDGE_PUNCTUATION = ".,!?;:\"'()[]…-"


def normalize_phrase(text: str) -> str:
    """Lowercase, collapse whitespace and strip edge punctuation ("Okay." -> "okay")."""
    collapsed = re.sub(r"\s+", " ", (text or "").strip().lower())
    return collapsed.strip(_EDGE_PUNCTUATION).strip()


def resolve_speaker_label(
    participant_id: str,
    display_name: Optional[str],
    *,
    host_identity: Optional[str],
    host_label: str,
) -> str:
    """Host identity maps to the fixed host label; otherwise display name, then ID."""
    if host_identity and participant_id == host_identity:
        return host_label
    if display_name and display_name.strip():
        return display_name.strip()
    return participant_id


class SpeakerCapturePipeline:
    """Capture, transcribe and append one participant's speaking turn."""

    def __init__(
        self,
        participant_id: str,
        *,
        decoder: AudioTurnDecoder,
        transcriber: Transcriber,
        transcript: TranscriptBuffer,
        speaking: SpeakingActivityRegistry,
        config: TurnConfig,
        display_name: Optional[str] = None,
        on_closed: Optional[Callable[["SpeakerCapturePipeline"], None]] = None,
        on_host_trigger: Optional[Callable[[], Any]] = None,
        session_id: str = "local",
        emitter: Optional[EventEmitter] = None,
        now: Callable[[], float] = time.time,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.participant_id = participant_id
        self.display_name = display_name
        self.session_id = session_id
        self._decoder = decoder
        self._transcriber = transcriber
        self._transcript = transcript
        self._speaking = speaking
        self._config = config
        self._on_closed = on_closed
        self._on_host_trigger = on_host_trigger
        self._now = now
        self._sleep = sleep
        self.emitter = emitter or EventEmitter(ObsComponent.CAPTURE)
        self.logger = get_logger(LogComponent.CAPTURE, session_id=session_id)

        self.turn = CaptureTurn(participant_id=participant_id, started_at=now())
        self.outcome: Optional[str] = None
        self.entry: Optional[TranscriptEntry] = None

        self._speaking_released = False
        self._run_task: Optional[asyncio.Task] = None
        self._timeout_task: Optional[asyncio.Task] = None
        self._closed_event = asyncio.Event()

    @property
    def state(self) -> TurnState:
        return self.turn.state

    @property
    def correlation_id(self) -> str:
        return f"turn_{self.participant_id}_{int(self.turn.started_at * 1000)}"

    def start(self) -> asyncio.Task:
        """Register the speaker, arm the max-turn timer and start capturing."""
        self._speaking.begin(self.participant_id)
        loop = asyncio.get_running_loop()
        self._timeout_task = loop.create_task(self._timeout())
        self._run_task = loop.create_task(self._run())
        self.emitter.emit(
            "turn.started",
            session_id=self.session_id,
            severity=Severity.DEBUG,
            correlation_id=self.correlation_id,
            participant_id=self.participant_id,
        )
        return self._run_task

    def feed(self, frame: Any) -> None:
        if self.state is TurnState.CAPTURING:
            self._decoder.push(frame)

    def drain(self) -> None:
        """Platform flush after sustained silence."""
        if self.state is not TurnState.CAPTURING:
            return
        self.turn.state = TurnState.DRAINING
        self._decoder.end()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    # --- Turn processing ---

    async def _run(self) -> None:
        outcome = "empty"
        try:
            async for chunk in self._decoder:
                self.turn.frames.append(chunk)
            if self.state is TurnState.CLOSED:
                return

            pcm = self.turn.pcm()
            self.turn.frames.clear()
            self.turn.state = TurnState.TRANSCRIBING
            self._release_speaking()
            if not pcm:
                return

            try:
                text = await self._transcriber.transcribe(pcm)
            except Exception as e:
                outcome = "transcription_failed"
                self.logger.warning(
                    "Transcription failed; turn dropped",
                    participant_id=self.participant_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return
            if self.state is TurnState.CLOSED:
                return

            label = resolve_speaker_label(
                self.participant_id,
                self.display_name,
                host_identity=self._config.host_identity,
                host_label=self._config.host_label,
            )
            self.entry = self._transcript.append(label, text or "", self.participant_id)
            if self.entry is None:
                return
            outcome = "appended"
            self._maybe_trigger_director(self.entry)
        except DecodeError as e:
            outcome = "decode_error"
            self.logger.warning(
                "Decode error; turn dropped",
                participant_id=self.participant_id,
                error=str(e),
            )
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        finally:
            self._close(outcome)

    async def _timeout(self) -> None:
        await self._sleep(self._config.max_turn_ms / 1000.0)
        if self.state is TurnState.CLOSED:
            return
        self.logger.warning(
            "Max turn duration reached; force-closing turn",
            participant_id=self.participant_id,
            state=self.state.value,
            max_turn_ms=self._config.max_turn_ms,
        )
        self._timeout_task = None
        self._close("timeout")
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()

    def _maybe_trigger_director(self, entry: TranscriptEntry) -> None:
        host = self._config.host_identity
        if not host or self.participant_id != host or self._on_host_trigger is None:
            return
        phrases = {normalize_phrase(p) for p in self._config.trigger_phrases}
        phrases.discard("")
        if normalize_phrase(entry.text) not in phrases:
            return
        self.logger.info("Host trigger phrase heard; requesting director suggestion")
        call_detached(self._on_host_trigger, logger=self.logger, description="director trigger")

    # --- Close / release ---

    def _release_speaking(self) -> None:
        if self._speaking_released:
            return
        self._speaking_released = True
        self._speaking.end(self.participant_id)

    def _close(self, outcome: str) -> None:
        if self.state is TurnState.CLOSED:
            return
        self.turn.state = TurnState.CLOSED
        self.outcome = outcome
        self._decoder.abort()
        self.turn.frames.clear()
        self._release_speaking()

        if self._timeout_task is not None:
            self._timeout_task.cancel()
            self._timeout_task = None

        payload: Dict[str, Any] = {
            "participant_id": self.participant_id,
            "outcome": outcome,
            "duration_ms": int((self._now() - self.turn.started_at) * 1000),
        }
        pii = None
        if self.entry is not None:
            payload["speaker"] = self.entry.speaker_label
            payload["text_length"] = len(self.entry.text)
            pii = transcript_pii("speaker")
        self.emitter.emit(
            "turn.closed",
            session_id=self.session_id,
            severity=Severity.WARN if outcome in ("timeout", "decode_error", "transcription_failed") else Severity.INFO,
            correlation_id=self.correlation_id,
            pii=pii,
            **payload,
        )
        self._closed_event.set()

        if self._on_closed is not None:
            try:
                self._on_closed(self)
            except Exception as e:
                self.logger.error("on_closed callback failed", error=str(e), error_type=type(e).__name__)

    async def aclose(self) -> None:
        """Abandon the turn (session teardown)."""
        self._close("cancelled")
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass


class VoiceReceiver:
    """
    Routes platform voice events to per-participant capture pipelines.

    Start events are ignored while the participant already has an open pipeline,
    for ignored identities (the bot itself), for agent participants, and while
    live transcription is switched off.
    """

    def __init__(
        self,
        *,
        transcript: TranscriptBuffer,
        speaking: SpeakingActivityRegistry,
        transcriber: Transcriber,
        config: TurnConfig,
        on_host_trigger: Optional[Callable[[], Any]] = None,
        is_enabled: Callable[[], bool] = lambda: True,
        ignored_identities: Tuple[str, ...] = (),
        session_id: str = "local",
        emitter: Optional[EventEmitter] = None,
        now: Callable[[], float] = time.time,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self._transcript = transcript
        self._speaking = speaking
        self._transcriber = transcriber
        self._config = config
        self._on_host_trigger = on_host_trigger
        self._is_enabled = is_enabled
        self._ignored = set(ignored_identities)
        self.session_id = session_id
        self._emitter = emitter or EventEmitter(ObsComponent.CAPTURE)
        self._now = now
        self._sleep = sleep
        self._pipelines: Dict[str, SpeakerCapturePipeline] = {}
        self.logger = get_logger(LogComponent.CAPTURE, session_id=session_id)

    def ignore_identity(self, identity: str) -> None:
        self._ignored.add(identity)

    def start_turn(
        self,
        participant_id: str,
        display_name: Optional[str] = None,
        *,
        is_agent: bool = False,
    ) -> Optional[SpeakerCapturePipeline]:
        if is_agent or participant_id in self._ignored:
            return None
        if participant_id in self._pipelines:
            return None
        if not self._is_enabled():
            self.logger.debug("Live transcription disabled; turn not captured", participant_id=participant_id)
            return None

        decoder = AudioTurnDecoder(
            participant_id,
            sample_rate=self._config.sample_rate,
            channels=self._config.channels,
            frame_size=self._config.frame_size,
        )
        pipeline = SpeakerCapturePipeline(
            participant_id,
            decoder=decoder,
            transcriber=self._transcriber,
            transcript=self._transcript,
            speaking=self._speaking,
            config=self._config,
            display_name=display_name,
            on_closed=self._on_pipeline_closed,
            on_host_trigger=self._on_host_trigger,
            session_id=self.session_id,
            emitter=self._emitter,
            now=self._now,
            sleep=self._sleep,
        )
        self._pipelines[participant_id] = pipeline
        pipeline.start()
        return pipeline

    def push_audio(self, participant_id: str, frame: Any) -> bool:
        pipeline = self._pipelines.get(participant_id)
        if pipeline is None or pipeline.state is not TurnState.CAPTURING:
            return False
        pipeline.feed(frame)
        return True

    def end_turn(self, participant_id: str) -> bool:
        pipeline = self._pipelines.get(participant_id)
        if pipeline is None:
            return False
        pipeline.drain()
        return True

    def get(self, participant_id: str) -> Optional[SpeakerCapturePipeline]:
        return self._pipelines.get(participant_id)

    def is_capturing(self, participant_id: str) -> bool:
        pipeline = self._pipelines.get(participant_id)
        return pipeline is not None and pipeline.state is TurnState.CAPTURING

    def active_participants(self) -> List[str]:
        return list(self._pipelines)

    def _on_pipeline_closed(self, pipeline: SpeakerCapturePipeline) -> None:
        if self._pipelines.get(pipeline.participant_id) is pipeline:
            del self._pipelines[pipeline.participant_id]

    async def aclose(self) -> None:
        for pipeline in list(self._pipelines.values()):
            await pipeline.aclose()
        self._pipelines.clear()
