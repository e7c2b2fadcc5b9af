"""
Per-session context.

Everything that used to be process-wide state (speaking set, transcript and its
windows, playback queue, counters, topic, feed) is owned by one SessionContext,
created when the bot joins a room and passed to every component that needs it.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from conversation.claims import ClaimExtractor
from conversation.director import DirectorLoop
from conversation.feed import LiveFeed
from conversation.session_log import SessionFiles
from conversation.stats import SessionStats
from conversation.text_services import TextServiceClient
from conversation.topics import TopicTracker
from conversation.transcript import TranscriptBuffer, TranscriptEditError, TranscriptEntry
from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, transcript_pii

from .capture import Transcriber, TurnConfig, VoiceReceiver
from .config import BotConfig
from .playback import ClipOpener, PlaybackConfig, Synthesizer, TTSPlaybackQueue
from .speaking import SpeakingActivityRegistry
from .transcribe import DeepgramTranscriber
from .tts import ClipOpener as FfmpegClipOpener, ElevenLabsSynthesizer


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionContext:
    session_id: str
    config: BotConfig
    speaking: SpeakingActivityRegistry
    transcript: TranscriptBuffer
    stats: SessionStats
    feed: LiveFeed
    topics: TopicTracker
    files: SessionFiles
    playback: TTSPlaybackQueue
    director: DirectorLoop
    claims: ClaimExtractor
    receiver: VoiceReceiver
    synthesizer: Any
    transcription_enabled: bool = True
    emitter: EventEmitter = field(default_factory=lambda: EventEmitter(ObsComponent.TRANSCRIPT))
    _unsubscribers: List[Callable[[], None]] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        config: BotConfig,
        *,
        session_id: str,
        transcriber: Optional[Transcriber] = None,
        synthesizer: Optional[Synthesizer] = None,
        text_services: Optional[TextServiceClient] = None,
        clip_opener: Optional[ClipOpener] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        now_ms: Callable[[], int] = _now_ms,
    ) -> "SessionContext":
        speaking = SpeakingActivityRegistry()
        stats = SessionStats()
        feed = LiveFeed(now_ms=now_ms, session_id=session_id)
        transcript = TranscriptBuffer(context_size=config.context_messages, now_ms=now_ms, session_id=session_id)
        topics = TopicTracker(config.session_log_dir, feed=feed, stats=stats, now_ms=now_ms, session_id=session_id)
        files = SessionFiles(config.session_log_dir, now_ms=now_ms, session_id=session_id)

        if transcriber is None:
            transcriber = DeepgramTranscriber(
                api_key=config.deepgram_api_key,
                model=config.deepgram_model,
                sample_rate=config.sample_rate,
                channels=config.channels,
                min_audio_ms=config.min_audio_ms,
                stats=stats,
                session_id=session_id,
            )
        if synthesizer is None:
            synthesizer = ElevenLabsSynthesizer(
                api_key=config.elevenlabs_api_key,
                voice_id=config.elevenlabs_voice_id,
                ffmpeg_path=config.ffmpeg_path,
                sample_rate=config.sample_rate,
                channels=config.channels,
                audio_dir=config.tts_audio_dir,
                stats=stats,
                session_id=session_id,
            )
        if text_services is None:
            text_services = TextServiceClient(
                config.moddit_base_url,
                config.moddit_session_id,
                config.moddit_api_key,
                session_id=session_id,
            )
        if clip_opener is None:
            clip_opener = FfmpegClipOpener(
                ffmpeg_path=config.ffmpeg_path,
                sample_rate=config.sample_rate,
                channels=config.channels,
            )

        playback = TTSPlaybackQueue(
            speaking,
            synthesizer,
            config=PlaybackConfig(poll_ms=config.playback_poll_ms, grace_ms=config.playback_grace_ms),
            clip_opener=clip_opener,
            session_id=session_id,
            sleep=sleep,
        )
        director = DirectorLoop(
            transcript,
            text_services,
            feed=feed,
            topics=topics,
            stats=stats,
            speak=playback.speak,
            speak_suggestions=config.speak_suggestions,
            min_interval_sec=config.suggestion_interval_sec,
            session_id=session_id,
        )
        claims = ClaimExtractor(
            transcript,
            text_services,
            feed=feed,
            stats=stats,
            trigger_chars=config.claim_trigger_chars,
            session_id=session_id,
        )

        ctx: Optional[SessionContext] = None

        def _enabled() -> bool:
            return ctx is not None and ctx.transcription_enabled

        receiver = VoiceReceiver(
            transcript=transcript,
            speaking=speaking,
            transcriber=transcriber,
            config=TurnConfig(
                sample_rate=config.sample_rate,
                channels=config.channels,
                frame_size=config.frame_size,
                max_turn_ms=config.max_turn_ms,
                host_identity=config.host_identity or None,
                host_label=config.host_label,
                trigger_phrases=tuple(config.trigger_phrases),
            ),
            on_host_trigger=director.on_host_trigger,
            is_enabled=_enabled,
            session_id=session_id,
            sleep=sleep,
        )
        ctx = cls(
            session_id=session_id,
            config=config,
            speaking=speaking,
            transcript=transcript,
            stats=stats,
            feed=feed,
            topics=topics,
            files=files,
            playback=playback,
            director=director,
            claims=claims,
            receiver=receiver,
            synthesizer=synthesizer,
        )
        ctx._subscribe()
        return ctx

    @property
    def logger(self):
        return get_logger(LogComponent.SESSION, session_id=self.session_id)

    def _subscribe(self) -> None:
        self._unsubscribers = [
            self.transcript.on_append(self.files.write_entry),
            self.transcript.on_append(self._publish_card),
            self.transcript.on_append(self._emit_appended),
            self.transcript.on_append(self.claims.on_entry),
        ]

    def _publish_card(self, entry: TranscriptEntry) -> None:
        self.feed.publish("transcript", entry.text, speaker=entry.speaker_label)

    def _emit_appended(self, entry: TranscriptEntry) -> None:
        self.emitter.emit(
            "transcript.appended",
            session_id=self.session_id,
            pii=transcript_pii("speaker"),
            speaker=entry.speaker_label,
            text_length=len(entry.text),
            entries=len(self.transcript),
        )

    # --- Lifecycle ---

    def start(self) -> Optional[Path]:
        """Begin a new session: empty transcript and windows, nobody speaking, new files."""
        self.transcript.clear()
        self.speaking.clear()
        self.topics.reset()
        log_path = self.files.start()
        self.logger.info("Session started", log_path=str(log_path) if log_path else None)
        return log_path

    async def aclose(self) -> None:
        self.playback.detach()
        await self.receiver.aclose()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        aclose = getattr(self.synthesizer, "aclose", None)
        if aclose is not None:
            await aclose()
        self.logger.info("Session closed", entries=len(self.transcript))

    # --- Operator actions ---

    def set_transcription_enabled(self, enabled: bool) -> bool:
        self.transcription_enabled = bool(enabled)
        self.logger.info("Live transcription toggled", enabled=self.transcription_enabled)
        return self.transcription_enabled

    def edit_transcript(
        self,
        index: int,
        *,
        speaker: Optional[str] = None,
        text: Optional[str] = None,
    ) -> Union[TranscriptEntry, TranscriptEditError]:
        result = self.transcript.update_entry(index, speaker=speaker, text=text)
        if isinstance(result, TranscriptEntry):
            self.emitter.emit(
                "transcript.edited",
                session_id=self.session_id,
                index=index,
                speaker_changed=speaker is not None,
                text_changed=text is not None,
            )
        return result

    def resolve_clip(self, name: str) -> Optional[Path]:
        """Path of a clip inside the clips directory; None for anything outside it."""
        name = (name or "").strip()
        if not name:
            return None
        base = Path(self.config.clips_dir).resolve()
        candidate = (base / name).resolve()
        if candidate == base or base not in candidate.parents:
            return None
        return candidate
