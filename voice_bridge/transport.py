"""
LiveKit binding for capture and playback.

Input: every subscribed remote audio track is read with rtc.AudioStream and fed
both to the participant's capture pipeline and to a per-track Silero VAD stream.
START_OF_SPEECH opens a turn seeded with the VAD speech buffer (the onset the VAD
needed before firing), END_OF_SPEECH (sustained silence) drains it.

Output: LiveKitAudioSink publishes one local audio track and plays PCM streams
from the playback queue into it in 10 ms frames.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, Optional

from livekit import rtc
from livekit.agents import vad as agents_vad

from logging_setup import get_logger, Component

from .capture import VoiceReceiver
from .decoder import SAMPLE_WIDTH, PcmFramer

OUTPUT_TRACK_NAME = "director-voice"


def is_agent_participant(participant: Any) -> bool:
    kind = getattr(participant, "kind", None)
    return kind == rtc.ParticipantKind.PARTICIPANT_KIND_AGENT


class LiveKitVoiceTransport:
    """Routes room audio and voice activity to a VoiceReceiver."""

    def __init__(
        self,
        room: rtc.Room,
        receiver: VoiceReceiver,
        vad: agents_vad.VAD,
        *,
        sample_rate: int,
        channels: int,
        session_id: Optional[str] = None,
    ):
        self._room = room
        self._receiver = receiver
        self._vad = vad
        self._sample_rate = sample_rate
        self._channels = channels
        self._tasks: Dict[str, asyncio.Task] = {}
        self.logger = get_logger(Component.TRANSPORT, session_id=session_id)

    def start(self) -> None:
        self._room.on("track_subscribed", self._on_track_subscribed)
        self._room.on("track_unsubscribed", self._on_track_unsubscribed)
        self._room.on("participant_disconnected", self._on_participant_disconnected)
        for participant in self._room.remote_participants.values():
            for publication in participant.track_publications.values():
                if publication.track is not None and publication.subscribed:
                    self._on_track_subscribed(publication.track, publication, participant)

    # --- Room events ---

    def _on_track_subscribed(
        self,
        track: rtc.Track,
        publication: rtc.RemoteTrackPublication,
        participant: rtc.RemoteParticipant,
    ) -> None:
        if track.kind != rtc.TrackKind.KIND_AUDIO:
            return
        if is_agent_participant(participant):
            self.logger.debug("Ignoring agent audio track", participant_identity=participant.identity)
            return
        if track.sid in self._tasks:
            return
        self.logger.info(
            "Audio track subscribed",
            participant_identity=participant.identity,
            track_sid=track.sid,
        )
        self._tasks[track.sid] = asyncio.create_task(self._forward(track, participant))

    def _on_track_unsubscribed(
        self,
        track: rtc.Track,
        publication: rtc.RemoteTrackPublication,
        participant: rtc.RemoteParticipant,
    ) -> None:
        task = self._tasks.pop(track.sid, None)
        if task is not None:
            task.cancel()

    def _on_participant_disconnected(self, participant: rtc.RemoteParticipant) -> None:
        self.logger.info("Participant left", participant_identity=participant.identity)
        self._receiver.end_turn(participant.identity)

    # --- Per-track forwarding ---

    async def _forward(self, track: rtc.Track, participant: rtc.RemoteParticipant) -> None:
        identity = participant.identity
        audio_stream = rtc.AudioStream(track, sample_rate=self._sample_rate, num_channels=self._channels)
        vad_stream = self._vad.stream()
        vad_task = asyncio.create_task(self._watch_vad(vad_stream, participant))
        try:
            async for event in audio_stream:
                self._receiver.push_audio(identity, event.frame)
                vad_stream.push_frame(event.frame)
        finally:
            vad_task.cancel()
            self._receiver.end_turn(identity)
            await vad_stream.aclose()
            await audio_stream.aclose()
            self._tasks.pop(track.sid, None)

    async def _watch_vad(self, vad_stream: agents_vad.VADStream, participant: rtc.RemoteParticipant) -> None:
        identity = participant.identity
        async for event in vad_stream:
            if event.type == agents_vad.VADEventType.START_OF_SPEECH:
                pipeline = self._receiver.start_turn(
                    identity, participant.name or None, is_agent=is_agent_participant(participant)
                )
                if pipeline is None:
                    continue
                # VAD speech buffer up to the onset frame, prefix padding included;
                # later frames reach the turn through _forward.
                for frame in event.frames:
                    self._receiver.push_audio(identity, frame)
            elif event.type == agents_vad.VADEventType.END_OF_SPEECH:
                self._receiver.end_turn(identity)

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class LiveKitAudioSink:
    """Plays PCM streams into a published local audio track."""

    def __init__(
        self,
        source: rtc.AudioSource,
        *,
        sample_rate: int,
        channels: int,
        frame_ms: int = 10,
    ):
        self._source = source
        self._sample_rate = sample_rate
        self._channels = channels
        self._samples_per_frame = sample_rate * frame_ms // 1000
        self._frame_bytes = self._samples_per_frame * channels * SAMPLE_WIDTH

    @classmethod
    async def publish(
        cls,
        room: rtc.Room,
        *,
        sample_rate: int,
        channels: int,
        track_name: str = OUTPUT_TRACK_NAME,
    ) -> "LiveKitAudioSink":
        source = rtc.AudioSource(sample_rate, channels)
        track = rtc.LocalAudioTrack.create_audio_track(track_name, source)
        options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)
        await room.local_participant.publish_track(track, options)
        return cls(source, sample_rate=sample_rate, channels=channels)

    def _frame(self, data: bytes) -> rtc.AudioFrame:
        return rtc.AudioFrame(
            data=data,
            sample_rate=self._sample_rate,
            num_channels=self._channels,
            samples_per_channel=self._samples_per_frame,
        )

    async def play(self, stream: AsyncIterator[bytes]) -> None:
        framer = PcmFramer(self._frame_bytes)
        try:
            async for chunk in stream:
                for frame in framer.feed(chunk):
                    await self._source.capture_frame(self._frame(frame))
            tail = framer.flush()
            if tail:
                await self._source.capture_frame(self._frame(tail.ljust(self._frame_bytes, b"\x00")))
            await self._source.wait_for_playout()
        except asyncio.CancelledError:
            self._source.clear_queue()
            raise
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
