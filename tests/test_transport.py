"""
Tests for the LiveKit binding: voice activity routing and output framing.
"""
import asyncio
from types import SimpleNamespace

import pytest
from livekit import rtc
from livekit.agents import vad as agents_vad

from voice_bridge.transport import LiveKitAudioSink, LiveKitVoiceTransport, is_agent_participant


class RecordingReceiver:
    def __init__(self):
        self.calls = []
        self.open = set()

    def start_turn(self, participant_id, display_name=None, *, is_agent=False):
        self.calls.append(("start", participant_id, display_name, is_agent))
        if participant_id in self.open:
            return None
        self.open.add(participant_id)
        return object()

    def end_turn(self, participant_id):
        self.calls.append(("end", participant_id))
        self.open.discard(participant_id)
        return True

    def push_audio(self, participant_id, frame):
        self.calls.append(("audio", participant_id, frame))
        return participant_id in self.open


class FakeVadStream:
    def __init__(self, events):
        self._events = list(events)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._events:
            raise StopAsyncIteration
        return self._events.pop(0)


class FakeSource:
    def __init__(self):
        self.frames = []
        self.played_out = False
        self.cleared = False

    async def capture_frame(self, frame):
        self.frames.append(frame)

    async def wait_for_playout(self):
        self.played_out = True

    def clear_queue(self):
        self.cleared = True


def participant(identity="guest-1", name="Guest", kind=None):
    return SimpleNamespace(identity=identity, name=name, kind=kind)


def make_transport(receiver):
    return LiveKitVoiceTransport(
        SimpleNamespace(remote_participants={}),
        receiver,
        vad=None,
        sample_rate=48000,
        channels=1,
        session_id="room-1",
    )


def test_is_agent_participant():
    assert is_agent_participant(participant(kind=rtc.ParticipantKind.PARTICIPANT_KIND_AGENT))
    assert not is_agent_participant(participant(kind=rtc.ParticipantKind.PARTICIPANT_KIND_STANDARD))
    assert not is_agent_participant(object())


@pytest.mark.asyncio
async def test_vad_events_open_and_drain_turns():
    receiver = RecordingReceiver()
    transport = make_transport(receiver)
    events = [
        SimpleNamespace(type=agents_vad.VADEventType.START_OF_SPEECH, frames=[]),
        SimpleNamespace(type=agents_vad.VADEventType.INFERENCE_DONE, frames=["inference"]),
        SimpleNamespace(type=agents_vad.VADEventType.END_OF_SPEECH, frames=[]),
    ]

    await transport._watch_vad(FakeVadStream(events), participant())

    assert receiver.calls == [("start", "guest-1", "Guest", False), ("end", "guest-1")]


@pytest.mark.asyncio
async def test_speech_onset_buffer_seeds_the_turn():
    receiver = RecordingReceiver()
    transport = make_transport(receiver)
    events = [
        SimpleNamespace(type=agents_vad.VADEventType.START_OF_SPEECH, frames=["padding", "onset"]),
        SimpleNamespace(type=agents_vad.VADEventType.END_OF_SPEECH, frames=[]),
    ]

    await transport._watch_vad(FakeVadStream(events), participant())

    assert receiver.calls == [
        ("start", "guest-1", "Guest", False),
        ("audio", "guest-1", "padding"),
        ("audio", "guest-1", "onset"),
        ("end", "guest-1"),
    ]


@pytest.mark.asyncio
async def test_repeated_speech_start_does_not_refeed_onset():
    receiver = RecordingReceiver()
    receiver.open.add("guest-1")
    transport = make_transport(receiver)
    events = [SimpleNamespace(type=agents_vad.VADEventType.START_OF_SPEECH, frames=["onset"])]

    await transport._watch_vad(FakeVadStream(events), participant())

    assert receiver.calls == [("start", "guest-1", "Guest", False)]


def test_non_audio_track_is_ignored():
    receiver = RecordingReceiver()
    transport = make_transport(receiver)
    track = SimpleNamespace(kind=rtc.TrackKind.KIND_VIDEO, sid="TR_1")

    transport._on_track_subscribed(track, None, participant())

    assert transport._tasks == {}


def test_disconnect_drains_open_turn():
    receiver = RecordingReceiver()
    transport = make_transport(receiver)

    transport._on_participant_disconnected(participant())

    assert receiver.calls == [("end", "guest-1")]


async def pcm(*chunks):
    for chunk in chunks:
        yield chunk


@pytest.mark.asyncio
async def test_sink_frames_pcm_and_pads_tail():
    source = FakeSource()
    sink = LiveKitAudioSink(source, sample_rate=48000, channels=1, frame_ms=10)
    # 480 samples per 10 ms frame -> 960 bytes
    await sink.play(pcm(b"\x01\x00" * 700, b"\x01\x00" * 500))

    assert len(source.frames) == 3
    assert all(f.samples_per_channel == 480 for f in source.frames)
    assert source.played_out


@pytest.mark.asyncio
async def test_sink_cancel_clears_source_queue():
    source = FakeSource()
    sink = LiveKitAudioSink(source, sample_rate=48000, channels=1)

    async def endless():
        while True:
            yield b"\x00\x00" * 480
            await asyncio.sleep(0)

    task = asyncio.ensure_future(sink.play(endless()))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert source.cleared
