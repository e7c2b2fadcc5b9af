"""
Tests for per-participant turn capture.

Verifies:
- One transcript entry per finished turn
- Duplicate start events ignored while a turn is open
- Host trigger phrase matching
- Max-turn timeout and restart
- Decode and transcription failures drop the turn
- Speaking registry released exactly once
"""
import asyncio

import pytest

from conversation.transcript import TranscriptBuffer
from observability.event_store import event_store
from voice_bridge.capture import (
    TurnConfig,
    TurnState,
    VoiceReceiver,
    normalize_phrase,
    resolve_speaker_label,
)
from voice_bridge.speaking import SpeakingActivityRegistry

PCM = b"\x01\x00" * 16


class FakeTranscriber:
    def __init__(self, text="hello there", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def transcribe(self, pcm):
        self.calls.append(pcm)
        if self.error is not None:
            raise self.error
        return self.text


class CountingRegistry(SpeakingActivityRegistry):
    def __init__(self):
        super().__init__()
        self.ends = []

    def end(self, participant_id):
        self.ends.append(participant_id)
        return super().end(participant_id)


class ManualTimer:
    """Injected sleep: each call waits until fire() releases it."""

    def __init__(self):
        self.pending = []

    async def sleep(self, _seconds):
        fut = asyncio.get_running_loop().create_future()
        self.pending.append(fut)
        await fut

    def fire(self):
        fut = self.pending.pop(0)
        if not fut.done():
            fut.set_result(None)


async def never(_seconds):
    await asyncio.get_running_loop().create_future()


@pytest.fixture(autouse=True)
def cleanup():
    yield
    event_store.clear()


def make_receiver(transcriber=None, *, speaking=None, sleep=never, config=None, **kwargs):
    transcript = TranscriptBuffer(session_id="room-1")
    receiver = VoiceReceiver(
        transcript=transcript,
        speaking=speaking if speaking is not None else SpeakingActivityRegistry(),
        transcriber=transcriber or FakeTranscriber(),
        config=config or TurnConfig(frame_size=4),
        session_id="room-1",
        sleep=sleep,
        **kwargs,
    )
    return receiver, transcript


async def finish_turn(receiver, participant_id, pcm=PCM):
    pipeline = receiver.get(participant_id)
    receiver.push_audio(participant_id, pcm)
    receiver.end_turn(participant_id)
    await asyncio.wait_for(pipeline.wait_closed(), timeout=1)
    return pipeline


def test_normalize_phrase():
    assert normalize_phrase("  Okay. ") == "okay"
    assert normalize_phrase("Next   Question!") == "next question"
    assert normalize_phrase("") == ""


def test_resolve_speaker_label():
    assert resolve_speaker_label("h1", "Anna", host_identity="h1", host_label="Host") == "Host"
    assert resolve_speaker_label("g1", " Guest ", host_identity="h1", host_label="Host") == "Guest"
    assert resolve_speaker_label("g1", None, host_identity=None, host_label="Host") == "g1"


@pytest.mark.asyncio
async def test_turn_appends_one_entry():
    receiver, transcript = make_receiver()
    speaking = receiver._speaking

    pipeline = receiver.start_turn("alice", "Alice")
    assert speaking.is_speaking("alice")

    await finish_turn(receiver, "alice")

    assert pipeline.outcome == "appended"
    log = transcript.get_full_log()
    assert len(log) == 1
    assert log[0].speaker_label == "Alice"
    assert log[0].text == "hello there"
    assert log[0].speaker_id == "alice"
    assert transcript.director_window_size == 1
    assert not speaking.is_anyone_speaking()
    assert receiver.get("alice") is None


@pytest.mark.asyncio
async def test_transcriber_receives_all_audio_in_order():
    transcriber = FakeTranscriber()
    receiver, _ = make_receiver(transcriber)

    receiver.start_turn("alice")
    receiver.push_audio("alice", b"\x01\x00" * 3)
    receiver.push_audio("alice", b"\x02\x00" * 3)
    await finish_turn(receiver, "alice", pcm=b"")

    assert transcriber.calls == [b"\x01\x00" * 3 + b"\x02\x00" * 3]


@pytest.mark.asyncio
async def test_duplicate_start_is_ignored():
    receiver, transcript = make_receiver()

    first = receiver.start_turn("alice")
    second = receiver.start_turn("alice")

    assert first is not None
    assert second is None
    assert receiver.get("alice") is first

    await finish_turn(receiver, "alice")
    assert len(transcript) == 1


@pytest.mark.asyncio
async def test_agents_and_ignored_identities_are_not_captured():
    receiver, _ = make_receiver()
    receiver.ignore_identity("call-director-bot")

    assert receiver.start_turn("other-agent", is_agent=True) is None
    assert receiver.start_turn("call-director-bot") is None
    assert receiver.active_participants() == []


@pytest.mark.asyncio
async def test_disabled_transcription_skips_turns():
    receiver, _ = make_receiver(is_enabled=lambda: False)

    assert receiver.start_turn("alice") is None
    assert receiver.push_audio("alice", PCM) is False
    assert receiver.end_turn("alice") is False


@pytest.mark.asyncio
async def test_host_trigger_phrase_exact_match():
    triggers = []
    config = TurnConfig(frame_size=4, host_identity="host-1", trigger_phrases=("okay",))
    receiver, transcript = make_receiver(
        FakeTranscriber(text="Okay."),
        config=config,
        on_host_trigger=lambda: triggers.append("fired"),
    )

    receiver.start_turn("host-1", "Anna")
    await finish_turn(receiver, "host-1")

    assert triggers == ["fired"]
    assert transcript.get_last_entry().speaker_label == "Host"


@pytest.mark.asyncio
async def test_host_trigger_ignores_near_match():
    triggers = []
    config = TurnConfig(frame_size=4, host_identity="host-1", trigger_phrases=("okay",))
    receiver, transcript = make_receiver(
        FakeTranscriber(text="okay then"),
        config=config,
        on_host_trigger=lambda: triggers.append("fired"),
    )

    receiver.start_turn("host-1")
    await finish_turn(receiver, "host-1")

    assert triggers == []
    assert len(transcript) == 1


@pytest.mark.asyncio
async def test_trigger_phrase_from_guest_is_ignored():
    triggers = []
    config = TurnConfig(frame_size=4, host_identity="host-1", trigger_phrases=("okay",))
    receiver, _ = make_receiver(
        FakeTranscriber(text="okay"),
        config=config,
        on_host_trigger=lambda: triggers.append("fired"),
    )

    receiver.start_turn("guest-1")
    await finish_turn(receiver, "guest-1")

    assert triggers == []


@pytest.mark.asyncio
async def test_failing_trigger_does_not_break_turn():
    config = TurnConfig(frame_size=4, host_identity="host-1", trigger_phrases=("okay",))

    def broken():
        raise RuntimeError("director down")

    receiver, transcript = make_receiver(FakeTranscriber(text="okay"), config=config, on_host_trigger=broken)

    receiver.start_turn("host-1")
    pipeline = await finish_turn(receiver, "host-1")

    assert pipeline.outcome == "appended"
    assert len(transcript) == 1


@pytest.mark.asyncio
async def test_max_turn_timeout_force_closes_and_allows_restart():
    timer = ManualTimer()
    speaking = CountingRegistry()
    transcriber = FakeTranscriber()
    receiver, transcript = make_receiver(transcriber, speaking=speaking, sleep=timer.sleep)

    pipeline = receiver.start_turn("alice")
    receiver.push_audio("alice", PCM)
    await asyncio.sleep(0)

    timer.fire()
    await asyncio.wait_for(pipeline.wait_closed(), timeout=1)

    assert pipeline.outcome == "timeout"
    assert pipeline.state is TurnState.CLOSED
    assert transcriber.calls == []
    assert len(transcript) == 0
    assert speaking.ends == ["alice"]
    assert receiver.get("alice") is None

    again = receiver.start_turn("alice")
    assert again is not None
    assert receiver.is_capturing("alice")
    await receiver.aclose()

    closed = event_store.query(session_id="room-1", event_type="turn.closed")
    assert closed[0]["outcome"] == "timeout"
    assert closed[0]["severity"] == "warn"


@pytest.mark.asyncio
async def test_decode_error_drops_turn():
    speaking = CountingRegistry()
    transcriber = FakeTranscriber()
    receiver, transcript = make_receiver(transcriber, speaking=speaking)

    pipeline = receiver.start_turn("alice")
    receiver.push_audio("alice", b"\x00\x00\x00")
    await asyncio.wait_for(pipeline.wait_closed(), timeout=1)

    assert pipeline.outcome == "decode_error"
    assert transcriber.calls == []
    assert len(transcript) == 0
    assert speaking.ends == ["alice"]


@pytest.mark.asyncio
async def test_transcription_error_drops_turn():
    speaking = CountingRegistry()
    receiver, transcript = make_receiver(FakeTranscriber(error=RuntimeError("503")), speaking=speaking)

    receiver.start_turn("alice")
    pipeline = await finish_turn(receiver, "alice")

    assert pipeline.outcome == "transcription_failed"
    assert len(transcript) == 0
    assert speaking.ends == ["alice"]


@pytest.mark.asyncio
async def test_empty_transcription_appends_nothing():
    receiver, transcript = make_receiver(FakeTranscriber(text="   "))

    receiver.start_turn("alice")
    pipeline = await finish_turn(receiver, "alice")

    assert pipeline.outcome == "empty"
    assert len(transcript) == 0


@pytest.mark.asyncio
async def test_turn_without_audio_skips_transcriber():
    transcriber = FakeTranscriber()
    receiver, _ = make_receiver(transcriber)

    receiver.start_turn("alice")
    pipeline = await finish_turn(receiver, "alice", pcm=b"")

    assert pipeline.outcome == "empty"
    assert transcriber.calls == []


@pytest.mark.asyncio
async def test_speaking_released_once_on_normal_close():
    speaking = CountingRegistry()
    receiver, _ = make_receiver(speaking=speaking)

    receiver.start_turn("alice")
    await finish_turn(receiver, "alice")

    assert speaking.ends == ["alice"]


@pytest.mark.asyncio
async def test_audio_after_drain_is_not_accepted():
    receiver, _ = make_receiver()

    pipeline = receiver.start_turn("alice")
    receiver.push_audio("alice", PCM)
    receiver.end_turn("alice")

    assert receiver.push_audio("alice", PCM) is False
    await asyncio.wait_for(pipeline.wait_closed(), timeout=1)


@pytest.mark.asyncio
async def test_aclose_abandons_open_turns():
    speaking = CountingRegistry()
    receiver, transcript = make_receiver(speaking=speaking)

    pipeline = receiver.start_turn("alice")
    receiver.push_audio("alice", PCM)
    await receiver.aclose()

    assert pipeline.outcome == "cancelled"
    assert receiver.active_participants() == []
    assert speaking.ends == ["alice"]
    assert len(transcript) == 0
