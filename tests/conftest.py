"""
Shared fakes for session and dashboard tests.
"""
import pytest

from conversation.text_services import ServiceResult
from observability.event_store import event_store
from voice_bridge.config import BotConfig
from voice_bridge.session import SessionContext


async def pcm_stream(*chunks):
    for chunk in chunks:
        yield chunk


class FakeTranscriber:
    def __init__(self, text="hello there"):
        self.text = text
        self.calls = 0

    async def transcribe(self, pcm):
        self.calls += 1
        return self.text


class FakeSynthesizer:
    def __init__(self):
        self.calls = []
        self.closed = False

    async def synthesize(self, text, voice_id=None):
        self.calls.append((text, voice_id))
        return pcm_stream(text.encode())

    async def aclose(self):
        self.closed = True


class FakeTextServices:
    def __init__(self):
        self.suggestion = ServiceResult(text="Ask about the book", topic="Publishing")
        self.fact_check = ServiceResult(text="Mostly accurate.")
        self.claims = ServiceResult(claims=["Sales doubled"])
        self.director_calls = []
        self.fact_check_calls = []
        self.claim_calls = []

    async def get_director_suggestion(self, entries):
        self.director_calls.append([e.text for e in entries])
        return self.suggestion

    async def get_fact_check(self, entries):
        self.fact_check_calls.append([e.text for e in entries])
        return self.fact_check

    async def extract_claims(self, entries):
        self.claim_calls.append([e.text for e in entries])
        return self.claims


class RecordingSink:
    def __init__(self):
        self.played = []

    async def play(self, stream):
        self.played.append(b"".join([chunk async for chunk in stream]))


@pytest.fixture(autouse=True)
def clear_events():
    yield
    event_store.clear()


@pytest.fixture
def bot_config(tmp_path):
    return BotConfig(
        livekit_url="",
        livekit_api_key="",
        livekit_api_secret="",
        host_identity="host-1",
        trigger_phrases=("yeah",),
        frame_size=4,
        playback_poll_ms=5,
        playback_grace_ms=5,
        session_log_dir=str(tmp_path / "logs"),
        tts_audio_dir=str(tmp_path / "audio"),
        clips_dir=str(tmp_path / "clips"),
    )


@pytest.fixture
def fakes():
    return {
        "transcriber": FakeTranscriber(),
        "synthesizer": FakeSynthesizer(),
        "text_services": FakeTextServices(),
        "clips": [],
    }


@pytest.fixture
def make_session(bot_config, fakes):
    def _make(config=None):
        def clip_opener(path):
            fakes["clips"].append(path)
            return pcm_stream(b"clip")

        return SessionContext.create(
            config or bot_config,
            session_id="room-1",
            transcriber=fakes["transcriber"],
            synthesizer=fakes["synthesizer"],
            text_services=fakes["text_services"],
            clip_opener=clip_opener,
        )

    return _make


@pytest.fixture
def sink():
    return RecordingSink()
