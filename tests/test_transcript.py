"""
Tests for the shared transcript buffer and its consumer windows.
"""
import asyncio
import itertools

import pytest

from conversation.transcript import TranscriptBuffer, TranscriptEditError, TranscriptEntry


def clock(start: int = 1_000, step: int = 10):
    counter = itertools.count(start, step)
    return lambda: next(counter)


def make_buffer(context_size: int = 20) -> TranscriptBuffer:
    return TranscriptBuffer(context_size=context_size, now_ms=clock(), session_id="room-1")


def test_append_adds_one_entry_at_the_end():
    buf = make_buffer()
    buf.append("Alice", "first")

    entry = buf.append("Bob", "  second  ", "bob-1")

    log = buf.get_full_log()
    assert len(log) == 2
    assert log[-1] == entry
    assert entry.text == "second"
    assert entry.speaker_id == "bob-1"


@pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
def test_append_ignores_blank_text(text):
    buf = make_buffer()

    assert buf.append("Alice", text) is None
    assert len(buf) == 0
    assert buf.director_window_size == 0
    assert buf.claim_window_size == 0


def test_timestamps_never_go_backwards():
    times = iter([5_000, 4_000, 6_000])
    buf = TranscriptBuffer(now_ms=lambda: next(times))

    stamps = [buf.append("A", t).timestamp_ms for t in ("one", "two", "three")]

    assert stamps == [5_000, 5_000, 6_000]


def test_director_window_read_then_reset_is_empty():
    buf = make_buffer()
    buf.append("Alice", "hello there")

    assert [e.text for e in buf.get_recent_for_director()] == ["hello there"]
    # reading does not consume
    assert len(buf.get_recent_for_director()) == 1

    buf.reset_director_window()

    assert buf.get_recent_for_director() == []
    assert len(buf) == 1


def test_director_window_returns_last_n():
    buf = make_buffer(context_size=2)
    for text in ("one", "two", "three"):
        buf.append("A", text)

    assert [e.text for e in buf.get_recent_for_director()] == ["two", "three"]
    assert buf.director_window_size == 3


@pytest.mark.parametrize("size", [0, -3])
def test_context_size_must_be_positive(size):
    with pytest.raises(ValueError):
        make_buffer(context_size=size)


def test_windows_are_independent():
    buf = make_buffer()
    buf.append("Alice", "one")
    buf.reset_director_window()
    buf.append("Bob", "two")

    assert [e.text for e in buf.get_recent_for_director()] == ["two"]
    assert [e.text for e in buf.get_recent_for_claim_extraction()] == ["one", "two"]

    buf.reset_claim_buffer()

    assert buf.get_recent_for_claim_extraction() == []
    assert [e.text for e in buf.get_recent_for_director()] == ["two"]


def test_update_entry_changes_only_targeted_fields():
    buf = make_buffer()
    buf.append("Alice", "one")
    original = buf.append("Bob", "two")

    result = buf.update_entry(1, text="two, corrected")

    assert isinstance(result, TranscriptEntry)
    edited = buf.get_full_log()[1]
    assert edited.text == "two, corrected"
    assert edited.speaker_label == "Bob"
    assert edited.timestamp_ms == original.timestamp_ms
    assert buf.get_full_log()[0].text == "one"


def test_update_entry_speaker_only():
    buf = make_buffer()
    buf.append("Speaker 1", "hi")

    buf.update_entry(0, speaker="Carol")

    assert buf.get_full_log()[0].speaker_label == "Carol"
    assert buf.get_full_log()[0].text == "hi"


@pytest.mark.parametrize("index", [-1, 2, 100])
def test_update_entry_out_of_range_leaves_log_unchanged(index):
    buf = make_buffer()
    buf.append("Alice", "one")
    buf.append("Bob", "two")
    before = buf.get_full_log()

    result = buf.update_entry(index, text="x")

    assert result == TranscriptEditError(index=index, message="index out of range")
    assert buf.get_full_log() == before


def test_update_entry_rejects_blank_text():
    buf = make_buffer()
    buf.append("Alice", "one")

    result = buf.update_entry(0, text="   ")

    assert isinstance(result, TranscriptEditError)
    assert result.message == "text must not be empty"
    assert buf.get_full_log()[0].text == "one"


def test_edit_does_not_rewrite_window_snapshots():
    buf = make_buffer()
    buf.append("Alice", "original")

    buf.update_entry(0, speaker="Carol", text="edited")

    assert buf.get_recent_for_director()[0].text == "original"
    assert buf.get_recent_for_claim_extraction()[0].speaker_label == "Alice"
    assert buf.get_full_log()[0].text == "edited"


def test_returned_entries_are_copies():
    buf = make_buffer()
    buf.append("Alice", "one")

    buf.get_full_log()[0].text = "mutated"
    buf.get_last_entry().text = "mutated"

    assert buf.get_full_log()[0].text == "one"


def test_listeners_called_in_order_with_copies():
    buf = make_buffer()
    seen = []
    buf.on_append(lambda e: seen.append(("first", e.text)))
    buf.on_append(lambda e: seen.append(("second", e.text)))

    buf.append("Alice", "hello")

    assert seen == [("first", "hello"), ("second", "hello")]


def test_listener_error_does_not_reach_writer_or_other_listeners():
    buf = make_buffer()
    seen = []

    def broken(_entry):
        raise RuntimeError("listener bug")

    buf.on_append(broken)
    buf.on_append(lambda e: seen.append(e.text))

    entry = buf.append("Alice", "hello")

    assert entry is not None
    assert seen == ["hello"]
    assert len(buf) == 1


def test_unsubscribe_stops_delivery():
    buf = make_buffer()
    seen = []
    unsubscribe = buf.on_append(lambda e: seen.append(e.text))

    buf.append("Alice", "one")
    unsubscribe()
    buf.append("Alice", "two")

    assert seen == ["one"]


@pytest.mark.asyncio
async def test_coroutine_listener_is_scheduled_not_awaited():
    buf = make_buffer()
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_listener(_entry):
        started.set()
        await release.wait()

    buf.on_append(slow_listener)

    # append returns while the listener is still pending
    assert buf.append("Alice", "hello") is not None
    await asyncio.wait_for(started.wait(), timeout=1)
    release.set()
    await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_failing_coroutine_listener_is_logged_only():
    buf = make_buffer()
    done = asyncio.Event()

    async def failing(_entry):
        done.set()
        raise RuntimeError("boom")

    buf.on_append(failing)
    buf.append("Alice", "hello")
    await asyncio.wait_for(done.wait(), timeout=1)
    await asyncio.sleep(0)

    assert len(buf) == 1


def test_clear_resets_history_and_windows():
    buf = make_buffer()
    seen = []
    buf.on_append(lambda e: seen.append(e.text))
    buf.append("Alice", "one")

    buf.clear()
    buf.append("Bob", "two")

    assert [e.text for e in buf.get_full_log()] == ["two"]
    assert buf.director_window_size == 1
    assert seen == ["one", "two"]


def test_entry_message_shape():
    entry = TranscriptEntry(speaker_label="Alice", text="hi", timestamp_ms=0, speaker_id="a1")

    assert entry.to_message() == {"speaker": "Alice", "text": "hi", "timestamp": "1970-01-01T00:00:00+00:00"}
    assert entry.to_dict() == {"speaker": "Alice", "text": "hi", "timestamp": 0, "user_id": "a1"}
