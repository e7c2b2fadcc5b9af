"""
Tests for the speaking activity registry.
"""
from voice_bridge.speaking import SpeakingActivityRegistry


def test_begin_and_end():
    registry = SpeakingActivityRegistry()

    assert registry.begin("alice") is True
    assert registry.is_speaking("alice")
    assert registry.is_anyone_speaking()

    assert registry.end("alice") is True
    assert not registry.is_anyone_speaking()


def test_begin_twice_is_reported():
    registry = SpeakingActivityRegistry()
    registry.begin("alice")

    assert registry.begin("alice") is False
    assert len(registry) == 1


def test_end_unknown_participant():
    registry = SpeakingActivityRegistry()

    assert registry.end("bob") is False


def test_snapshot_is_a_copy():
    registry = SpeakingActivityRegistry()
    registry.begin("alice")
    registry.begin("bob")

    snap = registry.snapshot()
    registry.end("alice")

    assert snap == frozenset({"alice", "bob"})
    assert registry.snapshot() == frozenset({"bob"})


def test_clear():
    registry = SpeakingActivityRegistry()
    registry.begin("alice")
    registry.clear()

    assert not registry.is_anyone_speaking()
