"""
Tests for the audio turn decoder and PCM re-framing.
"""
from dataclasses import dataclass

import pytest

from voice_bridge.decoder import AudioTurnDecoder, DecodeError, PcmFramer


@dataclass
class FakeFrame:
    data: bytes
    sample_rate: int = 48000
    num_channels: int = 1


def make_decoder(frame_size: int = 4) -> AudioTurnDecoder:
    # 4 samples * 1 channel * 2 bytes = 8-byte frames
    return AudioTurnDecoder("alice", sample_rate=48000, channels=1, frame_size=frame_size)


async def collect(decoder: AudioTurnDecoder) -> list:
    return [chunk async for chunk in decoder]


def test_framer_splits_and_keeps_remainder():
    framer = PcmFramer(4)

    assert framer.feed(b"abcdef") == [b"abcd"]
    assert framer.remaining_bytes() == 2
    assert framer.feed(b"ghij") == [b"efgh"]
    assert framer.flush() == b"ij"
    assert framer.remaining_bytes() == 0


def test_framer_rejects_non_positive_size():
    with pytest.raises(ValueError):
        PcmFramer(0)


@pytest.mark.asyncio
async def test_decoder_frames_pcm_in_order():
    decoder = make_decoder()
    decoder.push(b"\x01\x00" * 3)
    decoder.push(FakeFrame(b"\x02\x00" * 6))
    decoder.end()

    chunks = await collect(decoder)

    assert chunks == [b"\x01\x00" * 3 + b"\x02\x00", b"\x02\x00" * 4, b"\x02\x00"]
    assert decoder.bytes_decoded == 18
    assert decoder.frame_bytes == 8


@pytest.mark.asyncio
async def test_decoder_end_without_audio_yields_nothing():
    decoder = make_decoder()
    decoder.end()

    assert await collect(decoder) == []
    assert decoder.closed


@pytest.mark.asyncio
async def test_wrong_sample_rate_fails_stream():
    decoder = make_decoder()
    decoder.push(FakeFrame(b"\x00\x00" * 4))
    decoder.push(FakeFrame(b"\x00\x00" * 4, sample_rate=16000))

    with pytest.raises(DecodeError, match="sample rate"):
        await collect(decoder)
    assert decoder.closed


@pytest.mark.asyncio
async def test_wrong_channel_count_fails_stream():
    decoder = make_decoder()
    decoder.push(FakeFrame(b"\x00\x00" * 4, num_channels=2))

    with pytest.raises(DecodeError, match="channel count"):
        await collect(decoder)


@pytest.mark.asyncio
async def test_truncated_sample_fails_stream():
    decoder = make_decoder()
    decoder.push(b"\x00\x00\x00")

    with pytest.raises(DecodeError, match="truncated"):
        await collect(decoder)


@pytest.mark.asyncio
async def test_frame_without_payload_fails_stream():
    decoder = make_decoder()
    decoder.push(object())

    with pytest.raises(DecodeError):
        await collect(decoder)


@pytest.mark.asyncio
async def test_push_after_end_is_ignored():
    decoder = make_decoder()
    decoder.push(b"\x01\x00" * 4)
    decoder.end()
    decoder.push(b"\x02\x00" * 4)

    assert await collect(decoder) == [b"\x01\x00" * 4]


@pytest.mark.asyncio
async def test_abort_discards_buffered_audio():
    decoder = make_decoder()
    decoder.push(b"\x01\x00" * 8)
    decoder.abort()

    assert await collect(decoder) == []
    # the stream stays terminated for a second reader
    assert await collect(decoder) == []
