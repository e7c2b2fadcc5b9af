"""
Audio turn decoding.

The platform hands us audio frames for one participant; AudioTurnDecoder turns the
frames of one speaking turn into 16-bit little-endian PCM chunks of a fixed frame
size and exposes them as an async stream that ends when the turn ends.

Frames may be raw PCM bytes or frame objects with `data`, `sample_rate` and
`num_channels` attributes (rtc.AudioFrame). A frame in a format other than the one
the decoder was opened for is a decode error and fails the stream.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, List

SAMPLE_WIDTH = 2  # bytes per 16-bit sample

_END = object()


class DecodeError(Exception):
    """A frame could not be turned into PCM for this turn."""


class PcmFramer:
    """Re-frames a byte stream into fixed-size frames; the remainder is kept for later."""

    def __init__(self, frame_bytes: int) -> None:
        if frame_bytes <= 0:
            raise ValueError("frame_bytes must be positive")
        self._frame_bytes = frame_bytes
        self._buffer = bytearray()

    @property
    def frame_bytes(self) -> int:
        return self._frame_bytes

    def feed(self, data: bytes) -> List[bytes]:
        """Append bytes and return every complete frame now available."""
        self._buffer.extend(data)
        out: List[bytes] = []
        while len(self._buffer) >= self._frame_bytes:
            out.append(bytes(self._buffer[: self._frame_bytes]))
            del self._buffer[: self._frame_bytes]
        return out

    def flush(self) -> bytes:
        """Return and drop the incomplete remainder."""
        tail = bytes(self._buffer)
        self._buffer.clear()
        return tail

    def remaining_bytes(self) -> int:
        return len(self._buffer)


class AudioTurnDecoder:
    """
    Decode stream for one participant's speaking turn.

    Producers call push() per platform frame and end() when the platform flushes
    the turn. The consumer iterates with `async for chunk in decoder`; iteration
    stops after end() or abort() and raises DecodeError after a bad frame.
    """

    def __init__(
        self,
        participant_id: str,
        *,
        sample_rate: int,
        channels: int,
        frame_size: int,
    ) -> None:
        self.participant_id = participant_id
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_size = frame_size
        self._framer = PcmFramer(frame_size * channels * SAMPLE_WIDTH)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.bytes_decoded = 0

    @property
    def frame_bytes(self) -> int:
        return self._framer.frame_bytes

    @property
    def closed(self) -> bool:
        """True once no more input is accepted (ended, failed or aborted)."""
        return self._closed

    def push(self, frame: Any) -> None:
        if self._closed:
            return
        try:
            pcm = self._decode(frame)
        except DecodeError as e:
            self.fail(e)
            return
        for chunk in self._framer.feed(pcm):
            self._queue.put_nowait(chunk)

    def end(self) -> None:
        """End of turn: emit the partial last frame, then close the stream."""
        if self._closed:
            return
        self._closed = True
        tail = self._framer.flush()
        if tail:
            self._queue.put_nowait(tail)
        self._queue.put_nowait(_END)

    def fail(self, error: Exception) -> None:
        if self._closed:
            return
        self._closed = True
        self._framer.flush()
        self._queue.put_nowait(error)

    def abort(self) -> None:
        """Discard everything buffered and close the stream."""
        self._closed = True
        self._framer.flush()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)

    def _decode(self, frame: Any) -> bytes:
        if isinstance(frame, (bytes, bytearray, memoryview)):
            data = bytes(frame)
        else:
            rate = getattr(frame, "sample_rate", None)
            if rate is not None and rate != self.sample_rate:
                raise DecodeError(f"sample rate {rate} != {self.sample_rate}")
            num_channels = getattr(frame, "num_channels", None)
            if num_channels is not None and num_channels != self.channels:
                raise DecodeError(f"channel count {num_channels} != {self.channels}")
            payload = getattr(frame, "data", None)
            if payload is None:
                raise DecodeError("frame has no audio payload")
            data = bytes(payload)

        if len(data) % (SAMPLE_WIDTH * self.channels):
            raise DecodeError(f"truncated sample in {len(data)}-byte frame")
        return data

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        item = await self._queue.get()
        if item is _END:
            # keep the stream terminated for any later reader
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        self.bytes_decoded += len(item)
        return item
