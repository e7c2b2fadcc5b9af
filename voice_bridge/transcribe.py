"""
Deepgram pre-recorded transcription of one speaking turn.

Input is 16-bit little-endian PCM at the configured sample rate and channel count.
Turns shorter than the minimum duration are not sent. Request failures are logged
with their error category and yield None; the capture pipeline treats None and ""
alike (no transcript entry).
"""

from __future__ import annotations

import time
from typing import Any, Optional

import aiohttp

from conversation.errors import ServiceResponseError, classify_error
from conversation.stats import SessionStats
from logging_setup import get_logger, Component

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"


def pcm_duration_ms(num_bytes: int, sample_rate: int, channels: int) -> float:
    return num_bytes / (sample_rate * channels * 2) * 1000


def extract_transcript(data: Any) -> Optional[str]:
    """results.channels[0].alternatives[0].transcript, stripped; None when absent or blank."""
    try:
        text = data["results"]["channels"][0]["alternatives"][0]["transcript"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(text, str):
        return None
    return text.strip() or None


class DeepgramTranscriber:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "nova-2",
        sample_rate: int = 48000,
        channels: int = 1,
        min_audio_ms: int = 1500,
        stats: Optional[SessionStats] = None,
        timeout_seconds: float = 30.0,
        session_id: Optional[str] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.model = model
        self.sample_rate = sample_rate
        self.channels = channels
        self.min_audio_ms = min_audio_ms
        self._stats = stats
        self._timeout_seconds = timeout_seconds
        self.logger = get_logger(Component.STT, session_id=session_id)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @property
    def params(self) -> dict:
        return {
            "model": self.model,
            "smart_format": "true",
            "encoding": "linear16",
            "sample_rate": str(self.sample_rate),
            "channels": str(self.channels),
        }

    async def transcribe(self, pcm: bytes) -> Optional[str]:
        if not self.enabled:
            self.logger.warning("DEEPGRAM_API_KEY not set; skipping transcription")
            return None
        duration_ms = pcm_duration_ms(len(pcm), self.sample_rate, self.channels)
        if duration_ms < self.min_audio_ms:
            self.logger.debug(
                "Turn too short; not transcribed",
                duration_ms=int(duration_ms),
                min_audio_ms=self.min_audio_ms,
            )
            return None

        start_ts = time.perf_counter()
        try:
            data = await self._post_audio(pcm)
        except Exception as e:
            self.logger.warning(
                "Transcription request failed",
                category=classify_error(e),
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.perf_counter() - start_ts) * 1000),
            )
            return None

        text = extract_transcript(data)
        self.logger.info(
            "Transcription completed",
            duration_ms=int(duration_ms),
            latency_ms=int((time.perf_counter() - start_ts) * 1000),
            empty=text is None,
        )
        if text and self._stats is not None:
            self._stats.increment("transcriptions")
        return text

    async def _post_audio(self, pcm: bytes) -> Any:
        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/octet-stream",
        }
        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as s:
            async with s.post(DEEPGRAM_LISTEN_URL, params=self.params, data=pcm, headers=headers) as resp:
                if resp.status != 200:
                    raise ServiceResponseError("deepgram", resp.status, await resp.text())
                return await resp.json(content_type=None)
