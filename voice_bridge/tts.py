"""
ElevenLabs text-to-speech -> raw PCM for the call.

The API returns MP3; ffmpeg converts it to 16-bit little-endian PCM at the call's
sample rate and channel count. Each generated MP3 is also saved to the audio
directory with a timestamped filename. Local clips are decoded the same way.
"""

from __future__ import annotations

import asyncio
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, List, Optional

import aiohttp

from conversation.errors import ServiceResponseError, classify_error
from conversation.stats import SessionStats
from logging_setup import get_logger, Component

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech"
DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"
MODEL_ID = "eleven_multilingual_v2"
MAX_TEXT_LENGTH = 2500
PCM_CHUNK_BYTES = 4096

logger = get_logger(Component.TTS)


def ffmpeg_args(
    ffmpeg_path: str,
    *,
    sample_rate: int,
    channels: int,
    input_path: Optional[str] = None,
    input_format: Optional[str] = "mp3",
) -> List[str]:
    args = [ffmpeg_path, "-nostdin", "-loglevel", "error"]
    if input_path is None:
        if input_format:
            args += ["-f", input_format]
        args += ["-i", "pipe:0"]
    else:
        args += ["-i", input_path]
    args += ["-f", "s16le", "-ar", str(sample_rate), "-ac", str(channels), "pipe:1"]
    return args


async def ffmpeg_pcm_stream(
    args: List[str],
    data: Optional[bytes] = None,
    *,
    chunk_bytes: int = PCM_CHUNK_BYTES,
) -> AsyncIterator[bytes]:
    """Run ffmpeg and yield its PCM output. The process is killed if the consumer stops early."""
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.PIPE if data is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    feeder: Optional[asyncio.Task] = None
    if data is not None:
        feeder = asyncio.create_task(_feed_stdin(proc, data))
    try:
        while True:
            chunk = await proc.stdout.read(chunk_bytes)
            if not chunk:
                break
            yield chunk
        await proc.wait()
    finally:
        if feeder is not None and not feeder.done():
            feeder.cancel()
        if proc.returncode is None:
            proc.kill()
            await proc.wait()


async def _feed_stdin(proc: asyncio.subprocess.Process, data: bytes) -> None:
    try:
        proc.stdin.write(data)
        await proc.stdin.drain()
    except (BrokenPipeError, ConnectionResetError) as e:
        logger.debug("ffmpeg closed stdin early", error=str(e))
    finally:
        proc.stdin.close()


def _ffmpeg_available(ffmpeg_path: str) -> bool:
    if shutil.which(ffmpeg_path) is None and not Path(ffmpeg_path).is_file():
        logger.warning("ffmpeg not found; audio cannot be decoded", ffmpeg_path=ffmpeg_path)
        return False
    return True


class ElevenLabsSynthesizer:
    """Synthesizer for the playback queue: synthesize(text, voice_id) -> PCM stream or None."""

    def __init__(
        self,
        *,
        api_key: str,
        voice_id: str = DEFAULT_VOICE_ID,
        ffmpeg_path: str = "ffmpeg",
        sample_rate: int = 48000,
        channels: int = 1,
        audio_dir: Optional[str] = "audio",
        stats: Optional[SessionStats] = None,
        timeout_seconds: float = 30.0,
        session_id: Optional[str] = None,
    ):
        self._api_key = (api_key or "").strip()
        self._voice_id = voice_id or DEFAULT_VOICE_ID
        self._ffmpeg_path = ffmpeg_path
        self._sample_rate = sample_rate
        self._channels = channels
        self._audio_dir = Path(audio_dir) if audio_dir else None
        self._stats = stats
        self._timeout_seconds = timeout_seconds
        self._http_session: Optional[aiohttp.ClientSession] = None
        self.logger = logger.with_session(session_id) if session_id else logger

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
            )
        return self._http_session

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> Optional[AsyncIterator[bytes]]:
        if not self.enabled:
            self.logger.warning("ELEVENLABS_API_KEY not set; speech not synthesized")
            return None
        clean = (text or "").strip()[:MAX_TEXT_LENGTH]
        if not clean:
            return None

        mp3 = await self.fetch_mp3(clean, voice_id or self._voice_id)
        if not mp3:
            return None
        if self._stats is not None:
            self._stats.increment("tts")
        self._save_mp3(mp3)
        if not _ffmpeg_available(self._ffmpeg_path):
            return None
        args = ffmpeg_args(self._ffmpeg_path, sample_rate=self._sample_rate, channels=self._channels)
        return ffmpeg_pcm_stream(args, mp3)

    async def fetch_mp3(self, text: str, voice_id: str) -> Optional[bytes]:
        url = f"{ELEVENLABS_TTS_URL}/{voice_id}"
        payload = {
            "text": text,
            "model_id": MODEL_ID,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        }
        headers = {"xi-api-key": self._api_key, "Accept": "audio/mpeg"}
        start_ts = time.perf_counter()
        self.logger.info("TTS call started", voice_id=voice_id, text_length=len(text))
        try:
            session = self._get_or_create_session()
            async with session.post(url, json=payload, headers=headers) as resp:
                if resp.status != 200:
                    raise ServiceResponseError("elevenlabs", resp.status, await resp.text())
                body = await resp.read()
        except Exception as e:
            self.logger.warning(
                "TTS call failed",
                category=classify_error(e),
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        self.logger.info(
            "TTS call completed",
            bytes=len(body),
            latency_ms=int((time.perf_counter() - start_ts) * 1000),
        )
        return body or None

    def _save_mp3(self, mp3: bytes) -> Optional[Path]:
        if self._audio_dir is None:
            return None
        name = "tts_" + datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S") + ".mp3"
        path = self._audio_dir / name
        try:
            self._audio_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(mp3)
        except OSError as e:
            self.logger.warning("Could not save TTS audio file", path=str(path), error=str(e))
            return None
        self.logger.debug("TTS audio saved", path=str(path))
        return path

    async def aclose(self) -> None:
        """Safe to call multiple times."""
        if self._http_session is not None:
            try:
                await self._http_session.close()
            except Exception as e:
                self.logger.warning("Error closing TTS HTTP session", error=str(e), error_type=type(e).__name__)
            finally:
                self._http_session = None


class ClipOpener:
    """Decodes a local audio clip to PCM with ffmpeg; returns None for a missing file."""

    def __init__(self, *, ffmpeg_path: str = "ffmpeg", sample_rate: int = 48000, channels: int = 1):
        self._ffmpeg_path = ffmpeg_path
        self._sample_rate = sample_rate
        self._channels = channels

    def __call__(self, path: str) -> Optional[AsyncIterator[bytes]]:
        if not Path(path).is_file():
            logger.warning("Clip not found", path=path)
            return None
        if not _ffmpeg_available(self._ffmpeg_path):
            return None
        args = ffmpeg_args(
            self._ffmpeg_path,
            sample_rate=self._sample_rate,
            channels=self._channels,
            input_path=path,
        )
        return ffmpeg_pcm_stream(args)
