"""
Session log and caption files.

One plain-text log (`speaker: text` per line) and one SRT caption file per session,
both written from transcript append events. Writes are best-effort: a failed write
is logged and never reaches the transcript writer.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from logging_setup import get_logger, Component

from .transcript import TranscriptEntry


def ms_to_srt(ms: int) -> str:
    """Milliseconds since session start as `HH:MM:SS,mmm`."""
    ms = max(0, int(ms))
    hours, ms = divmod(ms, 3_600_000)
    minutes, ms = divmod(ms, 60_000)
    seconds, millis = divmod(ms, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def session_basename(started: datetime) -> str:
    return "conversation-" + started.strftime("%Y-%m-%dT%H-%M-%S")


class SessionFiles:
    def __init__(
        self,
        log_dir: str = "logs",
        *,
        now_ms: Callable[[], int] = lambda: int(time.time() * 1000),
        session_id: Optional[str] = None,
    ) -> None:
        self.log_dir = Path(log_dir)
        self._now_ms = now_ms
        self.log_path: Optional[Path] = None
        self.caption_path: Optional[Path] = None
        self._start_ms = 0
        self._last_caption_end_ms = 0
        self._caption_index = 0
        self.logger = get_logger(Component.SESSION, session_id=session_id)

    def start(self) -> Optional[Path]:
        """Open new log and caption files; returns the log path (None if not writable)."""
        self._start_ms = self._now_ms()
        self._last_caption_end_ms = 0
        self._caption_index = 0
        started = datetime.fromtimestamp(self._start_ms / 1000, tz=timezone.utc)
        base = session_basename(started)
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            log_path = self.log_dir / f"{base}.log"
            with log_path.open("a", encoding="utf-8") as f:
                f.write(f"Session started {started.isoformat()}\n")
        except OSError as e:
            self.log_path = None
            self.caption_path = None
            self.logger.warning("Session log not created", log_dir=str(self.log_dir), error=str(e))
            return None
        self.log_path = log_path
        self.caption_path = self.log_dir / f"{base}.srt"
        self.logger.info("Session files opened", log_path=str(self.log_path), caption_path=str(self.caption_path))
        return self.log_path

    def write_entry(self, entry: TranscriptEntry) -> None:
        """Transcript listener: append the log line and the caption block."""
        if self.log_path is not None:
            self._append(self.log_path, f"{entry.speaker_label}: {entry.text}\n")
        if self.caption_path is not None:
            self._append(self.caption_path, self._caption_block(entry))

    def _caption_block(self, entry: TranscriptEntry) -> str:
        end_ms = max(0, entry.timestamp_ms - self._start_ms)
        start_ms = self._last_caption_end_ms
        if end_ms <= start_ms:
            end_ms = start_ms + 1000
        self._last_caption_end_ms = end_ms
        self._caption_index += 1
        text = f"{entry.speaker_label}: {entry.text}".replace("\r", " ").replace("\n", " ")
        return f"{self._caption_index}\n{ms_to_srt(start_ms)} --> {ms_to_srt(end_ms)}\n{text}\n\n"

    def _append(self, path: Path, text: str) -> None:
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            self.logger.warning("Session file write failed", path=str(path), error=str(e))
