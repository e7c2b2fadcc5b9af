"""
Shared transcript for one session.

A single append entry point feeds three views:
- the full history (read in full, editable by position)
- the director window (entries not yet delivered to the director service)
- the claim window (entries not yet delivered to claim extraction)

The windows hold copies taken at append time and are only cleared by their own
consumer's reset after a successful delivery, so a failed send keeps its entries
for the next attempt. Edits through update_entry() change the full history only.

Listeners registered with on_append() are called for every new entry. Each call is
isolated: an exception is logged and never reaches the writer or other listeners.
Coroutine listeners are scheduled as tasks and not awaited.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from logging_setup import get_logger, Component

from .background import call_detached

TranscriptListener = Callable[["TranscriptEntry"], Any]


@dataclass
class TranscriptEntry:
    """One transcribed speaking turn."""

    speaker_label: str
    text: str
    timestamp_ms: int
    speaker_id: Optional[str] = None

    @property
    def iso_timestamp(self) -> str:
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=timezone.utc).isoformat()

    def to_message(self) -> Dict[str, str]:
        """Shape sent to the text services."""
        return {"speaker": self.speaker_label, "text": self.text, "timestamp": self.iso_timestamp}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speaker": self.speaker_label,
            "text": self.text,
            "timestamp": self.timestamp_ms,
            "user_id": self.speaker_id,
        }


@dataclass(frozen=True)
class TranscriptEditError:
    """Returned by update_entry() instead of raising."""

    index: int
    message: str


def _now_ms() -> int:
    return int(time.time() * 1000)


class TranscriptBuffer:
    """Append-only transcript with independent director and claim windows."""

    def __init__(
        self,
        *,
        context_size: int = 20,
        now_ms: Callable[[], int] = _now_ms,
        session_id: Optional[str] = None,
    ) -> None:
        if context_size < 1:
            raise ValueError(f"context_size must be at least 1, got {context_size}")
        self.context_size = context_size
        self._now_ms = now_ms
        self._log: List[TranscriptEntry] = []
        self._director_window: List[TranscriptEntry] = []
        self._claim_window: List[TranscriptEntry] = []
        self._listeners: List[TranscriptListener] = []
        self.logger = get_logger(Component.TRANSCRIPT, session_id=session_id)

    # --- Writer ---

    def append(
        self,
        speaker_label: str,
        text: Optional[str],
        participant_id: Optional[str] = None,
    ) -> Optional[TranscriptEntry]:
        """
        Append a transcript line. Blank text is ignored (returns None).

        Appends are serialized by the event loop, so timestamps never go backwards.
        """
        trimmed = (text or "").strip()
        if not trimmed:
            return None

        ts = self._now_ms()
        if self._log and ts < self._log[-1].timestamp_ms:
            ts = self._log[-1].timestamp_ms

        entry = TranscriptEntry(
            speaker_label=speaker_label,
            text=trimmed,
            timestamp_ms=ts,
            speaker_id=participant_id,
        )
        self._log.append(entry)
        self._director_window.append(replace(entry))
        self._claim_window.append(replace(entry))

        self.logger.info_pii("Transcript appended", speaker=speaker_label, text=trimmed)
        self._notify(entry)
        return entry

    def on_append(self, callback: TranscriptListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _notify(self, entry: TranscriptEntry) -> None:
        for listener in list(self._listeners):
            call_detached(
                listener,
                replace(entry),
                logger=self.logger,
                description=f"transcript listener {getattr(listener, '__qualname__', repr(listener))}",
            )

    # --- Director window ---

    def get_recent_for_director(self) -> List[TranscriptEntry]:
        """Last `context_size` undelivered entries. Does not clear the window."""
        return [replace(e) for e in self._director_window[-self.context_size:]]

    def reset_director_window(self) -> None:
        self._director_window.clear()

    # --- Claim window ---

    def get_recent_for_claim_extraction(self) -> List[TranscriptEntry]:
        """Last `context_size` entries not yet sent to claim extraction."""
        return [replace(e) for e in self._claim_window[-self.context_size:]]

    def reset_claim_buffer(self) -> None:
        self._claim_window.clear()

    # --- Full history ---

    def get_full_log(self) -> List[TranscriptEntry]:
        return [replace(e) for e in self._log]

    def get_last_entry(self) -> Optional[TranscriptEntry]:
        return replace(self._log[-1]) if self._log else None

    def update_entry(
        self,
        index: int,
        *,
        speaker: Optional[str] = None,
        text: Optional[str] = None,
    ) -> Union[TranscriptEntry, TranscriptEditError]:
        """
        Rewrite the speaker label and/or text of the entry at `index` in place.

        The timestamp is never edited. Entries already copied into the director or
        claim window keep their original content.
        """
        if index < 0 or index >= len(self._log):
            return TranscriptEditError(index=index, message="index out of range")

        new_text: Optional[str] = None
        if text is not None:
            new_text = text.strip()
            if not new_text:
                return TranscriptEditError(index=index, message="text must not be empty")

        entry = self._log[index]
        if speaker is not None:
            entry.speaker_label = speaker
        if new_text is not None:
            entry.text = new_text
        self.logger.info("Transcript entry edited", index=index)
        return replace(entry)

    def clear(self) -> None:
        """Drop history and both windows (new session). Listeners stay registered."""
        self._log.clear()
        self._director_window.clear()
        self._claim_window.clear()

    @property
    def director_window_size(self) -> int:
        return len(self._director_window)

    @property
    def claim_window_size(self) -> int:
        return len(self._claim_window)

    def __len__(self) -> int:
        return len(self._log)
