"""
Speaking activity registry.

The set of participants whose turn is currently open (capturing or draining).
Capture pipelines are the only writers; the playback scheduler only asks whether
anyone is speaking.
"""

from __future__ import annotations

from typing import FrozenSet, Set


class SpeakingActivityRegistry:
    """Participant IDs currently mid-turn, for one session."""

    def __init__(self) -> None:
        self._speaking: Set[str] = set()

    def begin(self, participant_id: str) -> bool:
        """Mark a participant as speaking. False if already marked."""
        if participant_id in self._speaking:
            return False
        self._speaking.add(participant_id)
        return True

    def end(self, participant_id: str) -> bool:
        """Clear a participant. False if it was not marked."""
        if participant_id not in self._speaking:
            return False
        self._speaking.discard(participant_id)
        return True

    def is_speaking(self, participant_id: str) -> bool:
        return participant_id in self._speaking

    def is_anyone_speaking(self) -> bool:
        return bool(self._speaking)

    def snapshot(self) -> FrozenSet[str]:
        return frozenset(self._speaking)

    def clear(self) -> None:
        self._speaking.clear()

    def __len__(self) -> int:
        return len(self._speaking)
