"""In-memory usage counters for one session."""

from __future__ import annotations

from typing import Dict, Iterable

COUNTER_NAMES = (
    "directorSuggestion",
    "moderatorSpeak",
    "factCheck",
    "claimExtraction",
    "topicUpdate",
    "transcriptions",
    "tts",
)


class SessionStats:
    def __init__(self, names: Iterable[str] = COUNTER_NAMES) -> None:
        self._counters: Dict[str, int] = {name: 0 for name in names}

    def increment(self, name: str) -> None:
        """Unknown counter names are ignored."""
        if name in self._counters:
            self._counters[name] += 1

    def get(self, name: str) -> int:
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._counters)

    def reset(self) -> None:
        for name in self._counters:
            self._counters[name] = 0
