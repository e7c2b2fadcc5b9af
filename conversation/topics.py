"""
Current conversation topic.

The topic comes back from the director service (or is set by an operator). Each
change is kept in a timestamped history and written to `current-topic.txt` so
stream overlays can read it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from logging_setup import get_logger, Component

from .feed import LiveFeed
from .stats import SessionStats

TOPIC_FILENAME = "current-topic.txt"


@dataclass(frozen=True)
class TopicShift:
    at: int
    topic: str

    def to_dict(self) -> dict:
        return {"at": self.at, "topic": self.topic}


class TopicTracker:
    def __init__(
        self,
        log_dir: str = "logs",
        *,
        feed: Optional[LiveFeed] = None,
        stats: Optional[SessionStats] = None,
        now_ms: Callable[[], int] = lambda: int(time.time() * 1000),
        session_id: Optional[str] = None,
    ) -> None:
        self.path = Path(log_dir) / TOPIC_FILENAME
        self._feed = feed
        self._stats = stats
        self._now_ms = now_ms
        self._current = ""
        self._history: List[TopicShift] = []
        self.logger = get_logger(Component.DIRECTOR, session_id=session_id)

    @property
    def current(self) -> str:
        return self._current

    def history(self) -> List[TopicShift]:
        return list(self._history)

    def set_topic(self, topic: Optional[str], at: Optional[int] = None) -> bool:
        """Record a topic change. Blank topics are ignored."""
        trimmed = (topic or "").strip()
        if not trimmed:
            return False
        self._current = trimmed
        self._history.append(TopicShift(at=at if at is not None else self._now_ms(), topic=trimmed))
        self._write_file()
        if self._stats is not None:
            self._stats.increment("topicUpdate")
        if self._feed is not None:
            self._feed.publish("topic", trimmed)
        self.logger.info("Topic updated", topic=trimmed)
        return True

    def reset(self) -> None:
        self._current = ""
        self._history.clear()

    def _write_file(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(self._current, encoding="utf-8")
        except OSError as e:
            self.logger.warning("Topic file not written", path=str(self.path), error=str(e))
